"""
Library synchronization between the MPD database and the feature cache.

update:  analyze songs MPD knows about but the cache does not (or only with an
         older format version), and prune songs MPD no longer lists.
rescan:  drop the whole cache and analyze every song again.
"""

from typing import TYPE_CHECKING, Iterable, NamedTuple, Optional

from loguru import logger
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from sonic_minion.core.exceptions import AnalysisError, StorageError
from sonic_minion.core.output import get_console, log

from .analysis import Analyzer, analyze_paths
from .models import AnalysisResult, CacheEntry, SongMetadata
from .paths import to_cache_key, to_local_path, with_cue_track_number

if TYPE_CHECKING:
    from sonic_minion.core.database import FeatureCache


class SyncPlan(NamedTuple):
    """Result of diffing the remote library against the cache."""

    to_analyze: list[str]
    to_remove: list[str]
    stale: list[str]  # Subset of to_analyze cached with an older format version


class SyncReport(NamedTuple):
    """What a sync actually did."""

    plan: SyncPlan
    analyzed: int
    failed: list[tuple[str, str]]
    removed: int
    removal_failures: list[tuple[str, str]]


def diff_library(
    remote_paths: Iterable[str],
    cache: "FeatureCache",
    current_format_version: int,
) -> SyncPlan:
    """Compute which songs to analyze and which to remove.

    Entries with an older format version count as absent when deciding what to
    analyze, but stay in the cache until overwritten. Removal looks at every
    cached path: a song MPD no longer lists is removed whatever its version.

    Raises:
        StorageError: If the cache cannot be read
    """
    remote_keys = {to_cache_key(path) for path in remote_paths}

    entries = cache.all()
    all_keys = {entry.path for entry in entries}
    current_keys = {
        entry.path for entry in entries if entry.format_version == current_format_version
    }
    outdated_keys = all_keys - current_keys

    to_analyze = sorted(remote_keys - current_keys)
    to_remove = sorted(all_keys - remote_keys)
    stale = [key for key in to_analyze if key in outdated_keys]

    return SyncPlan(to_analyze=to_analyze, to_remove=to_remove, stale=stale)


def store_result(
    cache: "FeatureCache", key: str, result: AnalysisResult, format_version: int
) -> None:
    """Upsert an analyzed entry, replacing metadata and features."""
    metadata = with_cue_track_number(key, result.metadata)
    cache.upsert(
        CacheEntry(
            path=key,
            features=tuple(result.features),
            metadata=metadata,
            analyzed=True,
            format_version=format_version,
        )
    )


def store_failure(
    cache: "FeatureCache", key: str, error: AnalysisError, format_version: int
) -> None:
    """Upsert a placeholder entry recording an analysis failure."""
    cache.upsert(
        CacheEntry(
            path=key,
            metadata=with_cue_track_number(key, SongMetadata()),
            analyzed=False,
            format_version=format_version,
            error=str(error),
        )
    )
    logger.error(f"Analysis of song '{key}' failed: {error} The error has been stored.")


def analyze_and_store(
    cache: "FeatureCache",
    analyzer: Analyzer,
    keys: list[str],
    base_path: Optional[str],
    format_version: int,
    threads: int = 1,
    show_progress: bool = True,
) -> tuple[int, list[tuple[str, str]]]:
    """Analyze songs and store results as they complete.

    A failed analysis is recorded and does not stop the batch.

    Returns:
        (number analyzed successfully, [(path, error), ...] for failures)

    Raises:
        StorageError: If a result cannot be stored
    """
    if not keys:
        log("No (new) songs found.")
        return 0, []

    log(f"Analyzing {len(keys)} songs, this might take some time…")

    local_paths = {key: to_local_path(key, base_path) for key in keys}
    results = analyze_paths(analyzer, local_paths, cache.number_features, threads)

    success_count = 0
    failures: list[tuple[str, str]] = []

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=get_console(),
        disable=not show_progress,
    ) as progress:
        task = progress.add_task("Analyzing", total=len(keys))
        for key, result in results:
            progress.update(task, description=f"Analyzing {key}")
            if isinstance(result, AnalysisError):
                store_failure(cache, key, result, format_version)
                failures.append((key, str(result)))
            else:
                store_result(cache, key, result, format_version)
                success_count += 1
            progress.advance(task)

    log(f"Analyzed {success_count} song(s) successfully. {len(failures)} Failure(s).")
    return success_count, failures


def remove_songs(cache: "FeatureCache", keys: list[str]) -> tuple[int, list[tuple[str, str]]]:
    """Remove songs from the cache, collecting per-path failures.

    Returns:
        (number removed, [(path, error), ...] for failures)
    """
    removed = 0
    failures: list[tuple[str, str]] = []
    for key in keys:
        try:
            if cache.delete(key):
                removed += 1
        except StorageError as e:
            logger.error(f"Could not remove '{key}' from the cache: {e}")
            failures.append((key, str(e)))
    if removed:
        logger.info(f"Removed {removed} old songs from the cache.")
    return removed, failures


def sync_library(
    remote_paths: Iterable[str],
    cache: "FeatureCache",
    analyzer: Analyzer,
    format_version: int,
    base_path: Optional[str] = None,
    threads: int = 1,
    show_progress: bool = True,
) -> SyncReport:
    """Bring the cache in line with the remote library.

    Safe to re-run after a partial failure: the plan is always derived from
    the current remote listing and cache contents.

    Raises:
        StorageError: If the cache is unreachable
    """
    plan = diff_library(remote_paths, cache, format_version)
    log(f"Found {len(plan.to_analyze)} new songs to analyze.")
    if plan.stale:
        log(f"{len(plan.stale)} of them were analyzed with an older format version.")

    analyzed, failed = analyze_and_store(
        cache, analyzer, plan.to_analyze, base_path, format_version, threads, show_progress
    )

    removed, removal_failures = 0, []
    if plan.to_remove:
        log(
            f"Found {len(plan.to_remove)} old songs that should be removed from the cache."
        )
        removed, removal_failures = remove_songs(cache, plan.to_remove)

    return SyncReport(
        plan=plan,
        analyzed=analyzed,
        failed=failed,
        removed=removed,
        removal_failures=removal_failures,
    )


def full_rescan(
    remote_paths: Iterable[str],
    cache: "FeatureCache",
    analyzer: Analyzer,
    format_version: int,
    base_path: Optional[str] = None,
    threads: int = 1,
    show_progress: bool = True,
) -> SyncReport:
    """Remove the contents of the cache and analyze every remote song again.

    Useful in case the database got corrupted somehow.
    """
    remote_keys = sorted({to_cache_key(path) for path in remote_paths})
    cache.clear()
    plan = SyncPlan(to_analyze=remote_keys, to_remove=[], stale=[])
    analyzed, failed = analyze_and_store(
        cache, analyzer, remote_keys, base_path, format_version, threads, show_progress
    )
    return SyncReport(plan=plan, analyzed=analyzed, failed=failed, removed=0, removal_failures=[])
