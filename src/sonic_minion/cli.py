"""
Sonic Minion CLI - Entry point

Keeps the feature cache in sync with the MPD library and queues playlists of
songs that sound alike.
"""

import argparse
import sys
from pathlib import Path
from typing import Callable, Hashable, Optional, Sequence

from loguru import logger
from rich.table import Table

from sonic_minion.context import LibraryContext, open_library
from sonic_minion.core.config import Config, VALID_DISTANCES, get_data_dir, load_config, save_config
from sonic_minion.core.exceptions import NoAnchorError, NotAnalyzedError, SonicMinionError
from sonic_minion.core.output import get_console, log, setup_loguru
from sonic_minion.domain.library.analysis import load_analyzer
from sonic_minion.domain.library.models import CacheEntry, display_name
from sonic_minion.domain.library.paths import to_cache_key
from sonic_minion.domain.library.sync import SyncReport, full_rescan, sync_library
from sonic_minion.domain.playback.interactive import InteractiveSession
from sonic_minion.domain.playback.reconciler import ReconcileMode, ReconcileResult, reconcile
from sonic_minion.domain.playlists.builder import album_key, build_album_playlist, build_from_seed
from sonic_minion.domain.playlists.distance import get_distance
from sonic_minion.domain.playlists.ranking import closest_to_group, closest_to_seed, song_to_song


def print_report(report: SyncReport) -> None:
    """Summarize a library update."""
    for path, error in report.failed:
        log(f"Failed: {path}: {error}", level="warning")
    for path, error in report.removal_failures:
        log(f"Could not remove {path}: {error}", level="warning")
    log(
        f"Done: {report.analyzed} analyzed, {len(report.failed)} failed, "
        f"{report.removed} removed."
    )


def run_update(config: Config, rescan: bool = False) -> int:
    """Analyze new songs (or every song when rescan is set) and prune removed ones."""
    analyzer = load_analyzer(config.analysis.analyzer)

    with open_library(config) as ctx:
        remote_paths = ctx.require_client().list_files()
        log(f"MPD reports {len(remote_paths)} songs.")
        sync = full_rescan if rescan else sync_library
        report = sync(
            remote_paths,
            ctx.cache,
            analyzer,
            config.analysis.format_version,
            base_path=config.mpd.base_path,
            threads=config.analysis.threads,
        )

    print_report(report)
    return 0


def run_init(config: Config, base_path: str) -> int:
    """Record the MPD music directory, then run a first update."""
    config.mpd.base_path = str(Path(base_path).expanduser())
    if not save_config(config):
        return 1
    log(f"Music directory set to {config.mpd.base_path}")
    return run_update(config)


def run_list_db(config: Config, detailed: bool = False) -> int:
    """Print analyzed songs, with their features if detailed."""
    with open_library(config, connect=False) as ctx:
        entries = ctx.cache.analyzed()

    console = get_console()
    for entry in entries:
        if detailed:
            features = ", ".join(f"{value:.4f}" for value in entry.features)
            console.print(f"{entry.path} ({display_name(entry)}): [{features}]", highlight=False)
        else:
            console.print(entry.path, highlight=False)
    return 0


def run_list_failed(config: Config) -> int:
    """Print songs whose analysis failed, with the recorded error."""
    with open_library(config, connect=False) as ctx:
        failed = ctx.cache.failed_entries()

    if not failed:
        log("No failed songs.")
        return 0

    table = Table(title=f"{len(failed)} failed songs")
    table.add_column("Path")
    table.add_column("Error", style="red")
    for entry in failed:
        table.add_row(entry.path, entry.error or "")
    get_console().print(table)
    return 0


def album_group_key(entries: Sequence[CacheEntry]) -> Callable[[str], Optional[Hashable]]:
    """Map an MPD path to the album of its cache entry."""
    by_key = {entry.path: entry for entry in entries}

    def group_key(remote_path: str) -> Optional[Hashable]:
        entry = by_key.get(to_cache_key(remote_path))
        return album_key(entry) if entry is not None else None

    return group_key


def _analyzed_entry(ctx: LibraryContext, remote_path: str) -> CacheEntry:
    key = to_cache_key(remote_path)
    entry = ctx.cache.get(key)
    if entry is None or not entry.analyzed:
        raise NotAnalyzedError(key)
    return entry


def queue_from_current_song(ctx: LibraryContext, args: argparse.Namespace) -> ReconcileResult:
    """Queue songs close to the current song."""
    client = ctx.require_client()
    playlist = ctx.config.playlist

    current = client.current_song()
    if current is None:
        raise NoAnchorError()
    anchor = _analyzed_entry(ctx, current.path)

    pool = ctx.cache.analyzed()
    metric = get_distance(playlist.distance, pool)

    if playlist.album_playlist:
        target = build_album_playlist(anchor, pool, metric, album_count=args.length)
        return reconcile(
            client,
            target,
            ReconcileMode.PRESERVE,
            anchor_pos=current.position,
            group_key=album_group_key(pool),
            dry_run=playlist.dry_run,
        )

    strategy = song_to_song if playlist.seed_song else closest_to_seed
    target = build_from_seed(anchor, pool, metric, strategy, args.length, dedup=playlist.dedup)
    mode = ReconcileMode.PRESERVE if playlist.keep_current_queue else ReconcileMode.REPLACE
    return reconcile(
        client, target, mode, anchor_pos=current.position, dry_run=playlist.dry_run
    )


def queue_from_current_playlist(ctx: LibraryContext, args: argparse.Namespace) -> ReconcileResult:
    """Append songs close to the whole queue, after its last song."""
    client = ctx.require_client()
    playlist = ctx.config.playlist

    queue = client.queue_snapshot()
    if not queue:
        raise NoAnchorError("The queue is empty. Add songs to build the playlist from, and try again.")

    pool = ctx.cache.analyzed()
    by_key = {entry.path: entry for entry in pool}
    # The last song is the anchor, so it ends the seed list
    if to_cache_key(queue[-1].path) not in by_key:
        raise NotAnalyzedError(to_cache_key(queue[-1].path))
    seeds = [by_key[to_cache_key(item.path)] for item in queue if to_cache_key(item.path) in by_key]

    metric = get_distance(playlist.distance, pool)
    # The queue's songs are seeds and are not queued again
    target = build_from_seed(seeds, pool, metric, closest_to_group, args.length, dedup=playlist.dedup)
    return reconcile(
        client,
        target,
        ReconcileMode.PRESERVE,
        anchor_pos=len(queue) - 1,
        dry_run=playlist.dry_run,
    )


def run_playlist(config: Config, args: argparse.Namespace) -> int:
    """Queue a playlist of args.length songs (or albums)."""
    with open_library(config) as ctx:
        if args.from_current_playlist:
            result = queue_from_current_playlist(ctx, args)
        else:
            result = queue_from_current_song(ctx, args)

    if result.dry_run:
        table = Table(title="Songs that would be queued")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Song")
        table.add_column("Path", style="dim")
        for i, entry in enumerate(result.added, start=1):
            table.add_row(str(i), display_name(entry), entry.path)
        get_console().print(table)
    else:
        log(f"Queued {len(result.added)} songs.")
    return 0


def blessed_key_reader() -> tuple[Callable[[], str], object]:
    """Key reader over a blessed Terminal, and the terminal (use its cbreak())."""
    from blessed import Terminal

    term = Terminal()

    def read_key() -> str:
        key = term.inkey()
        if key.name == "KEY_ESCAPE":
            return "escape"
        return str(key)

    return read_key, term


def run_interactive(config: Config, continue_queue: bool = False) -> int:
    """Build a playlist song by song, choosing among the closest songs."""
    read_key, term = blessed_key_reader()

    with open_library(config) as ctx:
        pool = ctx.cache.analyzed()
        session = InteractiveSession(
            ctx.require_client(),
            pool,
            get_distance(config.playlist.distance, pool),
            read_key,
            number_choices=config.playlist.number_choices,
            dedup=config.playlist.dedup,
        )
        with term.cbreak():
            queued = session.run(continue_queue=continue_queue)

    log(f"Queued {len(queued)} songs.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sonic-minion",
        description="Sonic Minion - playlists of songs that sound alike, for MPD",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Also print debug logs to stderr"
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    init_parser = subparsers.add_parser(
        "init", help="Set the MPD music directory and analyze the library"
    )
    init_parser.add_argument("base_path", help="MPD's music_directory")

    update_parser = subparsers.add_parser(
        "update", help="Analyze new songs and remove deleted ones from the cache"
    )
    update_parser.add_argument("base_path", nargs="?", help="Override the music directory")

    rescan_parser = subparsers.add_parser(
        "rescan", help="Wipe the cache and analyze the whole library again"
    )
    rescan_parser.add_argument("base_path", nargs="?", help="Override the music directory")

    list_db_parser = subparsers.add_parser("list-db", help="List analyzed songs")
    list_db_parser.add_argument(
        "--detailed", action="store_true", help="Also print the features of each song"
    )

    subparsers.add_parser("list-failed", help="List songs whose analysis failed")

    playlist_parser = subparsers.add_parser(
        "playlist", help="Queue songs that sound like the current song"
    )
    playlist_parser.add_argument(
        "length",
        type=int,
        nargs="?",
        help="Number of songs (number of albums with --album-playlist)",
    )
    playlist_parser.add_argument(
        "--distance", choices=VALID_DISTANCES, help="Distance between songs"
    )
    playlist_parser.add_argument(
        "--seed-song",
        action="store_true",
        default=None,
        help="Chain songs: each song is the closest to the previous one",
    )
    playlist_parser.add_argument(
        "--deduplicate-songs",
        action="store_true",
        default=None,
        help="Skip songs with the same title and artist, or that sound identical",
    )
    playlist_parser.add_argument(
        "--keep-current-queue",
        action="store_true",
        default=None,
        help="Insert after the current song instead of replacing the queue",
    )
    playlist_parser.add_argument(
        "--album-playlist",
        action="store_true",
        default=None,
        help="Queue whole albums close to the current song's album",
    )
    playlist_parser.add_argument(
        "--from-current-playlist",
        action="store_true",
        help="Append songs close to the whole queue",
    )
    playlist_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Print the songs that would be queued without touching the queue",
    )

    interactive_parser = subparsers.add_parser(
        "interactive-playlist", help="Build a playlist by picking each next song"
    )
    interactive_parser.add_argument(
        "--continue",
        dest="continue_queue",
        action="store_true",
        help="Start from the last song of the queue instead of the current song",
    )
    interactive_parser.add_argument(
        "--number-choices", type=int, help="Number of songs to choose from (1-9)"
    )

    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> None:
    """Let command line flags override configuration defaults."""
    if getattr(args, "base_path", None) and args.subcommand in ("update", "rescan"):
        config.mpd.base_path = str(Path(args.base_path).expanduser())

    if args.subcommand == "playlist":
        playlist = config.playlist
        if args.length is None:
            args.length = playlist.length
        if args.distance is not None:
            playlist.distance = args.distance
        if args.seed_song is not None:
            playlist.seed_song = args.seed_song
        if args.deduplicate_songs is not None:
            playlist.dedup = args.deduplicate_songs
        if args.keep_current_queue is not None:
            playlist.keep_current_queue = args.keep_current_queue
        if args.album_playlist is not None:
            playlist.album_playlist = args.album_playlist
        if args.dry_run is not None:
            playlist.dry_run = args.dry_run

    if args.subcommand == "interactive-playlist" and args.number_choices is not None:
        config.playlist.number_choices = args.number_choices

    config.validate()


def dispatch(config: Config, args: argparse.Namespace) -> int:
    if args.subcommand == "init":
        return run_init(config, args.base_path)
    if args.subcommand in ("update", "rescan"):
        return run_update(config, rescan=args.subcommand == "rescan")
    if args.subcommand == "list-db":
        return run_list_db(config, detailed=args.detailed)
    if args.subcommand == "list-failed":
        return run_list_failed(config)
    if args.subcommand == "playlist":
        return run_playlist(config, args)
    if args.subcommand == "interactive-playlist":
        return run_interactive(config, continue_queue=args.continue_queue)
    raise ValueError(f"Unknown command: {args.subcommand}")


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the sonic-minion command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config()

        log_file = (
            Path(config.logging.log_file)
            if config.logging.log_file
            else (get_data_dir() / "sonic-minion.log")
        )
        level = "DEBUG" if args.verbose else config.logging.level
        setup_loguru(log_file, level=level, console_output=args.verbose or config.logging.console_output)

        apply_overrides(config, args)
        sys.exit(dispatch(config, args))

    except SonicMinionError as e:
        logger.error(f"{args.subcommand} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
