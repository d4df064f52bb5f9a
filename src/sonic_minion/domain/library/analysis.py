"""
Glue between the feature cache and the external analyzer.

The analyzer is any callable `analyze(path) -> AnalysisResult` referenced as
"module:function" in the configuration. It may also return a plain sequence
of floats, in which case tags are read with Mutagen.
"""

import importlib
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Iterator, Optional, Union

from loguru import logger
from mutagen import File as MutagenFile
from mutagen import MutagenError

from sonic_minion.core.exceptions import AnalysisError, ConfigError

from .models import AnalysisResult, SongMetadata
from .paths import is_cue_key

Analyzer = Callable[[str], Any]


def load_analyzer(reference: Optional[str]) -> Analyzer:
    """Import an analyzer from a "module:function" reference.

    Raises:
        ConfigError: If no analyzer is configured or it cannot be imported
    """
    if not reference:
        raise ConfigError(
            "No analyzer configured. Set `analyzer = \"module:function\"` in the [analysis] section."
        )
    module_name, _, attr = reference.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import analyzer module '{module_name}': {e}") from e

    analyzer = getattr(module, attr, None)
    if not callable(analyzer):
        raise ConfigError(f"Analyzer '{reference}' is not a callable")
    return analyzer


def get_tag_value(audio_file: Any, tag_names: list[str]) -> Optional[str]:
    """Get tag value, trying multiple possible tag names."""
    for tag_name in tag_names:
        try:
            value = audio_file.get(tag_name)
            if value:
                if isinstance(value, list) and value:
                    return str(value[0])
                return str(value)
        except (KeyError, ValueError):
            # Some formats (like Vorbis) raise ValueError for non-existent keys
            continue
    return None


def read_tags(local_path: str) -> SongMetadata:
    """Read song metadata from file tags using mutagen."""
    try:
        audio_file = MutagenFile(local_path)
    except (MutagenError, OSError) as e:
        logger.debug(f"Could not read tags of {local_path}: {e}")
        return SongMetadata()
    if audio_file is None:
        return SongMetadata()

    duration = None
    info = getattr(audio_file, "info", None)
    if info is not None and getattr(info, "length", None):
        duration = float(info.length)

    return SongMetadata(
        title=get_tag_value(audio_file, ["TIT2", "\xa9nam", "TITLE", "title"]),
        artist=get_tag_value(audio_file, ["TPE1", "\xa9ART", "ARTIST", "artist"]),
        album=get_tag_value(audio_file, ["TALB", "\xa9alb", "ALBUM", "album"]),
        album_artist=get_tag_value(audio_file, ["TPE2", "aART", "ALBUMARTIST", "albumartist"]),
        track_number=get_tag_value(audio_file, ["TRCK", "TRACKNUMBER", "tracknumber"]),
        disc_number=get_tag_value(audio_file, ["TPOS", "DISCNUMBER", "discnumber"]),
        genre=get_tag_value(audio_file, ["TCON", "\xa9gen", "GENRE", "genre"]),
        duration=duration,
    )


def _coerce_result(local_path: str, raw: Union[AnalysisResult, Iterable[float]]) -> AnalysisResult:
    if isinstance(raw, AnalysisResult):
        return raw
    features = tuple(float(value) for value in raw)
    # CUE tracks share one file, its tags do not describe the track
    metadata = SongMetadata() if is_cue_key(local_path) else read_tags(local_path)
    return AnalysisResult(features=features, metadata=metadata)


def run_analyzer(
    analyzer: Analyzer, local_path: str, number_features: int
) -> AnalysisResult:
    """Analyze one song.

    Raises:
        AnalysisError: If the analyzer fails or returns a vector of the wrong length
    """
    try:
        result = _coerce_result(local_path, analyzer(local_path))
    except AnalysisError:
        raise
    except Exception as e:
        # Analyzer internals are opaque; any failure is local to this song
        raise AnalysisError(local_path, f"Analysis of '{local_path}' failed: {e}") from e

    if len(result.features) != number_features:
        raise AnalysisError(
            local_path,
            f"Analysis of '{local_path}' returned {len(result.features)} features, "
            f"expected {number_features}. The analyzer may not match this format version.",
        )
    return result


def analyze_paths(
    analyzer: Analyzer,
    paths: dict[str, str],
    number_features: int,
    threads: int = 1,
) -> Iterator[tuple[str, Union[AnalysisResult, AnalysisError]]]:
    """Analyze songs, yielding (cache_key, result or error) as they complete.

    Args:
        analyzer: Analysis callable
        paths: Mapping of cache key to local path
        number_features: Expected feature vector length
        threads: Songs analyzed in parallel
    """

    def _analyze(key: str) -> tuple[str, Union[AnalysisResult, AnalysisError]]:
        try:
            return key, run_analyzer(analyzer, paths[key], number_features)
        except AnalysisError as e:
            return key, e

    if threads <= 1:
        for key in paths:
            yield _analyze(key)
        return

    with ThreadPoolExecutor(max_workers=threads) as executor:
        futures = [executor.submit(_analyze, key) for key in paths]
        for future in as_completed(futures):
            yield future.result()
