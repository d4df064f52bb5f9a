"""Library domain - feature cache entries and MPD path handling.

This domain handles:
- Cache entry models
- Path normalization for CUE tracks
- Library synchronization (sonic_minion.domain.library.sync)
"""

from .models import AnalysisResult, CacheEntry, FailedEntry, SongMetadata, display_name
from .paths import (
    NormalizedPath,
    normalize,
    parse_cache_key,
    parse_track_number,
    to_cache_key,
    to_local_path,
    to_remote_path,
)

__all__ = [
    # Models
    "AnalysisResult",
    "CacheEntry",
    "FailedEntry",
    "SongMetadata",
    "display_name",
    # Paths
    "NormalizedPath",
    "normalize",
    "parse_cache_key",
    "parse_track_number",
    "to_cache_key",
    "to_local_path",
    "to_remote_path",
]
