"""
Path normalization between MPD paths and feature cache keys.

MPD exposes each track of a CUE sheet (or of a file with an embedded cue) as a
virtual sub-path of the container:

    Artist/Album/album.cue/track0003

Every such track gets its own cache entry, keyed as

    Artist/Album/album.cue/CUE_TRACK003

and its track index is also stored as the entry's track number, so that the
MPD path can be rebuilt when the song is queued.
"""

import re
from pathlib import Path
from typing import NamedTuple, Optional

from sonic_minion.core.exceptions import PathNormalizationError

from .models import CacheEntry, SongMetadata

# Marker used by MPD for virtual tracks of a container
MPD_TRACK_MARKER = "track"
# Marker used in cache keys (and by analyzers) for CUE tracks
CUE_TRACK_MARKER = "CUE_TRACK"

_MPD_TRACK_RE = re.compile(rf"^(?P<container>.+)/{MPD_TRACK_MARKER}(?P<index>\d+)$", re.IGNORECASE)
_CUE_KEY_RE = re.compile(rf"^(?P<container>.+)/{CUE_TRACK_MARKER}(?P<index>\d+)$")
_LEADING_INT_RE = re.compile(r"^\s*(\d+)")


class NormalizedPath(NamedTuple):
    """A remote path split into its container and optional track index."""

    container: str
    track: Optional[int] = None

    @property
    def key(self) -> str:
        """Cache key for this path."""
        if self.track is None:
            return self.container
        return f"{self.container}/{CUE_TRACK_MARKER}{self.track:03d}"

    @property
    def remote_path(self) -> str:
        """Path as MPD addresses it."""
        if self.track is None:
            return self.container
        return f"{self.container}/{MPD_TRACK_MARKER}{self.track:04d}"


def normalize(remote_path: str) -> NormalizedPath:
    """Split an MPD path into container and track index.

    Examples:
        >>> normalize("a/album.cue/track0002")
        NormalizedPath(container='a/album.cue', track=2)
        >>> normalize("a/song.flac")
        NormalizedPath(container='a/song.flac', track=None)
    """
    match = _MPD_TRACK_RE.match(remote_path)
    if match:
        return NormalizedPath(match.group("container"), int(match.group("index")))
    return NormalizedPath(remote_path)


def to_cache_key(remote_path: str) -> str:
    """Cache key for an MPD path."""
    return normalize(remote_path).key


def parse_cache_key(key: str) -> NormalizedPath:
    """Split a cache key into container and track index."""
    match = _CUE_KEY_RE.match(key)
    if match:
        return NormalizedPath(match.group("container"), int(match.group("index")))
    return NormalizedPath(key)


def is_cue_key(key: str) -> bool:
    return _CUE_KEY_RE.match(key) is not None


def parse_track_number(value: Optional[str]) -> Optional[int]:
    """Parse the leading integer of a track number tag ("3", "03", "3/12")."""
    if value is None:
        return None
    match = _LEADING_INT_RE.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def with_cue_track_number(key: str, metadata: SongMetadata) -> SongMetadata:
    """Store the CUE track index of key as the track number of metadata."""
    parsed = parse_cache_key(key)
    if parsed.track is None:
        return metadata
    return metadata._replace(track_number=str(parsed.track))


def to_remote_path(entry: CacheEntry) -> str:
    """Rebuild the MPD path of a cache entry.

    For CUE tracks the index is re-derived from the stored track number.

    Raises:
        PathNormalizationError: If a CUE track has no usable track number
    """
    parsed = parse_cache_key(entry.path)
    if parsed.track is None:
        return entry.path

    track_number = parse_track_number(entry.metadata.track_number)
    if track_number is None:
        raise PathNormalizationError(
            f"Cannot rebuild the MPD path of '{entry.path}': track number is missing"
        )
    if track_number != parsed.track:
        raise PathNormalizationError(
            f"Cannot rebuild the MPD path of '{entry.path}': stored track number "
            f"{track_number} does not match the CUE track {parsed.track}"
        )
    return NormalizedPath(parsed.container, track_number).remote_path


def to_local_path(key: str, base_path: Optional[str]) -> str:
    """Filesystem path handed to the analyzer for a cache key."""
    if not base_path:
        return key
    return str(Path(base_path) / key)
