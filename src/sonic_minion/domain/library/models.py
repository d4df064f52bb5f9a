"""
Library domain models.

Contains data structures for analyzed songs, as stored in the feature cache.
"""

from typing import NamedTuple, Optional


class SongMetadata(NamedTuple):
    """Tag metadata of a song, as reported by the analyzer."""

    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    track_number: Optional[str] = None  # Raw tag text, e.g. "3" or "3/12"
    disc_number: Optional[str] = None
    genre: Optional[str] = None
    duration: Optional[float] = None  # in seconds


class CacheEntry(NamedTuple):
    """A song in the feature cache.

    An analyzed entry always carries a full feature vector. An entry with
    analyzed=False is a placeholder for a recorded analysis failure and has
    no features.
    """

    path: str  # Canonical cache key, relative to the MPD music directory
    features: tuple[float, ...] = ()
    metadata: SongMetadata = SongMetadata()
    analyzed: bool = False
    format_version: int = 0
    error: Optional[str] = None

    @property
    def title(self) -> Optional[str]:
        return self.metadata.title

    @property
    def artist(self) -> Optional[str]:
        return self.metadata.artist

    @property
    def album(self) -> Optional[str]:
        return self.metadata.album


class AnalysisResult(NamedTuple):
    """What an analyzer returns for one song."""

    features: tuple[float, ...]
    metadata: SongMetadata = SongMetadata()


class FailedEntry(NamedTuple):
    """A song whose analysis failed, with the recorded error."""

    path: str
    error: Optional[str]


def display_name(entry: CacheEntry) -> str:
    """Human readable name: 'Artist - Title', or the path when tags are missing."""
    if entry.metadata.title and entry.metadata.artist:
        return f"{entry.metadata.artist} - {entry.metadata.title}"
    if entry.metadata.title:
        return entry.metadata.title
    return entry.path
