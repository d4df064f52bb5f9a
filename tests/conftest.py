"""Shared fixtures: a temporary feature cache and a strict in-memory MPD queue."""

from typing import Optional

import pytest

from sonic_minion.core.database import FeatureCache
from sonic_minion.core.exceptions import RemoteError
from sonic_minion.domain.library.models import CacheEntry, SongMetadata
from sonic_minion.domain.playback.client import QueueItem

NUMBER_FEATURES = 4


def make_entry(
    path: str,
    features=None,
    title: Optional[str] = None,
    artist: Optional[str] = None,
    album: Optional[str] = None,
    album_artist: Optional[str] = None,
    track_number: Optional[str] = None,
    disc_number: Optional[str] = None,
    analyzed: bool = True,
    format_version: int = 2,
) -> CacheEntry:
    """Build a cache entry; a scalar feature is spread over every dimension."""
    if not analyzed:
        vector = ()
    elif features is None:
        vector = (0.0,) * NUMBER_FEATURES
    elif isinstance(features, (int, float)):
        vector = (float(features),) * NUMBER_FEATURES
    else:
        vector = tuple(float(value) for value in features)
    return CacheEntry(
        path=path,
        features=vector,
        metadata=SongMetadata(
            title=title,
            artist=artist,
            album=album,
            album_artist=album_artist,
            track_number=track_number,
            disc_number=disc_number,
        ),
        analyzed=analyzed,
        format_version=format_version,
    )


class FakeQueueClient:
    """In-memory MPD queue that rejects any out-of-range index, like MPD does.

    Every edit is recorded in self.calls. fail_at makes the n-th edit (0-based)
    raise RemoteError.
    """

    def __init__(self, queue=(), current: Optional[int] = None, library=(), fail_at: Optional[int] = None):
        self.queue = list(queue)
        self.current = current
        self.library = list(library)
        self.fail_at = fail_at
        self.calls = []

    def _edit(self, call) -> None:
        if self.fail_at is not None and len(self.calls) == self.fail_at:
            raise RemoteError(f"refused {call}")
        self.calls.append(call)

    def list_files(self):
        return list(self.library)

    def current_song(self):
        if self.current is None:
            return None
        return QueueItem(self.current, self.queue[self.current])

    def queue_snapshot(self):
        return [QueueItem(i, path) for i, path in enumerate(self.queue)]

    def delete_range(self, start, end):
        if not 0 <= start < end <= len(self.queue):
            raise RemoteError(f"Bad song index {start}:{end}")
        self._edit(("delete", start, end))
        del self.queue[start:end]

    def insert_at(self, path, position):
        if not 0 <= position <= len(self.queue):
            raise RemoteError(f"Bad song index {position}")
        self._edit(("insert", path, position))
        self.queue.insert(position, path)

    def move_range(self, src_start, src_end, dest):
        size = src_end - src_start
        if not (0 <= src_start < src_end <= len(self.queue) and 0 <= dest <= len(self.queue) - size):
            raise RemoteError(f"Bad song index {src_start}:{src_end} -> {dest}")
        self._edit(("move", src_start, src_end, dest))
        block = self.queue[src_start:src_end]
        rest = self.queue[:src_start] + self.queue[src_end:]
        self.queue = rest[:dest] + block + rest[dest:]


@pytest.fixture
def cache(tmp_path):
    """Empty feature cache in a temporary directory."""
    return FeatureCache(tmp_path / "songs.db", NUMBER_FEATURES)


@pytest.fixture
def entry_factory():
    return make_entry


@pytest.fixture
def queue_client():
    """Factory for FakeQueueClient instances."""
    return FakeQueueClient
