"""Playlist builder: ordering cached songs around one or more seeds.

Provides:
- Song playlists from a seed (closest to seed, chained, or group of seeds)
- Deduplication of near-identical songs
- Album playlists (whole albums ranked by distance, played in track order)
"""

from typing import Optional, Sequence, Union

import numpy as np
from loguru import logger

from sonic_minion.core.exceptions import NoAnchorError, NotAnalyzedError, PlaylistError

from ..library.models import CacheEntry
from ..library.paths import parse_track_number
from .distance import DistanceMetric
from .ranking import RankingStrategy

# Songs closer than this are considered the same song
DEDUP_DISTANCE_THRESHOLD = 0.05

AlbumKey = tuple[str, str]


def _check_seeds(seed: Union[CacheEntry, Sequence[CacheEntry], None]) -> list[CacheEntry]:
    if seed is None:
        raise NoAnchorError()
    seeds = [seed] if isinstance(seed, CacheEntry) else list(seed)
    if not seeds:
        raise NoAnchorError()
    for entry in seeds:
        if not entry.analyzed:
            raise NotAnalyzedError(entry.path)
    return seeds


def _same_song_tags(a: CacheEntry, b: CacheEntry) -> bool:
    return (
        a.title is not None
        and a.artist is not None
        and a.title == b.title
        and a.artist == b.artist
    )


def is_duplicate(
    candidate: CacheEntry,
    others: Sequence[CacheEntry],
    metric: DistanceMetric,
    threshold: float = DEDUP_DISTANCE_THRESHOLD,
) -> bool:
    """Whether candidate duplicates one of others (same tags or closer than threshold)."""
    vector = np.asarray(candidate.features, dtype=float)
    return any(
        _same_song_tags(candidate, other)
        or metric(vector, np.asarray(other.features, dtype=float)) < threshold
        for other in others
    )


def dedup_playlist(
    candidates: Sequence[CacheEntry],
    metric: DistanceMetric,
    threshold: float = DEDUP_DISTANCE_THRESHOLD,
) -> list[CacheEntry]:
    """Drop candidates that duplicate a candidate kept earlier in the list.

    A duplicate has the same title and artist as a kept song, or is closer
    than threshold to it. The earlier song of a duplicate pair always wins.
    """
    kept: list[CacheEntry] = []
    for candidate in candidates:
        if is_duplicate(candidate, kept, metric, threshold):
            logger.debug(f"Dropping duplicate song '{candidate.path}'")
            continue
        kept.append(candidate)
    return kept


def build_from_seed(
    seed: Union[CacheEntry, Sequence[CacheEntry], None],
    pool: Sequence[CacheEntry],
    metric: DistanceMetric,
    strategy: RankingStrategy,
    limit: int,
    dedup: bool = False,
) -> list[CacheEntry]:
    """Build a target sequence around one or more seeds.

    The first element is the anchor: the seed itself, or the last seed when
    several are given (new songs are queued after it). Unanalyzed songs and
    the seeds themselves are never candidates.

    Args:
        seed: Seed song, or list of seed songs
        pool: Candidate songs
        metric: Distance metric
        strategy: Ranking strategy
        limit: Maximum length of the result, anchor included
        dedup: Drop near-duplicate candidates

    Raises:
        NoAnchorError: If there is no seed
        NotAnalyzedError: If a seed has no feature vector
    """
    seeds = _check_seeds(seed)
    anchor = seeds[-1]
    if limit < 1:
        return []

    seed_paths = {entry.path for entry in seeds}
    candidates = [
        entry for entry in pool if entry.analyzed and entry.path not in seed_paths
    ]

    ranked = strategy(seeds, candidates, metric)
    if dedup:
        ranked = dedup_playlist(ranked, metric)

    return [anchor] + ranked[: limit - 1]


# Album playlists


def album_key(entry: CacheEntry) -> Optional[AlbumKey]:
    """Album identity of a song: (album, album artist or artist)."""
    if not entry.metadata.album:
        return None
    artist = entry.metadata.album_artist or entry.metadata.artist or ""
    return (entry.metadata.album, artist)


def group_albums(entries: Sequence[CacheEntry]) -> dict[AlbumKey, list[CacheEntry]]:
    """Group analyzed songs by album. Songs without an album tag are left out."""
    albums: dict[AlbumKey, list[CacheEntry]] = {}
    for entry in entries:
        key = album_key(entry)
        if key is None or not entry.analyzed:
            continue
        albums.setdefault(key, []).append(entry)
    return albums


def _track_sort_key(entry: CacheEntry) -> tuple:
    disc = parse_track_number(entry.metadata.disc_number) or 0
    track = parse_track_number(entry.metadata.track_number)
    if track is None:
        # Unparsable track numbers go last, in lexicographic order
        return (disc, 1, 0, entry.metadata.track_number or "", entry.path)
    return (disc, 0, track, entry.metadata.track_number or "", entry.path)


def sort_album_tracks(tracks: Sequence[CacheEntry]) -> list[CacheEntry]:
    """Order an album's tracks by disc number, then track number."""
    return sorted(tracks, key=_track_sort_key)


def _album_centroid(tracks: Sequence[CacheEntry]) -> np.ndarray:
    return np.mean([np.asarray(t.features, dtype=float) for t in tracks], axis=0)


def build_album_sequence(
    seed_album: Sequence[CacheEntry],
    albums: dict[AlbumKey, list[CacheEntry]],
    album_count: int,
    metric: DistanceMetric,
) -> list[CacheEntry]:
    """Concatenate whole albums, closest first, each in track order.

    The seed album comes first and counts toward album_count. Albums are
    compared through the distance between their mean feature vectors.
    """
    if not seed_album:
        raise PlaylistError("Cannot build an album playlist from an empty album")
    if album_count < 1:
        return []

    seed_key = album_key(seed_album[0])
    seed_centroid = _album_centroid(seed_album)
    others = [
        (key, tracks) for key, tracks in albums.items() if key != seed_key and tracks
    ]
    distances = [metric(seed_centroid, _album_centroid(tracks)) for _, tracks in others]
    order = sorted(range(len(others)), key=lambda i: distances[i])

    sequence = sort_album_tracks(seed_album)
    for i in order[: album_count - 1]:
        sequence.extend(sort_album_tracks(others[i][1]))
    return sequence


def build_album_playlist(
    anchor: Optional[CacheEntry],
    pool: Sequence[CacheEntry],
    metric: DistanceMetric,
    album_count: int,
) -> list[CacheEntry]:
    """Album playlist starting at the anchor.

    The rest of the anchor's album follows the anchor, then the closest
    albums. Tracks of the anchor's album that come before it are left out.

    Raises:
        NoAnchorError: If there is no anchor
        NotAnalyzedError: If the anchor has no feature vector
        PlaylistError: If the anchor has no album tag
    """
    (anchor,) = _check_seeds(anchor)
    key = album_key(anchor)
    if key is None:
        raise PlaylistError(
            f"Song '{anchor.path}' has no album tag, cannot make an album playlist."
        )

    albums = group_albums(pool)
    seed_album = albums.get(key, [])
    if not any(track.path == anchor.path for track in seed_album):
        seed_album = seed_album + [anchor]
        albums[key] = seed_album

    sequence = build_album_sequence(seed_album, albums, album_count, metric)
    start = next(i for i, track in enumerate(sequence) if track.path == anchor.path)
    return sequence[start:]
