"""Playlists domain - ordering analyzed songs around seeds.

This domain handles:
- Distance metrics between feature vectors
- Ranking strategies (closest to seed, song to song, closest to group)
- Playlist building with deduplication and album grouping
"""

from .builder import (
    DEDUP_DISTANCE_THRESHOLD,
    album_key,
    build_album_playlist,
    build_album_sequence,
    build_from_seed,
    dedup_playlist,
    is_duplicate,
    group_albums,
    sort_album_tracks,
)
from .distance import (
    DistanceMetric,
    ForestDistance,
    MahalanobisDistance,
    cosine_distance,
    euclidean_distance,
    get_distance,
)
from .ranking import (
    STRATEGIES,
    RankingStrategy,
    closest_to_group,
    closest_to_seed,
    song_to_song,
)

__all__ = [
    # Builder
    "DEDUP_DISTANCE_THRESHOLD",
    "album_key",
    "build_album_playlist",
    "build_album_sequence",
    "build_from_seed",
    "dedup_playlist",
    "is_duplicate",
    "group_albums",
    "sort_album_tracks",
    # Distance
    "DistanceMetric",
    "ForestDistance",
    "MahalanobisDistance",
    "cosine_distance",
    "euclidean_distance",
    "get_distance",
    # Ranking
    "STRATEGIES",
    "RankingStrategy",
    "closest_to_group",
    "closest_to_seed",
    "song_to_song",
]
