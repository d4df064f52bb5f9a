"""
Ranking strategies.

A strategy orders candidate songs relative to one or more seed songs:

    strategy(seeds, candidates, metric) -> ranked candidates

Seeds are never part of the returned list. Ties keep the candidates' input
order (sorting is stable).
"""

from typing import Callable, Sequence

import numpy as np

from ..library.models import CacheEntry
from .distance import DistanceMetric, as_matrix, group_distances

RankingStrategy = Callable[
    [Sequence[CacheEntry], Sequence[CacheEntry], DistanceMetric], list[CacheEntry]
]


def closest_to_seed(
    seeds: Sequence[CacheEntry],
    candidates: Sequence[CacheEntry],
    metric: DistanceMetric,
) -> list[CacheEntry]:
    """Rank every candidate once, by distance to the first seed."""
    if not candidates:
        return []
    origin = np.asarray(seeds[0].features, dtype=float)
    distances = [metric(origin, np.asarray(c.features, dtype=float)) for c in candidates]
    order = sorted(range(len(candidates)), key=lambda i: distances[i])
    return [candidates[i] for i in order]


def song_to_song(
    seeds: Sequence[CacheEntry],
    candidates: Sequence[CacheEntry],
    metric: DistanceMetric,
) -> list[CacheEntry]:
    """Chain songs: each pick is the unused candidate closest to the previous pick.

    Starts from the last seed. Quadratic in the number of candidates.
    """
    remaining = list(candidates)
    vectors = [np.asarray(c.features, dtype=float) for c in remaining]
    current = np.asarray(seeds[-1].features, dtype=float)
    ranked: list[CacheEntry] = []

    while remaining:
        best = min(range(len(remaining)), key=lambda i: metric(current, vectors[i]))
        ranked.append(remaining.pop(best))
        current = vectors.pop(best)

    return ranked


def closest_to_group(
    seeds: Sequence[CacheEntry],
    candidates: Sequence[CacheEntry],
    metric: DistanceMetric,
) -> list[CacheEntry]:
    """Rank candidates by their aggregate distance to all the seeds."""
    if not candidates:
        return []
    distances = group_distances(metric, as_matrix(seeds), as_matrix(candidates))
    order = sorted(range(len(candidates)), key=lambda i: distances[i])
    return [candidates[i] for i in order]


STRATEGIES: dict[str, RankingStrategy] = {
    "closest_to_seed": closest_to_seed,
    "song_to_song": song_to_song,
    "closest_to_group": closest_to_group,
}
