"""
Distance metrics between feature vectors.

A metric is any callable `(a, b) -> float` that is symmetric and
non-negative. Metrics that only make sense against a group of songs (the
isolation forest) also expose `group_distances(seeds, candidates)`.
"""

from typing import Callable, Optional, Sequence

import numpy as np
from sklearn.ensemble import IsolationForest

from sonic_minion.core.exceptions import ConfigError

from ..library.models import CacheEntry

DistanceMetric = Callable[[np.ndarray, np.ndarray], float]


def as_matrix(entries: Sequence[CacheEntry]) -> np.ndarray:
    """Stack the feature vectors of entries into an (n, features) array."""
    return np.array([entry.features for entry in entries], dtype=float)


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    """1 - cosine similarity; two null vectors are at distance 0."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 and norm_b == 0:
        return 0.0
    if norm_a == 0 or norm_b == 0:
        return 1.0
    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return max(0.0, 1.0 - similarity)


class MahalanobisDistance:
    """Mahalanobis distance with a fixed metric matrix.

    The matrix is usually the pseudo-inverse of the library's feature
    covariance, so that correlated features are not counted twice.
    """

    def __init__(self, matrix: Optional[np.ndarray]):
        # None means the identity, i.e. the euclidean distance
        self.matrix = None if matrix is None else np.asarray(matrix, dtype=float)

    @classmethod
    def fit(cls, entries: Sequence[CacheEntry]) -> "MahalanobisDistance":
        if len(entries) < 2:
            return cls(None)
        covariance = np.atleast_2d(np.cov(as_matrix(entries), rowvar=False))
        return cls(np.linalg.pinv(covariance))

    def __call__(self, a: np.ndarray, b: np.ndarray) -> float:
        if self.matrix is None:
            return euclidean_distance(a, b)
        delta = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
        # Clamp tiny negative values from floating point error
        return float(np.sqrt(max(0.0, delta @ self.matrix @ delta)))


class ForestDistance:
    """Outlier score of candidates against an isolation forest fitted on the seeds.

    Pairwise comparisons (deduplication, chaining) fall back to the euclidean
    distance.
    """

    def __init__(self, n_estimators: int = 100, random_state: Optional[int] = 0):
        self.n_estimators = n_estimators
        self.random_state = random_state

    def __call__(self, a: np.ndarray, b: np.ndarray) -> float:
        return euclidean_distance(a, b)

    def group_distances(self, seeds: np.ndarray, candidates: np.ndarray) -> np.ndarray:
        forest = IsolationForest(
            n_estimators=self.n_estimators, random_state=self.random_state
        )
        forest.fit(seeds)
        # score_samples is higher for inliers; its opposite is in (0, 1]
        return -forest.score_samples(candidates)


def group_distances(
    metric: DistanceMetric, seeds: np.ndarray, candidates: np.ndarray
) -> np.ndarray:
    """Aggregate distance of each candidate to a group of seeds.

    Uses the metric's own group_distances when it has one, otherwise the
    distance to the seeds' centroid.
    """
    if len(candidates) == 0:
        return np.array([])
    if hasattr(metric, "group_distances"):
        return np.asarray(metric.group_distances(seeds, candidates), dtype=float)
    centroid = seeds.mean(axis=0)
    return np.array([metric(centroid, candidate) for candidate in candidates])


def get_distance(name: str, library: Sequence[CacheEntry] = ()) -> DistanceMetric:
    """Get a distance metric by name.

    Args:
        name: euclidean, cosine, mahalanobis or forest
        library: Analyzed songs, used to fit the mahalanobis matrix

    Raises:
        ConfigError: If the name is unknown
    """
    if name == "euclidean":
        return euclidean_distance
    if name == "cosine":
        return cosine_distance
    if name == "mahalanobis":
        return MahalanobisDistance.fit(library)
    if name == "forest":
        return ForestDistance()
    raise ConfigError(
        f"Please choose a distance name between 'euclidean', 'cosine', 'mahalanobis' and 'forest', got '{name}'."
    )
