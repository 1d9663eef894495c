"""
Spatial index interface consumed by the correspondence search.

Any object with a query(point, k) method returning nearest-first
(indices, squared_distances) arrays of length <= k can be used as target
index. KDTreeIndex adapts scipy's cKDTree to that contract.
"""

from __future__ import annotations

from typing import Protocol, Tuple

import numpy as np
from scipy.spatial import cKDTree


class SpatialIndex(Protocol):
    def query(self, point: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        ...


class KDTreeIndex:
    """k-nearest-neighbour index over (N, 3) positions."""

    def __init__(self, points: np.ndarray):
        points = np.asarray(points, dtype=float)
        if points.ndim != 2 or points.shape[1] < 3:
            raise ValueError(f"points must be (N, >=3), got {points.shape}")
        self.n_points = int(points.shape[0])
        # cKDTree cannot be queried when empty
        self._tree = cKDTree(points[:, :3]) if self.n_points > 0 else None

    def __len__(self) -> int:
        return self.n_points

    def query(self, point: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Nearest neighbours of point.

        Returns:
            indices: (m,) int array, nearest first, m = min(k, N)
            sq_dists: (m,) squared Euclidean distances
        """
        k = min(int(k), self.n_points)
        if k <= 0:
            return np.empty(0, dtype=int), np.empty(0, dtype=float)
        dists, indices = self._tree.query(np.asarray(point, dtype=float).reshape(3), k=k)
        dists = np.atleast_1d(dists)
        indices = np.atleast_1d(indices).astype(int)
        return indices, dists * dists
