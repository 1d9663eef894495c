#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Back-Projection Correspondence Module

Normal-weighted, multi-scale nearest-neighbour correspondence search
between a source and a target point cloud.

For every source point p with normal n_p:
  1. d = normalize(p - center)
  2. query the target index at p + g_i * d with k * m_i neighbours for each
     (g_i, m_i) in zip(gain_center, gain_k)
  3. score every returned neighbour j by  dist_j * (2 - (n_p · n_j)^2)
  4. keep the minimum-score neighbour over all scales and report its raw
     squared distance
  5. accept if that distance <= max_distance

Querying on both sides of p along the viewing direction compensates for
sampling-density differences between the two clouds; the normal weight
favours matches on similarly oriented surface patches.

The search is read-only over its inputs and keeps no state between calls
besides the configured inputs.
"""

from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np

from . import config as cfg
from .point_types import (
    STATUS_MISSING_INPUT,
    STATUS_MISSING_NORMALS,
    STATUS_OK,
    STATUS_UNSUPPORTED_POINT_TYPE,
    Correspondence,
    CorrespondenceResult,
    PointCloudWithNormals,
    is_same_point_type,
)
from .spatial_index import KDTreeIndex, SpatialIndex


class BackProjectionCorrespondenceEstimator:
    """
    Multi-resolution back-projection correspondence estimator.

    Usage:
        est = BackProjectionCorrespondenceEstimator(k=10)
        est.set_input_source(source)
        est.set_input_target(target)          # builds a KDTreeIndex
        est.set_center(camera_position)
        result = est.determine_correspondences(max_distance=0.5)
        if result.ok:
            for c in result: ...
    """

    def __init__(self,
                 k: int = cfg.CORR_K,
                 gain_center: Sequence[float] = cfg.CORR_GAIN_CENTER,
                 gain_k: Sequence[int] = cfg.CORR_GAIN_K,
                 center: Optional[np.ndarray] = None,
                 verbose: Optional[bool] = None):
        """
        Args:
            k: Base neighbour count
            gain_center: Offsets along the back-projection direction
            gain_k: Neighbour count multipliers, one per offset
            center: Reference point the back-projection direction starts from
            verbose: Print rejected-configuration warnings
        """
        if int(k) < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        if len(gain_center) != len(gain_k):
            raise ValueError(f"gain_center ({len(gain_center)}) and gain_k ({len(gain_k)}) "
                             f"must have equal length")
        if any(int(m) < 1 for m in gain_k):
            raise ValueError(f"gain_k entries must be >= 1, got {tuple(gain_k)}")

        self.k = int(k)
        self.gain_center = tuple(float(g) for g in gain_center)
        self.gain_k = tuple(int(m) for m in gain_k)
        self.verbose = cfg.VERBOSE_DEBUG if verbose is None else bool(verbose)

        self._center = np.zeros(3)
        if center is not None:
            self.set_center(center)

        self._source: Optional[PointCloudWithNormals] = None
        self._target: Optional[PointCloudWithNormals] = None
        self._tree: Optional[SpatialIndex] = None
        self._indices: Optional[np.ndarray] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "BackProjectionCorrespondenceEstimator":
        return cls(
            k=config.get('CORR_K', cfg.CORR_K),
            gain_center=config.get('CORR_GAIN_CENTER', cfg.CORR_GAIN_CENTER),
            gain_k=config.get('CORR_GAIN_K', cfg.CORR_GAIN_K),
            center=config.get('CORR_CENTER'),
            verbose=config.get('VERBOSE'),
        )

    # =========================================================================
    # Inputs
    # =========================================================================

    def set_input_source(self, cloud: PointCloudWithNormals) -> None:
        self._source = cloud

    def set_input_target(self, cloud: PointCloudWithNormals,
                         index: Optional[SpatialIndex] = None) -> None:
        """Set target cloud; builds a KDTreeIndex over it when index is None."""
        self._target = cloud
        self._tree = index if index is not None else KDTreeIndex(cloud.xyz())

    def set_center(self, center: np.ndarray) -> None:
        self._center = np.asarray(center, dtype=float).reshape(3).copy()

    def set_indices(self, indices: Optional[Iterable[int]]) -> None:
        """Restrict the search to a subset of source indices (None = all)."""
        self._indices = None if indices is None else np.asarray(list(indices), dtype=int)

    @property
    def center(self) -> np.ndarray:
        return self._center.copy()

    # =========================================================================
    # Search
    # =========================================================================

    def _init_compute(self) -> CorrespondenceResult:
        if self._source is None or self._target is None or self._tree is None:
            return self._fail(STATUS_MISSING_INPUT,
                              "Source and target clouds must be set before searching")
        if not self._source.has_normals or not self._target.has_normals:
            return self._fail(STATUS_MISSING_NORMALS,
                              "Datasets containing normals for source/target have not been given")
        if not is_same_point_type(self._source, self._target):
            return self._fail(STATUS_UNSUPPORTED_POINT_TYPE,
                              f"Source point type {self._source.point_type} differs from "
                              f"target point type {self._target.point_type}")
        return CorrespondenceResult(status=STATUS_OK)

    def _fail(self, status: str, message: str) -> CorrespondenceResult:
        if self.verbose:
            print(f"[CORR] WARNING: {message}")
        return CorrespondenceResult(status=status, message=message)

    def back_projection_direction(self, point: np.ndarray) -> np.ndarray:
        """
        Unit direction from center to point.

        A point at the center has no direction; the zero vector is returned
        so every scale queries at the point itself.
        """
        d = np.asarray(point, dtype=float) - self._center
        norm = np.linalg.norm(d)
        if norm == 0.0:
            return np.zeros(3)
        return d / norm

    def determine_correspondences(self, max_distance: float) -> CorrespondenceResult:
        """
        Find the best target match for every source point.

        Args:
            max_distance: Maximum accepted raw squared distance

        Returns:
            CorrespondenceResult; correspondences follow source iteration
            order with rejected points omitted. On a configuration failure
            the status is set and no correspondences are produced.
        """
        result = self._init_compute()
        if not result.ok:
            return result

        src_xyz = self._source.xyz()
        src_normals = self._source.normals
        tgt_normals = self._target.normals
        indices = self._indices if self._indices is not None else range(len(self._source))

        for idx in indices:
            idx = int(idx)
            p = src_xyz[idx]
            n_p = src_normals[idx]
            direction = self.back_projection_direction(p)

            min_score = np.inf
            min_index = -1
            min_output_dist = 0.0

            for gain, mult in zip(self.gain_center, self.gain_k):
                nn_indices, nn_dists = self._tree.query(p + gain * direction, self.k * mult)
                if len(nn_indices) == 0:
                    continue

                cos_angle = tgt_normals[nn_indices] @ n_p
                scores = nn_dists * (2.0 - cos_angle * cos_angle)
                j = int(np.argmin(scores))

                if scores[j] < min_score:
                    min_score = float(scores[j])
                    min_index = int(nn_indices[j])
                    min_output_dist = float(nn_dists[j])

            if min_index < 0 or min_output_dist > max_distance:
                continue

            result.correspondences.append(Correspondence(
                source_index=idx,
                target_index=min_index,
                distance=min_output_dist,
            ))

        if self.verbose:
            n_query = len(indices)
            print(f"[CORR] {len(result)}/{n_query} correspondences (max_distance={max_distance})")
        return result
