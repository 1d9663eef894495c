"""Point cloud and correspondence containers for the back-projection search."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np

# Correspondence search status codes
STATUS_OK = "OK"
STATUS_MISSING_INPUT = "MISSING_INPUT"
STATUS_MISSING_NORMALS = "MISSING_NORMALS"
STATUS_UNSUPPORTED_POINT_TYPE = "UNSUPPORTED_POINT_TYPE"


@dataclass
class PointCloudWithNormals:
    """
    Indexed point cloud with an optional normal channel.

    positions: (N, D) array, D >= 3; the first three columns are x, y, z.
    normals:   (N, 3) unit normals, or None when the cloud has no normal
               channel.
    """

    positions: np.ndarray
    normals: Optional[np.ndarray] = None

    def __post_init__(self):
        self.positions = np.asarray(self.positions)
        if self.positions.ndim != 2 or self.positions.shape[1] < 3:
            raise ValueError(f"positions must be (N, >=3), got {self.positions.shape}")
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=float)
            if self.normals.shape != (self.positions.shape[0], 3):
                raise ValueError(f"normals must be ({self.positions.shape[0]}, 3), "
                                 f"got {self.normals.shape}")

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    @property
    def has_normals(self) -> bool:
        return self.normals is not None

    @property
    def point_type(self) -> Tuple[np.dtype, int]:
        """Structural signature: (dtype, fields per point)."""
        return self.positions.dtype, int(self.positions.shape[1])

    def xyz(self) -> np.ndarray:
        return np.asarray(self.positions[:, :3], dtype=float)


def is_same_point_type(a: PointCloudWithNormals, b: PointCloudWithNormals) -> bool:
    """True when both clouds can be compared field-for-field without conversion."""
    return a.point_type == b.point_type


@dataclass(frozen=True)
class Correspondence:
    """Accepted match of one source point to one target point."""

    source_index: int
    target_index: int
    distance: float  # raw squared distance of the selected neighbor


@dataclass
class CorrespondenceResult:
    """Outcome of one correspondence search call."""

    status: str = STATUS_OK
    correspondences: List[Correspondence] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def __len__(self) -> int:
        return len(self.correspondences)

    def __iter__(self) -> Iterator[Correspondence]:
        return iter(self.correspondences)

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(source_indices, target_indices, distances) as numpy arrays."""
        src = np.array([c.source_index for c in self.correspondences], dtype=int)
        tgt = np.array([c.target_index for c in self.correspondences], dtype=int)
        dist = np.array([c.distance for c in self.correspondences], dtype=float)
        return src, tgt, dist
