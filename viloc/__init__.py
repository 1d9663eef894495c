"""
VILOC (Visual-Inertial Localization Core) Package

Pose-estimation core of a visual-inertial localization pipeline:

- ekf: Error-state Kalman filter fusing IMU samples (predict) with
  absolute pose observations carrying a global scale (observe)
- correspondence: Normal-weighted multi-scale back-projection
  correspondence search between two point clouds with normals

Submodules:
- config: YAML configuration loading and default constants
- math_utils: Quaternion operations, hat operator, pose helpers
- numerical_checks: NaN/inf tripwires, covariance validation
- ekf: ErrorStateEKF, TrackingState
- point_types: PointCloudWithNormals, Correspondence, CorrespondenceResult
- spatial_index: SpatialIndex protocol, KDTreeIndex (scipy cKDTree)
- correspondence: BackProjectionCorrespondenceEstimator

Usage:
    # Import specific modules (lazy loading)
    from viloc import ekf
    from viloc import correspondence

    # Or import specific classes
    from viloc.config import load_config
    from viloc.ekf import ErrorStateEKF
    from viloc.correspondence import BackProjectionCorrespondenceEstimator
    from viloc.point_types import PointCloudWithNormals
"""

__version__ = "1.0.0"

# Lazy module imports - access as viloc.ekf, viloc.correspondence, etc.
# This avoids importing scipy/filterpy until a submodule is used
import importlib

# Available submodules
_SUBMODULES = {
    "config", "math_utils", "numerical_checks", "ekf",
    "point_types", "spatial_index", "correspondence",
}


def __getattr__(name):
    """Lazy module loading to avoid importing all dependencies at once."""
    if name in _SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module  # Cache in globals to avoid repeated import
        return module
    raise AttributeError(f"module 'viloc' has no attribute '{name}'")


def __dir__():
    """List available submodules."""
    return list(_SUBMODULES)


__all__ = list(_SUBMODULES)
