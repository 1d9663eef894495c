#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration Module
====================

Handles YAML configuration loading and defines the default constants for
the error-state filter and the back-projection correspondence search.

Configuration Structure:
------------------------
The YAML config file contains:
- ekf.process_noise: per-block sigmas for the 9D error state
  (sigma_pos, sigma_vel, sigma_rot)
- ekf.observation_noise: sigmas for the 7D pose observation
  (sigma_pos, sigma_quat)
- ekf.gravity: world-frame gravity vector [m/s²]
- ekf.covariance_update: "simple" (P -= K H P) or "joseph"
- ekf.condition_covariance: symmetrize + eigenvalue jitter after each step
- correspondence: k, max_distance, gain_center, gain_k, center
- verbose: per-sample debug output

Frame Conventions:
------------------
- World frame: gravity expressed as the vector subtracted from the rotated
  specific force, default [0, 0, 9.81] (Z-up)
- Quaternion: [w, x, y, z] Hamilton convention
- Timestamps: integer nanoseconds, monotonic
"""

import os
from typing import Any, Dict

import numpy as np
import yaml

# ========================================
# Debug verbosity control
# ========================================
VERBOSE_DEBUG = False  # Per-sample predict/observe debug

# ========================================
# EKF defaults
# ========================================
ERROR_STATE_DIM = 9   # [δp, δv, δθ]
OBSERVATION_DIM = 7   # [p, q(w,x,y,z)]

SIGMA_PROC_POS = 0.01    # [m/√s]
SIGMA_PROC_VEL = 0.1     # [m/s/√s]
SIGMA_PROC_ROT = 0.01    # [rad/√s]
SIGMA_OBS_POS = 0.05     # [m]
SIGMA_OBS_QUAT = 0.01    # [-]

GRAVITY = np.array([0.0, 0.0, 9.81])
INITIAL_COVARIANCE = 0.5

COVARIANCE_UPDATE_MODES = ("simple", "joseph")

# ========================================
# Back-projection defaults
# ========================================
CORR_K = 10
CORR_MAX_DISTANCE = 1.0          # squared distance, cloud units²
CORR_GAIN_CENTER = (-0.2, 0.0, 0.2)
CORR_GAIN_K = (1, 2, 3)
CORR_CENTER = (0.0, 0.0, 0.0)


def build_process_noise(sigma_pos: float = SIGMA_PROC_POS,
                        sigma_vel: float = SIGMA_PROC_VEL,
                        sigma_rot: float = SIGMA_PROC_ROT) -> np.ndarray:
    """Diagonal 9x9 process noise (per second) from per-block sigmas."""
    return np.diag([sigma_pos**2] * 3 + [sigma_vel**2] * 3 + [sigma_rot**2] * 3)


def build_observation_noise(sigma_pos: float = SIGMA_OBS_POS,
                            sigma_quat: float = SIGMA_OBS_QUAT) -> np.ndarray:
    """Diagonal 7x7 observation noise from position/quaternion sigmas."""
    return np.diag([sigma_pos**2] * 3 + [sigma_quat**2] * 4)


def default_config() -> Dict[str, Any]:
    """Flat configuration dictionary built from module defaults."""
    return {
        'PROCESS_NOISE': build_process_noise(),
        'OBSERVATION_NOISE': build_observation_noise(),
        'GRAVITY': GRAVITY.copy(),
        'COVARIANCE_UPDATE': 'simple',
        'CONDITION_COVARIANCE': False,
        'CORR_K': CORR_K,
        'CORR_MAX_DISTANCE': CORR_MAX_DISTANCE,
        'CORR_GAIN_CENTER': tuple(CORR_GAIN_CENTER),
        'CORR_GAIN_K': tuple(CORR_GAIN_K),
        'CORR_CENTER': np.array(CORR_CENTER, dtype=float),
        'VERBOSE': VERBOSE_DEBUG,
    }


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file and convert to flat dictionary format.

    Sections missing from the file keep the module defaults.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Dictionary with configuration parameters:
        - PROCESS_NOISE: 9x9 process noise (per second)
        - OBSERVATION_NOISE: 7x7 observation noise
        - GRAVITY: world gravity vector
        - COVARIANCE_UPDATE: "simple" | "joseph"
        - CONDITION_COVARIANCE: bool
        - CORR_*: back-projection parameters
        - VERBOSE: bool

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
        ValueError: If a value is out of range

    Example:
        >>> config = load_config("configs/viloc_default.yaml")
        >>> kf = ErrorStateEKF.from_config(config)
    """
    if not os.path.isfile(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    result = default_config()

    # ========================================
    # Error-State EKF
    # ========================================
    ekf_cfg = config.get('ekf', {})
    pn = ekf_cfg.get('process_noise', {})
    result['PROCESS_NOISE'] = build_process_noise(
        pn.get('sigma_pos', SIGMA_PROC_POS),
        pn.get('sigma_vel', SIGMA_PROC_VEL),
        pn.get('sigma_rot', SIGMA_PROC_ROT),
    )
    on = ekf_cfg.get('observation_noise', {})
    result['OBSERVATION_NOISE'] = build_observation_noise(
        on.get('sigma_pos', SIGMA_OBS_POS),
        on.get('sigma_quat', SIGMA_OBS_QUAT),
    )
    result['GRAVITY'] = np.array(ekf_cfg.get('gravity', GRAVITY.tolist()), dtype=float)
    if result['GRAVITY'].shape != (3,):
        raise ValueError(f"ekf.gravity must have 3 components, got {result['GRAVITY'].shape}")

    mode = ekf_cfg.get('covariance_update', 'simple')
    if mode not in COVARIANCE_UPDATE_MODES:
        raise ValueError(f"ekf.covariance_update must be one of {COVARIANCE_UPDATE_MODES}, got {mode!r}")
    result['COVARIANCE_UPDATE'] = mode
    result['CONDITION_COVARIANCE'] = bool(ekf_cfg.get('condition_covariance', False))

    # ========================================
    # Back-Projection Correspondence Search
    # ========================================
    corr = config.get('correspondence', {})
    result['CORR_K'] = int(corr.get('k', CORR_K))
    result['CORR_MAX_DISTANCE'] = float(corr.get('max_distance', CORR_MAX_DISTANCE))
    result['CORR_GAIN_CENTER'] = tuple(float(g) for g in corr.get('gain_center', CORR_GAIN_CENTER))
    result['CORR_GAIN_K'] = tuple(int(g) for g in corr.get('gain_k', CORR_GAIN_K))
    result['CORR_CENTER'] = np.array(corr.get('center', CORR_CENTER), dtype=float)
    if len(result['CORR_GAIN_CENTER']) != len(result['CORR_GAIN_K']):
        raise ValueError("correspondence.gain_center and correspondence.gain_k must have equal length")

    result['VERBOSE'] = bool(config.get('verbose', VERBOSE_DEBUG))

    return result
