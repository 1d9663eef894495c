#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error-State Kalman Filter Module

Error-State Kalman Filter (ESKF) fusing high-rate inertial samples with
lower-rate absolute pose observations (position + orientation + scale).

Nominal state:
    p (3): position [m]
    v (3): velocity [m/s]
    q (4): orientation quaternion [w, x, y, z]
    s (1): global scale factor (taken from the latest observation)

Error state / covariance P (9x9):
    δp (0:3): position error
    δv (3:6): velocity error
    δθ (6:9): small-angle rotation error

The filter is single-threaded: predict() and observe() must be serialized
by the caller.
"""

import sys
from enum import IntEnum
from math import exp, log, sqrt
from typing import Any, Dict, Optional

import numpy as np
import scipy.linalg as linalg
from filterpy.common import pretty_str
from filterpy.stats import logpdf

from . import config as cfg
from .math_utils import (
    extract_scale,
    normalize_rotation,
    quat_align,
    quat_boxplus,
    quat_to_rot,
    rot_to_quat,
    skew_symmetric,
)
from .numerical_checks import assert_finite, check_quaternion, ensure_covariance_valid


class TrackingState(IntEnum):
    """Filter lifecycle. init() is the only transition."""
    UNINITIALIZED = 0
    TRACKING = 1


class ErrorStateEKF:
    """
    Error-State Kalman Filter for inertial prediction + pose correction.

    Operations:
      - init(T, v):            set nominal state from a pose, P = 0.5*I
      - predict(acc, omega, t): strapdown integration + covariance propagation
      - observe(T, t):          pose correction (7D measurement)
      - get_state():            4x4 pose [scale*R | p]

    Covariance update after observe() defaults to the simplified form
    P -= K H P. covariance_update="joseph" selects
    P = (I - KH) P (I - KH)^T + K R K^T instead.
    """

    def __init__(self,
                 process_noise: Optional[np.ndarray] = None,
                 observation_noise: Optional[np.ndarray] = None,
                 gravity: Optional[np.ndarray] = None,
                 covariance_update: str = "simple",
                 condition_covariance: bool = False,
                 verbose: Optional[bool] = None):
        """
        Initialize ESKF.

        Args:
            process_noise: 9x9 continuous process noise Q (scaled by dt)
            observation_noise: 7x7 observation noise R
            gravity: World-frame gravity vector (3,)
            covariance_update: "simple" or "joseph"
            condition_covariance: Symmetrize + jitter P after every step
            verbose: Per-sample debug output (defaults to config.VERBOSE_DEBUG)
        """
        dim_x = cfg.ERROR_STATE_DIM
        dim_z = cfg.OBSERVATION_DIM

        self.Q = np.array(process_noise if process_noise is not None
                          else cfg.build_process_noise(), dtype=float)
        self.R = np.array(observation_noise if observation_noise is not None
                          else cfg.build_observation_noise(), dtype=float)
        self.gravity = np.array(gravity if gravity is not None else cfg.GRAVITY,
                                dtype=float).reshape(-1)

        if self.Q.shape != (dim_x, dim_x):
            raise ValueError(f"Process noise must be {dim_x}x{dim_x}, got {self.Q.shape}")
        if self.R.shape != (dim_z, dim_z):
            raise ValueError(f"Observation noise must be {dim_z}x{dim_z}, got {self.R.shape}")
        if self.gravity.shape != (3,):
            raise ValueError(f"Gravity must have 3 components, got {self.gravity.shape}")
        if covariance_update not in cfg.COVARIANCE_UPDATE_MODES:
            raise ValueError(f"covariance_update must be one of {cfg.COVARIANCE_UPDATE_MODES}, "
                             f"got {covariance_update!r}")

        self.covariance_update = covariance_update
        self.condition_covariance = bool(condition_covariance)
        self.verbose = cfg.VERBOSE_DEBUG if verbose is None else bool(verbose)

        # Nominal state
        self._pos = np.zeros(3)
        self._vel = np.zeros(3)
        self._qua = np.array([1.0, 0.0, 0.0, 0.0])
        self._scale = 1.0
        self._P = None
        self._last_ns = None
        self._tracking_state = TrackingState.UNINITIALIZED

        self._I = np.eye(dim_x)

        # Innovation diagnostics of the last accepted observation
        self.y = np.zeros(dim_z)
        self.S = np.zeros((dim_z, dim_z))
        self.SI = np.zeros((dim_z, dim_z))
        self.K = np.zeros((dim_x, dim_z))

        self._log_likelihood = log(sys.float_info.min)
        self._likelihood = sys.float_info.min
        self._mahalanobis = None

        self._stats = {
            "predict_count": 0,
            "observe_count": 0,
            "warmup_count": 0,
            "rejected_timestamp_count": 0,
            "rejected_observation_count": 0,
        }

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ErrorStateEKF":
        """Build a filter from the flat dict returned by config.load_config()."""
        return cls(
            process_noise=config.get('PROCESS_NOISE'),
            observation_noise=config.get('OBSERVATION_NOISE'),
            gravity=config.get('GRAVITY'),
            covariance_update=config.get('COVARIANCE_UPDATE', 'simple'),
            condition_covariance=config.get('CONDITION_COVARIANCE', False),
            verbose=config.get('VERBOSE'),
        )

    # =========================================================================
    # Read-only state access
    # =========================================================================

    @property
    def tracking_state(self) -> TrackingState:
        return self._tracking_state

    @property
    def position(self) -> np.ndarray:
        return self._pos.copy()

    @property
    def velocity(self) -> np.ndarray:
        return self._vel.copy()

    @property
    def orientation(self) -> np.ndarray:
        """Unit quaternion [w, x, y, z]."""
        return self._qua.copy()

    @property
    def scale(self) -> float:
        return self._scale

    @property
    def covariance(self) -> Optional[np.ndarray]:
        """Error-state covariance (None before init)."""
        return None if self._P is None else self._P.copy()

    @property
    def last_update_time_ns(self) -> Optional[int]:
        return self._last_ns

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    # =========================================================================
    # Filter operations
    # =========================================================================

    def get_state(self) -> np.ndarray:
        """Current pose: rotation block scale*R(q), translation p."""
        T = np.eye(4)
        T[:3, :3] = self._scale * quat_to_rot(self._qua)
        T[:3, 3] = self._pos
        return T

    def init(self, T: np.ndarray, velocity: np.ndarray) -> None:
        """
        Initialize nominal state from a pose and a velocity.

        The rotation is projected onto SO(3) and the quaternion normalized
        before use. Scale restarts at 1 and P at 0.5*I.

        Args:
            T: 4x4 pose (rotation block may carry a positive scale)
            velocity: Initial velocity (3,)
        """
        T = np.asarray(T, dtype=float)
        q, _ = check_quaternion(rot_to_quat(normalize_rotation(T)), name="init_q")

        self._pos = T[:3, 3].copy()
        self._qua = q
        self._vel = np.asarray(velocity, dtype=float).reshape(3).copy()
        self._scale = 1.0
        self._P = cfg.INITIAL_COVARIANCE * np.eye(cfg.ERROR_STATE_DIM)
        self._tracking_state = TrackingState.TRACKING

        if self.verbose:
            print(f"[EKF] init q={self._qua} p={self._pos} v={self._vel}")

    def predict(self, acc: np.ndarray, omega: np.ndarray, timestamp_ns: int) -> bool:
        """
        Propagate state and covariance with one inertial sample.

        The first sample (or any sample before init) only records the
        reference timestamp. Repeated or decreasing timestamps are rejected
        the same way.

        Args:
            acc: Body-frame specific force [m/s²]
            omega: Body-frame angular velocity [rad/s]
            timestamp_ns: Sample timestamp [ns]

        Returns:
            True if the state was propagated
        """
        timestamp_ns = int(timestamp_ns)
        if not self._is_updatable(timestamp_ns):
            self._last_ns = timestamp_ns
            return False

        dt = (timestamp_ns - self._last_ns) * 1e-9
        self._last_ns = timestamp_ns

        acc = np.asarray(acc, dtype=float).reshape(3)
        omega = np.asarray(omega, dtype=float).reshape(3)

        # Predict state
        R = quat_to_rot(self._qua)
        nominal_acc = R @ acc - self.gravity
        self._pos = self._pos + self._vel * dt + 0.5 * nominal_acc * dt * dt
        self._vel = self._vel + nominal_acc * dt
        self._qua = quat_boxplus(self._qua, omega * dt)

        # Propagate uncertainty
        F = self.calc_F(self._qua, acc, dt)
        self._P = F @ self._P @ F.T + self.Q * dt
        if self.condition_covariance:
            self._P = ensure_covariance_valid(self._P, label="EKF-Predict", verbose=self.verbose)

        self._stats["predict_count"] += 1
        if self.verbose:
            print(f"[EKF] predict dt={dt:.6f} vel={self._vel} n-acc={nominal_acc} acc={acc}")
        return True

    def observe(self, T: np.ndarray, timestamp_ns: Optional[int] = None) -> bool:
        """
        Correct the state with an absolute pose observation.

        Measurement z = [t_obs, q_obs] (7D). The observed rotation block is
        split into scale (mean column norm) and its nearest rotation.

        Args:
            T: 4x4 observed pose, rotation block possibly scaled
            timestamp_ns: Observation timestamp [ns], logging only

        Returns:
            True if the correction was applied, False if it was rejected
            (filter not initialized, non-finite input, or S not positive
            definite)
        """
        if self._tracking_state != TrackingState.TRACKING:
            print("[EKF] WARNING: observe() before init(), rejecting observation")
            self._stats["rejected_observation_count"] += 1
            return False

        T = np.asarray(T, dtype=float)
        if not assert_finite("observed_pose", T, t=timestamp_ns):
            self._stats["rejected_observation_count"] += 1
            return False

        scale = extract_scale(T)
        if not scale > 0.0:
            print(f"[EKF] WARNING: Non-positive observation scale {scale:.3e}, rejecting update")
            self._stats["rejected_observation_count"] += 1
            return False

        R_obs = normalize_rotation(T)
        q_obs = quat_align(self._qua, rot_to_quat(R_obs))
        t_obs = T[:3, 3]

        if self.verbose:
            print(f"[EKF] pre q={self._qua} p={self._pos}")
            print(f"[EKF] obs q={q_obs} p={t_obs} s={scale:.4f}")

        # Observation jacobian (7x9)
        H = self.calc_H(self._qua)
        PHT = self._P @ H.T
        # Innovation covariance (7x7)
        S = H @ PHT + self.R

        try:
            S_factor = linalg.cho_factor(S, lower=True)
        except np.linalg.LinAlgError:
            print(f"[EKF] WARNING: Innovation covariance not positive definite at t={timestamp_ns}, "
                  f"rejecting update")
            self._stats["rejected_observation_count"] += 1
            return False

        # Kalman gain (9x7): K = P H^T S^-1
        K = linalg.cho_solve(S_factor, PHT.T).T
        # Error vector (7)
        error = self.to_vec(t_obs, q_obs) - self.to_vec(self._pos, self._qua)
        dx = K @ error

        # Update nominal state
        self._pos = self._pos + dx[0:3]
        self._vel = self._vel + dx[3:6]
        self._qua = quat_boxplus(self._qua, dx[6:9])
        self._scale = scale

        # Update error-state covariance
        if self.covariance_update == "joseph":
            I_KH = self._I - K @ H
            self._P = I_KH @ self._P @ I_KH.T + K @ self.R @ K.T
        else:
            self._P = self._P - K @ H @ self._P
        if self.condition_covariance:
            self._P = ensure_covariance_valid(self._P, label="EKF-Observe", verbose=self.verbose)

        self.y = error
        self.S = S
        self.SI = linalg.cho_solve(S_factor, np.eye(S.shape[0]))
        self.K = K
        self._log_likelihood = None
        self._likelihood = None
        self._mahalanobis = None

        self._stats["observe_count"] += 1
        if self.verbose:
            print(f"[EKF] post q={self._qua} p={self._pos}")
        return True

    def _is_updatable(self, timestamp_ns: int) -> bool:
        if self._tracking_state != TrackingState.TRACKING or self._last_ns is None:
            self._stats["warmup_count"] += 1
            return False
        if timestamp_ns <= self._last_ns:
            print(f"[EKF] WARNING: Non-increasing IMU timestamp {timestamp_ns} <= {self._last_ns}, "
                  f"resetting reference")
            self._stats["rejected_timestamp_count"] += 1
            return False
        return True

    # =========================================================================
    # Jacobians
    # =========================================================================

    @staticmethod
    def calc_F(q: np.ndarray, acc: np.ndarray, dt: float) -> np.ndarray:
        """
        Error-state transition (9x9).

        F = I + [[0, I*dt, 0], [0, 0, -[R a]x * dt], [0, 0, 0]]
        Gravity is constant and has no Jacobian.
        """
        F = np.eye(cfg.ERROR_STATE_DIM)
        F[0:3, 3:6] = np.eye(3) * dt
        F[3:6, 6:9] = -skew_symmetric(quat_to_rot(q) @ acc) * dt
        return F

    @staticmethod
    def calc_H(q: np.ndarray) -> np.ndarray:
        """
        Observation jacobian (7x9).

        Position is observed directly; the quaternion block maps a
        small-angle perturbation δθ to dq = 0.5 * Q(q) δθ.
        """
        w, x, y, z = q
        Q = 0.5 * np.array([
            [-x, -y, -z],
            [ w, -z,  y],
            [ z,  w, -x],
            [-y,  x,  w],
        ])
        H = np.zeros((cfg.OBSERVATION_DIM, cfg.ERROR_STATE_DIM))
        H[0:3, 0:3] = np.eye(3)
        H[3:7, 6:9] = Q
        return H

    @staticmethod
    def to_vec(p: np.ndarray, q: np.ndarray) -> np.ndarray:
        """Stack position and quaternion [w, x, y, z] into a 7-vector."""
        return np.concatenate([np.asarray(p, dtype=float).reshape(3),
                               np.asarray(q, dtype=float).reshape(4)])

    # =========================================================================
    # Innovation statistics
    # =========================================================================

    @property
    def log_likelihood(self):
        """log-likelihood of the last measurement."""
        if self._log_likelihood is None:
            self._log_likelihood = logpdf(x=self.y, cov=self.S)
        return self._log_likelihood

    @property
    def likelihood(self):
        """Computed from the log-likelihood."""
        if self._likelihood is None:
            self._likelihood = exp(self.log_likelihood)
            if self._likelihood == 0:
                self._likelihood = sys.float_info.min
        return self._likelihood

    @property
    def mahalanobis(self):
        """Mahalanobis distance of innovation."""
        if self._mahalanobis is None:
            self._mahalanobis = sqrt(float(self.y @ self.SI @ self.y))
        return self._mahalanobis

    def __repr__(self):
        return '\n'.join([
            'ErrorStateEKF object',
            pretty_str('tracking_state', self._tracking_state.name),
            pretty_str('p', self._pos),
            pretty_str('v', self._vel),
            pretty_str('q', self._qua),
            pretty_str('scale', self._scale),
            pretty_str('P', self._P),
            pretty_str('Q', self.Q),
            pretty_str('R', self.R),
            pretty_str('K', self.K),
            pretty_str('y', self.y),
            pretty_str('S', self.S),
        ])
