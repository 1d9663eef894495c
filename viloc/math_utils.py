#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Geometry Utilities Module
=========================

Quaternion operations, rotation matrices and pose helpers shared by the
error-state filter.

Quaternion Convention:
----------------------
All quaternions use Hamilton convention with [w, x, y, z] ordering:
- w is the scalar (real) part
- [x, y, z] is the vector (imaginary) part

Pose Convention:
----------------
Poses are 4x4 homogeneous matrices. The top-left 3x3 block is a rotation
that may be multiplied by a positive uniform scale s:

    T = [ s*R  t ]
        [  0   1 ]

Key Operations:
---------------
- quat_multiply: Hamilton quaternion product
- quat_exp: rotation vector -> unit quaternion
- quat_boxplus: q ⊗ exp(δθ), renormalized
- skew_symmetric: [v]× hat matrix
- extract_scale / normalize_rotation: split a scaled rotation block
"""

import numpy as np


# =============================================================================
# Quaternion Operations (all use [w, x, y, z] Hamilton convention)
# =============================================================================

IDENTITY_QUAT = np.array([1.0, 0.0, 0.0, 0.0])


def quat_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """
    Quaternion multiplication: q1 ⊗ q2, both in [w,x,y,z] format.

    Args:
        q1: First quaternion [w, x, y, z]
        q2: Second quaternion [w, x, y, z]

    Returns:
        Product quaternion [w, x, y, z]
    """
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array([
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2
    ])


def quat_normalize(q: np.ndarray) -> np.ndarray:
    """
    Normalize quaternion to unit length.

    A zero-norm input has no direction to keep and maps to identity.
    """
    norm = np.linalg.norm(q)
    if norm < 1e-10:
        return IDENTITY_QUAT.copy()
    return np.asarray(q, dtype=float) / norm


def quat_to_rot(q: np.ndarray) -> np.ndarray:
    """Convert quaternion [w,x,y,z] to 3x3 rotation matrix."""
    w, x, y, z = q
    return np.array([
        [1-2*(y*y+z*z), 2*(x*y-w*z),   2*(x*z+w*y)],
        [2*(x*y+w*z),   1-2*(x*x+z*z), 2*(y*z-w*x)],
        [2*(x*z-w*y),   2*(y*z+w*x),   1-2*(x*x+y*y)]
    ])


def rot_to_quat(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion [w,x,y,z]."""
    trace = np.trace(R)
    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2,1] - R[1,2]) * s
        y = (R[0,2] - R[2,0]) * s
        z = (R[1,0] - R[0,1]) * s
    else:
        if R[0,0] > R[1,1] and R[0,0] > R[2,2]:
            s = 2.0 * np.sqrt(1.0 + R[0,0] - R[1,1] - R[2,2])
            w = (R[2,1] - R[1,2]) / s
            x = 0.25 * s
            y = (R[0,1] + R[1,0]) / s
            z = (R[0,2] + R[2,0]) / s
        elif R[1,1] > R[2,2]:
            s = 2.0 * np.sqrt(1.0 + R[1,1] - R[0,0] - R[2,2])
            w = (R[0,2] - R[2,0]) / s
            x = (R[0,1] + R[1,0]) / s
            y = 0.25 * s
            z = (R[1,2] + R[2,1]) / s
        else:
            s = 2.0 * np.sqrt(1.0 + R[2,2] - R[0,0] - R[1,1])
            w = (R[1,0] - R[0,1]) / s
            x = (R[0,2] + R[2,0]) / s
            y = (R[1,2] + R[2,1]) / s
            z = 0.25 * s
    return quat_normalize(np.array([w, x, y, z]))


def quat_exp(v: np.ndarray) -> np.ndarray:
    """
    Exponential map: rotation vector (3D) -> unit quaternion.

        exp(v) = [cos(|v|/2), sin(|v|/2) * v/|v|]

    A zero vector maps to the identity quaternion.
    """
    v = np.asarray(v, dtype=float).reshape(3)
    theta = np.linalg.norm(v)
    if theta == 0.0:
        return IDENTITY_QUAT.copy()
    half_theta = theta / 2
    axis = v / theta
    return np.array([
        np.cos(half_theta),
        np.sin(half_theta) * axis[0],
        np.sin(half_theta) * axis[1],
        np.sin(half_theta) * axis[2]
    ])


def quat_boxplus(q: np.ndarray, dtheta: np.ndarray) -> np.ndarray:
    """
    Quaternion box-plus operation (manifold update).
    q_new = q ⊕ δθ = q ⊗ exp(δθ)
    """
    return quat_normalize(quat_multiply(q, quat_exp(dtheta)))


def quat_align(q_ref: np.ndarray, q: np.ndarray) -> np.ndarray:
    """
    Pick the sign of q that lies in the same hemisphere as q_ref.

    q and -q encode the same rotation; the component-wise residual used by
    the pose update only makes sense when both operands share a hemisphere.
    """
    if float(np.dot(q_ref, q)) < 0.0:
        return -np.asarray(q, dtype=float)
    return np.asarray(q, dtype=float)


# =============================================================================
# Matrix Operations
# =============================================================================

def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """
    Create skew-symmetric matrix from 3D vector.
    [v]× such that [v]× @ u = v × u (cross product)

    [v]× = [ 0   -vz   vy ]
           [ vz   0   -vx ]
           [-vy   vx   0  ]
    """
    return np.array([
        [0,      -v[2],  v[1]],
        [v[2],    0,    -v[0]],
        [-v[1],   v[0],   0   ]
    ], dtype=float)


# =============================================================================
# Pose Helpers
# =============================================================================

def extract_scale(T: np.ndarray) -> float:
    """
    Uniform scale encoded in the rotation block of a pose.

    Mean Euclidean norm of the three columns of T[:3, :3]. For an exact
    s*R block every column has norm s.
    """
    return float(np.mean(np.linalg.norm(np.asarray(T)[:3, :3], axis=0)))


def normalize_rotation(T: np.ndarray) -> np.ndarray:
    """
    Nearest rotation matrix to the (possibly scaled) 3x3 block of T.

    Polar projection via SVD: R = U @ Vt, with the last singular direction
    flipped when needed so that det(R) = +1.
    """
    U, _, Vt = np.linalg.svd(np.asarray(T, dtype=float)[:3, :3])
    R = U @ Vt
    if np.linalg.det(R) < 0.0:
        U[:, 2] *= -1.0
        R = U @ Vt
    return R


def compose_pose(R: np.ndarray, t: np.ndarray, scale: float = 1.0) -> np.ndarray:
    """Build a 4x4 pose with rotation block scale*R and translation t."""
    T = np.eye(4)
    T[:3, :3] = scale * np.asarray(R, dtype=float)
    T[:3, 3] = np.asarray(t, dtype=float).reshape(3)
    return T
