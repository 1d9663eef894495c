import numpy as np
from scipy.spatial.transform import Rotation as R_scipy

from viloc.math_utils import (
    compose_pose,
    extract_scale,
    normalize_rotation,
    quat_align,
    quat_boxplus,
    quat_exp,
    quat_multiply,
    quat_to_rot,
    rot_to_quat,
    skew_symmetric,
)


def test_quat_exp_of_zero_is_identity():
    q = quat_exp(np.zeros(3))
    assert np.array_equal(q, np.array([1.0, 0.0, 0.0, 0.0]))


def test_quat_exp_is_unit_norm():
    rng = np.random.default_rng(3)
    for v in [np.array([1e-12, 0.0, 0.0]), np.array([0.0, 0.0, np.pi]), *rng.normal(scale=5.0, size=(20, 3))]:
        assert abs(np.linalg.norm(quat_exp(v)) - 1.0) < 1e-12


def test_quat_exp_half_turn_about_z():
    q = quat_exp(np.array([0.0, 0.0, np.pi]))
    assert np.allclose(q, [0.0, 0.0, 0.0, 1.0], atol=1e-12)


def test_quat_exp_matches_scipy_rotvec():
    v = np.array([0.3, -0.4, 0.25])
    R_expected = R_scipy.from_rotvec(v).as_matrix()
    assert np.allclose(quat_to_rot(quat_exp(v)), R_expected, atol=1e-12)


def test_boxplus_composes_rotations():
    q = rot_to_quat(R_scipy.from_euler('zyx', [0.4, 0.1, -0.2]).as_matrix())
    dtheta = np.array([0.01, -0.02, 0.03])
    q_new = quat_boxplus(q, dtheta)
    expected = quat_to_rot(q) @ R_scipy.from_rotvec(dtheta).as_matrix()
    assert np.allclose(quat_to_rot(q_new), expected, atol=1e-12)
    assert abs(np.linalg.norm(q_new) - 1.0) < 1e-12


def test_quat_multiply_identity():
    q = np.array([0.5, 0.5, -0.5, 0.5])
    assert np.allclose(quat_multiply(q, np.array([1.0, 0.0, 0.0, 0.0])), q)


def test_rot_quat_round_trip_all_branches():
    for euler in ([0.1, 0.2, 0.3], [np.pi - 0.01, 0.0, 0.0], [0.0, np.pi - 0.01, 0.0], [0.0, 0.0, np.pi - 0.01]):
        R = R_scipy.from_euler('zyx', euler).as_matrix()
        assert np.allclose(quat_to_rot(rot_to_quat(R)), R, atol=1e-10)


def test_skew_symmetric_is_cross_product():
    v = np.array([1.0, -2.0, 0.5])
    u = np.array([0.3, 0.7, -1.1])
    S = skew_symmetric(v)
    assert np.allclose(S @ u, np.cross(v, u))
    assert np.allclose(S, -S.T)


def test_scale_and_rotation_extraction():
    R = R_scipy.from_euler('zyx', [0.7, -0.3, 0.2]).as_matrix()
    T = compose_pose(R, np.array([1.0, 2.0, 3.0]), scale=2.5)
    assert abs(extract_scale(T) - 2.5) < 1e-12
    assert np.allclose(normalize_rotation(T), R, atol=1e-12)
    assert np.allclose(T[:3, 3], [1.0, 2.0, 3.0])


def test_normalize_rotation_projects_noisy_block():
    R = R_scipy.from_euler('zyx', [0.2, 0.1, 0.0]).as_matrix()
    T = np.eye(4)
    T[:3, :3] = R + 1e-3 * np.array([[0.0, 1.0, 0.0], [0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    R_hat = normalize_rotation(T)
    assert np.allclose(R_hat @ R_hat.T, np.eye(3), atol=1e-12)
    assert abs(np.linalg.det(R_hat) - 1.0) < 1e-12
    assert np.allclose(R_hat, R, atol=2e-3)


def test_quat_align_flips_to_reference_hemisphere():
    q_ref = np.array([0.9, 0.1, 0.0, np.sqrt(1 - 0.82)])
    q_ref = q_ref / np.linalg.norm(q_ref)
    assert np.allclose(quat_align(q_ref, -q_ref), q_ref)
    assert np.allclose(quat_align(q_ref, q_ref), q_ref)
