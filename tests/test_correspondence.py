import numpy as np
import pytest

from viloc.config import default_config
from viloc.correspondence import BackProjectionCorrespondenceEstimator
from viloc.point_types import (
    STATUS_MISSING_INPUT,
    STATUS_MISSING_NORMALS,
    STATUS_OK,
    STATUS_UNSUPPORTED_POINT_TYPE,
    PointCloudWithNormals,
)


def _random_cloud(n=60, seed=0, offset=(0.0, 0.0, 5.0)) -> PointCloudWithNormals:
    rng = np.random.default_rng(seed)
    positions = rng.uniform(-1.0, 1.0, size=(n, 3)) + np.asarray(offset)
    normals = rng.normal(size=(n, 3))
    normals /= np.linalg.norm(normals, axis=1, keepdims=True)
    return PointCloudWithNormals(positions=positions, normals=normals)


def _make_estimator(source, target, k=5, **kwargs) -> BackProjectionCorrespondenceEstimator:
    est = BackProjectionCorrespondenceEstimator(k=k, **kwargs)
    est.set_input_source(source)
    est.set_input_target(target)
    return est


class _BruteForceIndex:
    """Exhaustive nearest-neighbour index with the same query contract."""

    def __init__(self, points):
        self.points = np.asarray(points, dtype=float)

    def query(self, point, k):
        d2 = np.sum((self.points - point) ** 2, axis=1)
        order = np.argsort(d2, kind="stable")[:k]
        return order, d2[order]


def test_identical_clouds_match_themselves():
    cloud = _random_cloud()
    result = _make_estimator(cloud, cloud).determine_correspondences(max_distance=1.0)

    assert result.status == STATUS_OK
    assert len(result) == len(cloud)
    for i, corr in enumerate(result):
        assert corr.source_index == i
        assert corr.target_index == i
        assert corr.distance == 0.0


def test_zero_max_distance_on_shifted_clouds_is_empty():
    source = _random_cloud()
    target = PointCloudWithNormals(positions=source.positions + np.array([0.01, 0.0, 0.0]),
                                   normals=source.normals)
    result = _make_estimator(source, target).determine_correspondences(max_distance=0.0)
    assert result.ok
    assert len(result) == 0


def test_normal_weighting_prefers_aligned_surface():
    # A is closer but its normal is perpendicular; B is farther and tilted 45 deg.
    s45 = np.sqrt(0.5)
    source = PointCloudWithNormals(positions=np.array([[0.0, 0.0, 5.0]]),
                                   normals=np.array([[0.0, 0.0, 1.0]]))
    target = PointCloudWithNormals(
        positions=np.array([[0.11, 0.0, 5.0], [0.0, 0.12, 5.0]]),
        normals=np.array([[1.0, 0.0, 0.0], [0.0, s45, s45]]),
    )
    result = _make_estimator(source, target, k=1).determine_correspondences(max_distance=1.0)

    assert len(result) == 1
    corr = result.correspondences[0]
    assert corr.target_index == 1
    # Raw squared distance, not the weighted score (0.0216)
    assert corr.distance == pytest.approx(0.0144)


def test_max_distance_uses_raw_distance():
    source = PointCloudWithNormals(positions=np.array([[0.0, 0.0, 5.0]]),
                                   normals=np.array([[0.0, 0.0, 1.0]]))
    target = PointCloudWithNormals(positions=np.array([[0.0, 0.12, 5.0]]),
                                   normals=np.array([[0.0, 1.0, 0.0]]))
    est = _make_estimator(source, target, k=1)
    # Weighted score is 2 * 0.0144 but raw distance 0.0144 passes
    assert len(est.determine_correspondences(max_distance=0.02)) == 1
    assert len(est.determine_correspondences(max_distance=0.01)) == 0


def test_rejected_points_are_compacted_in_source_order():
    target = _random_cloud(n=30, seed=4)
    positions = target.positions.copy()
    far = [3, 10, 17]
    positions[far] += 100.0
    source = PointCloudWithNormals(positions=positions, normals=target.normals)

    result = _make_estimator(source, target).determine_correspondences(max_distance=0.5)
    src_idx, tgt_idx, dist = result.as_arrays()

    expected = [i for i in range(30) if i not in far]
    assert src_idx.tolist() == expected
    assert tgt_idx.tolist() == expected
    assert np.all(dist == 0.0)


def test_source_index_subset():
    cloud = _random_cloud()
    est = _make_estimator(cloud, cloud)
    est.set_indices([7, 2, 40])
    result = est.determine_correspondences(max_distance=1.0)
    assert [c.source_index for c in result] == [7, 2, 40]
    assert [c.target_index for c in result] == [7, 2, 40]


def test_point_at_center_does_not_produce_nan():
    cloud = _random_cloud(offset=(0.0, 0.0, 0.0))
    positions = cloud.positions.copy()
    positions[0] = 0.0
    cloud = PointCloudWithNormals(positions=positions, normals=cloud.normals)

    est = _make_estimator(cloud, cloud, center=np.zeros(3))
    assert np.array_equal(est.back_projection_direction(np.zeros(3)), np.zeros(3))
    result = est.determine_correspondences(max_distance=1.0)
    _, tgt_idx, dist = result.as_arrays()
    assert np.all(np.isfinite(dist))
    assert result.correspondences[0].source_index == 0
    assert result.correspondences[0].target_index == 0


def test_custom_index_gives_same_result_as_kdtree():
    source = _random_cloud(seed=1)
    target = _random_cloud(seed=2)

    est_kd = _make_estimator(source, target)
    est_bf = BackProjectionCorrespondenceEstimator(k=5)
    est_bf.set_input_source(source)
    est_bf.set_input_target(target, index=_BruteForceIndex(target.positions))

    res_kd = est_kd.determine_correspondences(max_distance=0.3)
    res_bf = est_bf.determine_correspondences(max_distance=0.3)
    assert len(res_kd) > 0
    src_kd, tgt_kd, d_kd = res_kd.as_arrays()
    src_bf, tgt_bf, d_bf = res_bf.as_arrays()
    assert np.array_equal(src_kd, src_bf)
    assert np.array_equal(tgt_kd, tgt_bf)
    assert np.allclose(d_kd, d_bf)


def test_missing_normals_is_reported():
    cloud = _random_cloud()
    bare = PointCloudWithNormals(positions=cloud.positions)

    result = _make_estimator(bare, cloud).determine_correspondences(max_distance=1.0)
    assert result.status == STATUS_MISSING_NORMALS
    assert len(result) == 0

    result = _make_estimator(cloud, bare).determine_correspondences(max_distance=1.0)
    assert result.status == STATUS_MISSING_NORMALS
    assert not result.ok


def test_mismatched_point_types_are_unsupported():
    source = _random_cloud()
    target = PointCloudWithNormals(positions=source.positions.astype(np.float32),
                                   normals=source.normals)
    result = _make_estimator(source, target).determine_correspondences(max_distance=1.0)
    assert result.status == STATUS_UNSUPPORTED_POINT_TYPE
    assert len(result) == 0
    assert result.message


def test_missing_inputs_are_reported():
    est = BackProjectionCorrespondenceEstimator(k=3)
    est.set_input_source(_random_cloud())
    result = est.determine_correspondences(max_distance=1.0)
    assert result.status == STATUS_MISSING_INPUT
    assert len(result) == 0


def test_constructor_validation_and_config():
    with pytest.raises(ValueError):
        BackProjectionCorrespondenceEstimator(gain_center=(-0.2, 0.0), gain_k=(1, 2, 3))
    with pytest.raises(ValueError):
        BackProjectionCorrespondenceEstimator(k=0)

    est = BackProjectionCorrespondenceEstimator.from_config(default_config())
    assert est.gain_center == (-0.2, 0.0, 0.2)
    assert est.gain_k == (1, 2, 3)
    assert np.allclose(est.center, 0.0)


def test_point_cloud_validation():
    with pytest.raises(ValueError):
        PointCloudWithNormals(positions=np.zeros((4, 2)))
    with pytest.raises(ValueError):
        PointCloudWithNormals(positions=np.zeros((4, 3)), normals=np.zeros((3, 3)))
