import logging

import numpy as np
import pytest

import pcreg.registration as registration
from conftest import rigid_transform
from pcreg import (CorrespondenceMethod, ICPConvergenceCriteria, MissingNormalsError, PointCloud,
                   RegistrationResult, TransformationEstimationPointToPlane,
                   TransformationEstimationPointToPoint, evaluate_registration, has_converged,
                   registration_icp)
from pcreg.kdtree import NearestNeighborSearch

METHODS = [CorrespondenceMethod.KNN, CorrespondenceMethod.HYBRID]


def _moved(cloud, transformation):
    return cloud.clone().transform(transformation)


@pytest.mark.parametrize("method", METHODS)
def test_point_to_point_recovers_known_transform(random_cloud, method):
    T_true = rigid_transform(2.0, [0.2, 0.3, 1.0], [0.05, -0.03, 0.02])
    target = _moved(random_cloud, T_true)

    result = registration_icp(
        random_cloud, target, 0.5,
        estimation=TransformationEstimationPointToPoint(),
        criteria=ICPConvergenceCriteria(max_iteration=50),
        method=method,
    )

    assert result.fitness == 1.0
    assert result.inlier_rmse < 1e-3
    np.testing.assert_allclose(result.transformation, T_true, atol=5e-3)


def test_point_to_plane_recovers_known_transform(surface_cloud):
    T_true = rigid_transform(1.5, [0.0, 0.0, 1.0], [0.02, -0.01, 0.03])
    target = _moved(surface_cloud, T_true)
    initial = evaluate_registration(surface_cloud, target, 0.3)

    result = registration_icp(
        surface_cloud, target, 0.3,
        estimation=TransformationEstimationPointToPlane(),
        criteria=ICPConvergenceCriteria(max_iteration=50),
    )

    assert result.fitness == 1.0
    assert result.inlier_rmse < 0.5 * initial.inlier_rmse
    np.testing.assert_allclose(result.transformation, T_true, atol=2e-2)


def test_point_to_plane_needs_target_normals(random_cloud):
    target = PointCloud(random_cloud.points.copy())
    with pytest.raises(MissingNormalsError):
        registration_icp(random_cloud, target, 0.5,
                         estimation=TransformationEstimationPointToPlane())


def test_iterations_bounded_by_max_iteration(random_cloud):
    T_true = rigid_transform(2.0, [0.2, 0.3, 1.0], [0.05, -0.03, 0.02])
    target = _moved(random_cloud, T_true)
    # Zero thresholds can never be undercut, so the loop must run out
    criteria = ICPConvergenceCriteria(relative_fitness=0.0, relative_rmse=0.0, max_iteration=3)

    result = registration_icp(random_cloud, target, 0.5, criteria=criteria)

    assert result.num_iterations == 3
    assert len(result.history) == 4


@pytest.mark.parametrize("method", METHODS)
def test_target_index_built_once_per_run(monkeypatch, random_cloud, method):
    built = []

    class CountingIndex(NearestNeighborSearch):
        def __init__(self, *args, **kwargs):
            built.append(args)
            super().__init__(*args, **kwargs)

    monkeypatch.setattr(registration, "NearestNeighborSearch", CountingIndex)
    target = _moved(random_cloud, rigid_transform(2.0, [0, 0, 1], [0.03, 0.0, 0.0]))
    criteria = ICPConvergenceCriteria(relative_fitness=0.0, relative_rmse=0.0, max_iteration=3)

    result = registration_icp(random_cloud, target, 0.5, criteria=criteria, method=method)

    assert result.num_iterations == 3
    assert len(built) == 1


def test_estimator_residual_logged_each_iteration(caplog, random_cloud):
    target = _moved(random_cloud, rigid_transform(2.0, [0, 0, 1], [0.03, 0.0, 0.0]))
    criteria = ICPConvergenceCriteria(relative_fitness=0.0, relative_rmse=0.0, max_iteration=2)

    with caplog.at_level(logging.DEBUG, logger="pcreg.registration"):
        registration_icp(random_cloud, target, 0.5, criteria=criteria)

    residuals = [r for r in caplog.records if "estimator residual" in r.getMessage()]
    assert len(residuals) == 2


def test_zero_max_iteration_returns_initial_evaluation(random_cloud, identity):
    target = _moved(random_cloud, rigid_transform(1.0, [0, 0, 1], [0.01, 0.0, 0.0]))
    criteria = ICPConvergenceCriteria(max_iteration=0)

    result = registration_icp(random_cloud, target, 0.5, identity, criteria=criteria)
    expected = evaluate_registration(random_cloud, target, 0.5, identity)

    assert result.num_iterations == 0
    assert result.fitness == expected.fitness
    assert result.inlier_rmse == pytest.approx(expected.inlier_rmse)
    np.testing.assert_array_equal(result.transformation, identity)


def test_plateau_stops_early(random_cloud, identity):
    criteria = ICPConvergenceCriteria(relative_rmse=1e-4, max_iteration=30)
    result = registration_icp(random_cloud, random_cloud, 0.5, identity, criteria=criteria)

    assert result.num_iterations == 1
    assert result.fitness == 1.0
    assert result.inlier_rmse < 1e-5


@pytest.mark.parametrize("gate", [0.0, -0.5])
def test_icp_non_positive_gate(random_cloud, gate):
    init = rigid_transform(5.0, [1, 0, 0], [0.1, 0.2, 0.3])

    result = registration_icp(random_cloud, random_cloud, gate, init)

    assert result.fitness == 0.0
    assert result.inlier_rmse == 0.0
    assert len(result.correspondence_set) == 0
    np.testing.assert_array_equal(result.transformation, init)


def test_icp_does_not_mutate_inputs(random_cloud):
    target = _moved(random_cloud, rigid_transform(2.0, [0, 1, 0], [0.02, 0.0, 0.0]))
    source_points = random_cloud.points.copy()
    init = np.eye(4, dtype=np.float32)

    result = registration_icp(random_cloud, target, 0.5, init)

    np.testing.assert_array_equal(random_cloud.points, source_points)
    np.testing.assert_array_equal(init, np.eye(4, dtype=np.float32))
    assert result.transformation is not init


def test_evaluation_result_owns_its_transformation(random_cloud):
    transformation = rigid_transform(1.0, [0, 0, 1], [0.01, 0.0, 0.0])
    before = transformation.copy()

    result = evaluate_registration(random_cloud, random_cloud, 0.5, transformation)
    transformation[:3, 3] = [5.0, 5.0, 5.0]

    assert result.transformation is not transformation
    np.testing.assert_array_equal(result.transformation, before)


def test_zero_iteration_result_owns_its_transformation(random_cloud):
    init = rigid_transform(1.0, [0, 0, 1], [0.01, 0.0, 0.0])
    before = init.copy()
    criteria = ICPConvergenceCriteria(max_iteration=0)

    result = registration_icp(random_cloud, random_cloud, 0.5, init, criteria=criteria)
    init[0, 3] = 9.0

    np.testing.assert_array_equal(result.transformation, before)


def test_history_is_within_bounds(random_cloud):
    target = _moved(random_cloud, rigid_transform(3.0, [1, 1, 0], [0.05, 0.05, 0.0]))
    result = registration_icp(random_cloud, target, 0.2)

    fitness, rmse = np.asarray(result.history).T
    assert ((fitness >= 0) & (fitness <= 1)).all()
    assert (rmse >= 0).all()
    cs = result.correspondence_set
    assert len(cs.target_indices) == int(cs.select_mask.sum())


def test_initial_transform_is_applied(random_cloud):
    T_true = rigid_transform(2.0, [0.2, 0.3, 1.0], [0.05, -0.03, 0.02])
    target = _moved(random_cloud, T_true)

    result = evaluate_registration(random_cloud, target, 0.01, T_true)

    assert result.fitness == 1.0
    assert result.inlier_rmse < 1e-4


def _result(fitness, rmse):
    return RegistrationResult(transformation=np.eye(4, dtype=np.float32),
                              fitness=fitness, inlier_rmse=rmse)


@pytest.mark.parametrize("previous, current, expected", [
    ((0.5, 0.10), (0.5, 0.10), True),
    ((0.5, 0.10), (0.6, 0.10), False),
    ((0.5, 0.10), (0.5, 0.05), False),
    ((0.5, 0.10), (0.6, 0.05), False),
])
def test_convergence_needs_both_metrics_stable(previous, current, expected):
    criteria = ICPConvergenceCriteria(relative_fitness=1e-3, relative_rmse=1e-3)
    assert has_converged(_result(*previous), _result(*current), criteria) is expected


@pytest.mark.parametrize("field", ["relative_fitness", "relative_rmse", "max_iteration"])
def test_criteria_reject_negative_values(field):
    with pytest.raises(ValueError):
        ICPConvergenceCriteria(**{field: -1})
