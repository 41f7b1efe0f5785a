"""Registration entry points: single-shot evaluation and Iterative Closest Point."""

import logging
import time
from dataclasses import dataclass

import numpy as np

from .correspondence import (CorrespondenceMethod, get_registration_result_and_correspondences,
                             prepare_index)
from .kdtree import NearestNeighborSearch
from .transforms import TransformationEstimationPointToPoint
from .utils import identity_transform
from .validation import check_registration_inputs

logger = logging.getLogger(__name__)


@dataclass
class ICPConvergenceCriteria:
    """
    When to stop refining.

    ICP stops once both fitness and inlier RMSE change by less than their
    relative threshold between two iterations, or after max_iteration steps.
    """

    relative_fitness: float = 1e-6
    relative_rmse: float = 1e-6
    max_iteration: int = 30

    def __post_init__(self):
        if self.relative_fitness < 0:
            raise ValueError(f"relative_fitness must be >= 0, got {self.relative_fitness}")
        if self.relative_rmse < 0:
            raise ValueError(f"relative_rmse must be >= 0, got {self.relative_rmse}")
        if self.max_iteration < 0:
            raise ValueError(f"max_iteration must be >= 0, got {self.max_iteration}")


def has_converged(previous, current, criteria):
    """True when neither fitness nor inlier RMSE moved past their thresholds."""
    return (abs(previous.fitness - current.fitness) < criteria.relative_fitness
            and abs(previous.inlier_rmse - current.inlier_rmse) < criteria.relative_rmse)


def _build_target_index(target, method, n_jobs):
    tree_start = time.time()
    target_nns = NearestNeighborSearch(target.points, n_jobs=n_jobs)
    prepare_index(target_nns, method)
    logger.debug("Target index (%s) built in %.3fs", CorrespondenceMethod(method).value,
                 time.time() - tree_start)
    return target_nns


def evaluate_registration(source, target, max_correspondence_distance,
                          transformation=None, method=CorrespondenceMethod.HYBRID,
                          n_jobs=1):
    """
    Score how well ``transformation`` aligns source onto target, without iterating.

    Args:
        source: PointCloud to be moved
        target: fixed PointCloud
        max_correspondence_distance: matches farther apart than this are rejected
        transformation: 4x4 float32 transform to test (identity by default)
        method: CorrespondenceMethod used for the search
        n_jobs: joblib workers for the neighbour queries

    Returns:
        RegistrationResult carrying a copy of the transformation passed in
    """
    if transformation is None:
        transformation = identity_transform()
    check_registration_inputs(source, target, transformation)

    target_nns = _build_target_index(target, method, n_jobs)
    transformation = np.array(transformation, copy=True)
    source_transformed = source.clone().transform(transformation)

    result = get_registration_result_and_correspondences(
        source_transformed, target, target_nns, max_correspondence_distance,
        transformation, method)
    result.history = [(result.fitness, result.inlier_rmse)]
    return result


def registration_icp(source, target, max_correspondence_distance,
                     init_source_to_target=None, estimation=None, criteria=None,
                     method=CorrespondenceMethod.HYBRID, n_jobs=1):
    """
    Refine an initial alignment with Iterative Closest Point.

    The target index is built once and reused for every iteration; only the
    private copy of the source and the running transform change.

    Args:
        source: PointCloud to be moved
        target: fixed PointCloud
        max_correspondence_distance: matches farther apart than this are rejected
        init_source_to_target: initial 4x4 float32 estimate (identity by default)
        estimation: TransformationEstimation producing each update
            (point-to-point by default)
        criteria: ICPConvergenceCriteria (defaults if None)
        method: CorrespondenceMethod used for the search
        n_jobs: joblib workers for the neighbour queries

    Returns:
        RegistrationResult of the last evaluation, with num_iterations and history
    """
    if init_source_to_target is None:
        init_source_to_target = identity_transform()
    if estimation is None:
        estimation = TransformationEstimationPointToPoint()
    if criteria is None:
        criteria = ICPConvergenceCriteria()
    check_registration_inputs(source, target, init_source_to_target)

    total_start = time.time()
    target_nns = _build_target_index(target, method, n_jobs)

    transformation = np.array(init_source_to_target, copy=True)
    source_transformed = source.clone().transform(transformation)

    result = get_registration_result_and_correspondences(
        source_transformed, target, target_nns, max_correspondence_distance,
        transformation, method)
    history = [(result.fitness, result.inlier_rmse)]

    converged = False
    iterations = 0
    for i in range(criteria.max_iteration):
        logger.debug("ICP Iteration #%d: Fitness %.4f, RMSE %.4f",
                     i, result.fitness, result.inlier_rmse)

        update = estimation.compute_transformation(
            source_transformed, target, result.correspondence_set)
        update = np.asarray(update, dtype=np.float32)
        transformation = update @ transformation
        source_transformed.transform(update)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("ICP Iteration #%d: estimator residual %.6f", i,
                         estimation.compute_rmse(source_transformed, target,
                                                 result.correspondence_set))

        previous = result
        result = get_registration_result_and_correspondences(
            source_transformed, target, target_nns, max_correspondence_distance,
            transformation, method)
        history.append((result.fitness, result.inlier_rmse))
        iterations = i + 1

        if has_converged(previous, result, criteria):
            converged = True
            break

    result.num_iterations = iterations
    result.history = history

    if converged:
        logger.info("ICP converged after %d iterations: fitness %.4f, RMSE %.4f (%.3fs)",
                    iterations, result.fitness, result.inlier_rmse, time.time() - total_start)
    else:
        logger.info("ICP stopped at max_iteration=%d: fitness %.4f, RMSE %.4f (%.3fs)",
                    criteria.max_iteration, result.fitness, result.inlier_rmse,
                    time.time() - total_start)
    return result
