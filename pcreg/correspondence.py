"""Correspondence search between a transformed source and an indexed target."""

import enum

import numpy as np

from .exceptions import IndexNotReady
from .result import CorrespondenceSet, RegistrationResult
from .validation import check_registration_inputs


class CorrespondenceMethod(enum.Enum):
    KNN = "knn"
    HYBRID = "hybrid"


def prepare_index(target_nns, method):
    """Enable the index mode the given correspondence method queries."""
    method = CorrespondenceMethod(method)
    if method is CorrespondenceMethod.KNN:
        return target_nns.knn_index()
    return target_nns.hybrid_index()


def _score(source, select_mask, target_indices, squared_distances, transformation):
    # squared_distances holds the selected pairs only
    n_source = len(source)
    n_selected = int(target_indices.shape[0])
    fitness = n_selected / n_source if n_source else 0.0
    if n_selected:
        squared_error = float(np.sum(squared_distances, dtype=np.float64))
        inlier_rmse = float(np.sqrt(squared_error / n_selected))
    else:
        inlier_rmse = 0.0
    return RegistrationResult(
        transformation=transformation,
        fitness=float(fitness),
        inlier_rmse=inlier_rmse,
        correspondence_set=CorrespondenceSet(select_mask, target_indices),
    )


def correspondences_from_knn_search(source, target_nns, max_distance_squared, transformation):
    """
    Match every source point to its nearest target and keep those within the gate.

    The knn mode reports plain distances, so they are squared here before
    gating and summing.
    """
    if not target_nns.knn_ready:
        raise IndexNotReady("KNN index is not set; cannot search correspondences.")

    indices, distances = target_nns.knn_search(source.points, 1)
    squared = np.square(distances[:, 0].astype(np.float64))
    select_mask = squared <= max_distance_squared
    return _score(source, select_mask, indices[select_mask, 0], squared[select_mask], transformation)


def correspondences_from_hybrid_search(source, target_nns, max_distance_squared, transformation):
    """Match source points using the gated search; unmatched points come back as -1."""
    if not target_nns.hybrid_ready:
        raise IndexNotReady("Hybrid index is not set; cannot search correspondences.")

    indices, squared = target_nns.hybrid_search(source.points, max_distance_squared, 1)
    select_mask = indices[:, 0] != -1
    return _score(source, select_mask, indices[select_mask, 0],
                  squared[select_mask, 0].astype(np.float64), transformation)


_STRATEGIES = {
    CorrespondenceMethod.KNN: correspondences_from_knn_search,
    CorrespondenceMethod.HYBRID: correspondences_from_hybrid_search,
}


def get_registration_result_and_correspondences(source, target, target_nns,
                                                max_correspondence_distance,
                                                transformation,
                                                method=CorrespondenceMethod.HYBRID):
    """
    Score ``source`` (already transformed) against the indexed ``target``.

    ``transformation`` is not applied here; it is stored on the result as
    the estimate that produced ``source``. A non-positive distance gate
    skips the search and yields an empty result.

    Args:
        source: transformed source PointCloud
        target: target PointCloud the index was built over
        target_nns: NearestNeighborSearch over target
        max_correspondence_distance: linear distance gate
        transformation: current 4x4 estimate
        method: CorrespondenceMethod selecting the search strategy

    Returns:
        RegistrationResult with fitness, inlier_rmse and correspondences
    """
    check_registration_inputs(source, target, transformation)
    method = CorrespondenceMethod(method)

    if max_correspondence_distance <= 0.0:
        return RegistrationResult(transformation=transformation)

    max_distance_squared = float(max_correspondence_distance) ** 2
    return _STRATEGIES[method](source, target_nns, max_distance_squared, transformation)
