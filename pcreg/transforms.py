"""Transformation estimation for point cloud registration."""

import abc
import logging

import numpy as np
import open3d as o3d

from .exceptions import MissingNormalsError
from .losses import get_loss_function

logger = logging.getLogger(__name__)


def compute_normals(points, k=30):
    """Estimate per-point normals from the k nearest neighbours, oriented toward the origin."""
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.asarray(points, dtype=np.float64))
    pcd.estimate_normals(
        search_param=o3d.geometry.KDTreeSearchParamKNN(knn=k)
    )

    # Orient normals consistently (toward viewpoint at origin)
    pcd.orient_normals_towards_camera_location(camera_location=np.array([0., 0., 0.]))

    return np.asarray(pcd.normals)


def _matched_pairs(source, target, correspondences):
    source_idx = correspondences.source_indices
    target_idx = correspondences.target_indices
    return (source.points[source_idx].astype(np.float64),
            target.points[target_idx].astype(np.float64),
            target_idx)


def _euler_to_rotation(alpha, beta, gamma):
    ca, sa = np.cos(alpha), np.sin(alpha)
    cb, sb = np.cos(beta), np.sin(beta)
    cg, sg = np.cos(gamma), np.sin(gamma)
    Rx = np.array([[1, 0, 0], [0, ca, -sa], [0, sa, ca]])
    Ry = np.array([[cb, 0, sb], [0, 1, 0], [-sb, 0, cb]])
    Rz = np.array([[cg, -sg, 0], [sg, cg, 0], [0, 0, 1]])
    return Rz @ Ry @ Rx


class TransformationEstimation(abc.ABC):
    """
    Computes the incremental transform that moves a source toward a target.

    Subclasses receive the current (already transformed) source, the target
    and the correspondences found between them, and return a 4x4 float32
    update to be left-multiplied onto the running estimate.
    """

    def __init__(self, loss_fn='none', loss_params=None):
        self.loss_fn = loss_fn
        self.loss_params = loss_params
        self._weight_fn = get_loss_function(loss_fn, loss_params)

    def _weights(self, residuals):
        if self._weight_fn is None:
            return np.ones_like(residuals)
        return self._weight_fn(residuals)

    @abc.abstractmethod
    def compute_transformation(self, source, target, correspondences):
        """Return the 4x4 update for the given correspondences."""

    @abc.abstractmethod
    def compute_rmse(self, source, target, correspondences):
        """Return the residual RMSE this estimator minimises."""


class TransformationEstimationPointToPoint(TransformationEstimation):
    """Weighted least-squares rigid fit (SVD) between matched point pairs."""

    def compute_rmse(self, source, target, correspondences):
        if len(correspondences) == 0:
            return 0.0
        src, tgt, _ = _matched_pairs(source, target, correspondences)
        return float(np.sqrt(np.mean(np.sum((tgt - src) ** 2, axis=1))))

    def compute_transformation(self, source, target, correspondences):
        if len(correspondences) == 0:
            logger.warning("No correspondences; returning identity update")
            return np.eye(4, dtype=np.float32)

        source_points, target_points, _ = _matched_pairs(source, target, correspondences)
        weights = self._weights(np.linalg.norm(target_points - source_points, axis=1))
        total = np.sum(weights)
        if total <= 0:
            logger.warning("All correspondences rejected by %s loss; returning identity update",
                           self.loss_fn)
            return np.eye(4, dtype=np.float32)

        # Normalize weights
        weights = weights / total

        # Compute weighted centroids
        source_centroid = np.sum(source_points * weights[:, np.newaxis], axis=0)
        target_centroid = np.sum(target_points * weights[:, np.newaxis], axis=0)

        # Center the points
        source_centered = source_points - source_centroid
        target_centered = target_points - target_centroid

        # Weighted covariance matrix
        H = (source_centered * weights[:, np.newaxis]).T @ target_centered
        U, S, Vt = np.linalg.svd(H)

        R = Vt.T @ U.T

        # Handle reflection case
        if np.linalg.det(R) < 0:
            Vt[-1, :] *= -1
            R = Vt.T @ U.T

        t = target_centroid - R @ source_centroid

        transformation = np.eye(4)
        transformation[:3, :3] = R
        transformation[:3, 3] = t
        return transformation.astype(np.float32)


class TransformationEstimationPointToPlane(TransformationEstimation):
    """
    Linearised point-to-plane fit.

    Minimises the distance from each source point to the tangent plane of
    its matched target point. Needs ``target.normals``.
    """

    def _pairs_and_normals(self, source, target, correspondences):
        if not target.has_normals():
            raise MissingNormalsError(
                "Target point cloud has no normals; call estimate_normals() first.")
        src, tgt, target_idx = _matched_pairs(source, target, correspondences)
        return src, tgt, target.normals[target_idx].astype(np.float64)

    def compute_rmse(self, source, target, correspondences):
        if len(correspondences) == 0:
            return 0.0
        src, tgt, normals = self._pairs_and_normals(source, target, correspondences)
        residuals = np.einsum('ij,ij->i', src - tgt, normals)
        return float(np.sqrt(np.mean(residuals ** 2)))

    def compute_transformation(self, source, target, correspondences):
        if len(correspondences) == 0:
            logger.warning("No correspondences; returning identity update")
            return np.eye(4, dtype=np.float32)

        s, d, n = self._pairs_and_normals(source, target, correspondences)
        # Signed distance of every source point to its target plane
        b = np.einsum('ij,ij->i', d - s, n)
        weights = self._weights(np.abs(b))
        total = np.sum(weights)
        if total <= 0:
            logger.warning("All correspondences rejected by %s loss; returning identity update",
                           self.loss_fn)
            return np.eye(4, dtype=np.float32)
        w = np.sqrt(weights / total)

        # Unknowns are [alpha, beta, gamma, tx, ty, tz], small rotation angles first
        A = np.hstack([np.cross(s, n), n]) * w[:, np.newaxis]
        b = b * w

        params, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
        if rank < 6:
            logger.debug("Point-to-plane system is rank deficient (rank %d)", rank)

        transformation = np.eye(4)
        transformation[:3, :3] = _euler_to_rotation(*params[0:3])
        transformation[:3, 3] = params[3:6]
        return transformation.astype(np.float32)
