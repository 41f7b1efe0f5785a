"""
pcreg - Rigid point cloud registration

Evaluate a candidate alignment between two point clouds or refine it with
Iterative Closest Point (ICP):
- KD-tree nearest neighbor index with plain and distance-gated queries
- Fitness / inlier RMSE scoring under a correspondence distance gate
- Point-to-point and point-to-plane transformation estimation
- Robust loss weights for outlier handling
"""

from .correspondence import CorrespondenceMethod
from .exceptions import (DeviceMismatch, DtypeMismatch, IndexNotReady, MissingNormalsError,
                         RegistrationError, ShapeError, ValidationError)
from .kdtree import KDTree, NearestNeighborSearch
from .point_cloud import PointCloud
from .registration import (ICPConvergenceCriteria, evaluate_registration, has_converged,
                           registration_icp)
from .result import CorrespondenceSet, RegistrationResult
from .transforms import (TransformationEstimation, TransformationEstimationPointToPlane,
                         TransformationEstimationPointToPoint, compute_normals)
from .visualization import draw_registration_result, plot_convergence

__version__ = "1.0.0"
__all__ = ["CorrespondenceMethod", "CorrespondenceSet", "DeviceMismatch", "DtypeMismatch",
           "ICPConvergenceCriteria", "IndexNotReady", "KDTree", "MissingNormalsError",
           "NearestNeighborSearch", "PointCloud", "RegistrationError", "RegistrationResult",
           "ShapeError", "TransformationEstimation", "TransformationEstimationPointToPlane",
           "TransformationEstimationPointToPoint", "ValidationError", "compute_normals",
           "draw_registration_result", "evaluate_registration", "has_converged",
           "plot_convergence", "registration_icp"]
