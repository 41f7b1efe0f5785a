"""Result types produced by registration."""

from dataclasses import dataclass, field

import numpy as np


@dataclass
class CorrespondenceSet:
    """
    Source-to-target matches.

    ``select_mask`` flags the source points that found a target within the
    distance gate; ``target_indices`` holds the matched target index for
    each flagged source point, in source order.
    """

    select_mask: np.ndarray
    target_indices: np.ndarray

    @classmethod
    def empty(cls):
        return cls(np.zeros(0, dtype=bool), np.zeros(0, dtype=np.int64))

    @property
    def source_indices(self):
        return np.flatnonzero(self.select_mask)

    def __len__(self):
        return int(self.target_indices.shape[0])


@dataclass
class RegistrationResult:
    """
    Outcome of one evaluation or one full ICP run.

    Attributes:
        transformation: 4x4 transform that produced this result
        fitness: fraction of source points with a correspondence, in [0, 1]
        inlier_rmse: RMS distance over the matched pairs
        correspondence_set: the matches themselves
        num_iterations: ICP refinement steps performed (0 when evaluating)
        history: (fitness, inlier_rmse) of every evaluation, initial one first
    """

    transformation: np.ndarray
    fitness: float = 0.0
    inlier_rmse: float = 0.0
    correspondence_set: CorrespondenceSet = field(default_factory=CorrespondenceSet.empty)
    num_iterations: int = 0
    history: list = field(default_factory=list)

    def __repr__(self):
        return (f"RegistrationResult(fitness={self.fitness:.6f}, "
                f"inlier_rmse={self.inlier_rmse:.6f}, "
                f"correspondences={len(self.correspondence_set)}, "
                f"num_iterations={self.num_iterations})")
