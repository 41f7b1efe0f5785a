"""KD-Tree implementation for efficient spatial partitioning and nearest neighbor search."""

import heapq
import logging

import numpy as np
from joblib import Parallel, delayed

from .exceptions import IndexNotReady
from .utils import time_function

logger = logging.getLogger(__name__)


class Node:
    def __init__(self):
        self.point = None
        self.index = None
        self.left = None
        self.right = None
        self.axis = None
        self.indices = None
    def set_point(self, point, index):
        self.point = point
        self.index = index
    def set_left(self, left):
        self.left = left
    def set_right(self, right):
        self.right = right
    def set_axis(self, axis):
        self.axis = axis
    def set_indices(self, indices):
        self.indices = indices


class KDTree:
    def __init__(self, leaf_size=128, dimension=3):
        self.points = None
        self.leaf_size = max(1, int(leaf_size))
        self.dimension = dimension

    @time_function
    def build(self, points=None, depth=0, indices=None):
        # indices is None only on the outermost call
        if indices is None:
            pts = self.points if points is None else points
            if pts.shape[0] == 0:
                return None
            indices = np.arange(pts.shape[0], dtype=np.int64)
            if points is not None:
                self.points = points

        n_points = indices.shape[0]

        if n_points == 0:
            return None

        # Buckets of up to leaf_size points are scanned linearly at query time
        if n_points <= self.leaf_size:
            leaf = Node()
            leaf.set_axis(depth % self.dimension)
            leaf.set_indices(indices)
            return leaf

        axis = depth % self.dimension
        median_index = n_points // 2
        # Partial sort is enough: only the median has to land in place
        order = np.argpartition(self.points[indices, axis], median_index)
        indices[:] = indices[order]

        median_point_index = indices[median_index]

        node = Node()
        node.set_axis(axis)
        node.set_point(self.points[median_point_index], int(median_point_index))

        # The median point lives on this node (node.index), so children skip it.
        # Both halves are views, each child reorders only its own slice.
        left_view = indices[:median_index]
        right_view = indices[median_index+1:]

        node.set_left(self.build(depth=depth+1, indices=left_view))
        node.set_right(self.build(depth=depth+1, indices=right_view))
        return node


def knn_search_iterative(query_point, root, points_array, knn=1, radius_squared=np.inf):
    """
    Iterative k-nearest neighbor search in KD-tree.

    Only neighbors with squared distance <= radius_squared are kept, so fewer
    than knn may come back.

    Args:
        query_point: Point to find the neighbors for
        root: Root node of the KD-tree
        points_array: Numpy array of the indexed points
        knn: Number of neighbors to return
        radius_squared: Squared search radius

    Returns:
        Tuple of (indices, squared_distances), nearest first
    """
    query_point = np.asarray(query_point, dtype=np.float64)
    # max-heap on distance via negated keys
    heap = []

    def bound():
        if len(heap) < knn:
            return radius_squared
        return -heap[0][0]

    def offer(index, dist2):
        if dist2 > radius_squared:
            return
        if len(heap) < knn:
            heapq.heappush(heap, (-dist2, -index))
        elif dist2 < -heap[0][0]:
            heapq.heapreplace(heap, (-dist2, -index))

    stack = [(root, 0.0)]
    while stack:
        node, plane_dist2 = stack.pop()
        if node is None or plane_dist2 > bound():
            continue

        # Leaf node: check all points in the leaf
        if node.indices is not None:
            diffs = points_array[node.indices].astype(np.float64) - query_point
            dists2 = np.einsum('ij,ij->i', diffs, diffs)
            if knn == 1:
                idx = int(np.argmin(dists2))
                offer(int(node.indices[idx]), float(dists2[idx]))
            else:
                for idx in np.argsort(dists2, kind='stable')[:knn]:
                    offer(int(node.indices[idx]), float(dists2[idx]))
            continue

        # Internal node: check node point
        diff = node.point.astype(np.float64) - query_point
        offer(node.index, float(diff @ diff))

        # Traverse tree, nearer side popped first
        axis = node.axis
        axis_diff = query_point[axis] - node.point[axis]
        if axis_diff < 0:
            near_node, far_node = node.left, node.right
        else:
            near_node, far_node = node.right, node.left

        stack.append((far_node, float(axis_diff * axis_diff)))
        stack.append((near_node, 0.0))

    best = sorted((-neg_d2, -neg_idx) for neg_d2, neg_idx in heap)
    indices = [idx for _, idx in best]
    dists2 = [d2 for d2, _ in best]
    return indices, dists2


class NearestNeighborSearch:
    """
    Nearest neighbor search over a fixed point set.

    One KD-tree backs both query modes. A mode has to be enabled with
    ``knn_index()`` or ``hybrid_index()`` before it can be queried; the tree
    itself is built the first time either is called and never again.
    """

    def __init__(self, points, leaf_size=128, n_jobs=1):
        self.points = np.asarray(points)
        self.leaf_size = leaf_size
        self.n_jobs = n_jobs
        self._root = None
        self._built = False
        self._knn_ready = False
        self._hybrid_ready = False

    @property
    def knn_ready(self):
        return self._knn_ready

    @property
    def hybrid_ready(self):
        return self._hybrid_ready

    def _build_tree(self):
        if self._built:
            return
        dimension = self.points.shape[1] if self.points.ndim == 2 else 3
        tree = KDTree(leaf_size=self.leaf_size, dimension=dimension)
        self._root = tree.build(self.points) if len(self.points) else None
        self._built = True
        logger.debug("Built KD-tree over %d points", len(self.points))

    def knn_index(self):
        self._build_tree()
        self._knn_ready = True
        return True

    def hybrid_index(self):
        self._build_tree()
        self._hybrid_ready = True
        return True

    def knn_search(self, query_points, knn=1):
        """
        Find the knn nearest indexed points for every query point.

        Returns:
            Tuple of (indices (M, knn) int64, distances (M, knn) float32).
            Distances are Euclidean, not squared. Slots with no neighbor
            (fewer indexed points than knn) hold -1 and inf.
        """
        if not self._knn_ready:
            raise IndexNotReady("KNN index is not set; call knn_index() before knn_search().")
        indices, dists2 = self._search(query_points, knn, np.inf, fill_distance=np.inf)
        return indices, np.sqrt(dists2).astype(np.float32)

    def hybrid_search(self, query_points, radius_squared, max_knn=1):
        """
        Find up to max_knn indexed points within a radius of every query point.

        Args:
            query_points: (M, 3) array
            radius_squared: squared search radius
            max_knn: maximum number of neighbors per query point

        Returns:
            Tuple of (indices (M, max_knn) int64, squared distances (M, max_knn)
            float32). Slots with no neighbor inside the radius hold -1 and 0.
        """
        if not self._hybrid_ready:
            raise IndexNotReady("Hybrid index is not set; call hybrid_index() before hybrid_search().")
        indices, dists2 = self._search(query_points, max_knn, float(radius_squared), fill_distance=0.0)
        return indices, dists2.astype(np.float32)

    def _search(self, query_points, knn, radius_squared, fill_distance):
        query_points = np.asarray(query_points)
        n_query = query_points.shape[0]
        indices = np.full((n_query, knn), -1, dtype=np.int64)
        dists2 = np.full((n_query, knn), fill_distance, dtype=np.float64)
        if n_query == 0 or self._root is None:
            return indices, dists2

        results = Parallel(n_jobs=self.n_jobs, backend='loky')(
            delayed(knn_search_iterative)(p, self._root, self.points, knn, radius_squared)
            for p in query_points
        )
        for row, (found_indices, found_dists2) in enumerate(results):
            n_found = len(found_indices)
            indices[row, :n_found] = found_indices
            dists2[row, :n_found] = found_dists2
        return indices, dists2
