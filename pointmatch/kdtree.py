"""KD-Tree implementation for efficient spatial partitioning and nearest neighbor search."""

import numpy as np

from .utils import time_function


class Node:
    __slots__ = ("point_index", "left", "right", "axis", "split", "indices")

    def __init__(self, axis=None):
        self.point_index = None
        self.left = None
        self.right = None
        self.axis = axis
        self.split = None
        # Only set on leaves
        self.indices = None


class KDTree:
    """
    Median-split KD-tree over a fixed (N, D) array of points.

    The tree is read-only once built and may be queried from several
    workers at the same time.
    """

    def __init__(self, leaf_size=32, dimension=3):
        self.root = None
        self.points = None
        self.leaf_size = max(1, int(leaf_size))
        self.dimension = dimension

    @time_function
    def build_optimized(self, points=None, depth=0, indices=None):
        # Initialize indices only at the top-level call
        if indices is None:
            if points is not None:
                self.points = np.ascontiguousarray(points, dtype=float)
            if self.points is None or self.points.shape[0] == 0:
                self.root = None
                return None
            indices = np.arange(self.points.shape[0], dtype=np.int64)
            self.root = self.build_optimized(depth=depth, indices=indices)
            return self.root

        n_points = indices.shape[0]

        # No points
        if n_points == 0:
            return None

        # Leaf: store the indices to avoid creating millions of nodes
        if n_points <= self.leaf_size:
            leaf = Node(axis=depth % self.dimension)
            leaf.indices = indices
            return leaf

        # Choose splitting axis
        axis = depth % self.dimension

        # Compute median position and in-place partition indices by the chosen axis
        median_index = n_points // 2
        order = np.argpartition(self.points[indices, axis], median_index)
        # Reorder this segment of indices in-place to avoid large copies
        indices[:] = indices[order]

        node = Node(axis=axis)
        node.point_index = int(indices[median_index])
        node.split = self.points[node.point_index, axis]

        # Build subtrees using views (no copies) into the shared indices array
        node.left = self.build_optimized(depth=depth + 1, indices=indices[:median_index])
        node.right = self.build_optimized(depth=depth + 1, indices=indices[median_index + 1:])
        return node

    def query(self, query_point, k=1, epsilon=0.0, max_dist=np.inf):
        """
        Iterative k-nearest neighbor search.

        Args:
            query_point: Point of shape (D,)
            k: Number of neighbors wanted
            epsilon: Approximation factor, a subtree is skipped when it cannot
                hold a point closer than the current k-th best divided by (1 + epsilon)
            max_dist: Neighbors further away than this are never returned

        Returns:
            Tuple of (squared distances, indices, number of distances evaluated),
            nearest first, at most k entries each
        """
        best_d = np.empty(0)
        best_i = np.empty(0, dtype=np.int64)
        visits = 0
        if self.root is None:
            return best_d, best_i, visits

        max_dist2 = max_dist * max_dist
        max_error2 = (1.0 + epsilon) ** 2
        stack = [(self.root, 0.0)]

        while stack:
            node, offset2 = stack.pop()
            bound = best_d[-1] if best_d.shape[0] == k else max_dist2
            if offset2 * max_error2 > bound:
                continue

            # Leaf node: check all points in the leaf
            if node.indices is not None:
                candidates = node.indices
            else:
                candidates = np.array([node.point_index], dtype=np.int64)

            diffs = self.points[candidates] - query_point
            dists = np.einsum("ij,ij->i", diffs, diffs)
            visits += candidates.shape[0]
            keep = dists <= bound
            if keep.any():
                best_d = np.concatenate([best_d, dists[keep]])
                best_i = np.concatenate([best_i, candidates[keep]])
                order = np.lexsort((best_i, best_d))[:k]
                best_d = best_d[order]
                best_i = best_i[order]

            if node.indices is not None:
                continue

            # Traverse tree
            diff = query_point[node.axis] - node.split
            if diff < 0:
                near_node, far_node = node.left, node.right
            else:
                near_node, far_node = node.right, node.left

            if far_node is not None:
                stack.append((far_node, diff * diff))
            if near_node is not None:
                stack.append((near_node, 0.0))

        return best_d, best_i, visits


def brute_force_knn(points, queries, k=1, max_dist=np.inf, chunk_size=256):
    """
    Exhaustive k-nearest neighbor search.

    Returns:
        Tuple of (squared distances (k, M), indices (k, M)) with inf / -1 where
        fewer than k points lie within ``max_dist``
    """
    n_queries = queries.shape[0]
    dists = np.full((k, n_queries), np.inf)
    ids = np.full((k, n_queries), -1, dtype=np.int64)
    if points.shape[0] == 0:
        return dists, ids

    kk = min(k, points.shape[0])
    max_dist2 = max_dist * max_dist
    for start in range(0, n_queries, chunk_size):
        chunk = queries[start:start + chunk_size]
        diffs = chunk[:, np.newaxis, :] - points[np.newaxis, :, :]
        d2 = np.einsum("ijk,ijk->ij", diffs, diffs)
        order = np.argsort(d2, axis=1, kind="stable")[:, :kk]
        chunk_d = np.take_along_axis(d2, order, axis=1)
        outside = chunk_d > max_dist2
        chunk_d[outside] = np.inf
        order[outside] = -1
        dists[:kk, start:start + chunk.shape[0]] = chunk_d.T
        ids[:kk, start:start + chunk.shape[0]] = order.T
    return dists, ids
