"""Nearest neighbor correspondence search between a reading and a reference cloud."""

from dataclasses import dataclass

import numpy as np
from joblib import Parallel, delayed

from .errors import PreconditionError
from .kdtree import KDTree, brute_force_knn
from .parameters import Parametrizable, ParamSpec, in_range, one_of, to_float, to_int
from .registry import Kind, registers
from .utils import get_logger

logger = get_logger(__name__)

BRUTE_FORCE = 0
KDTREE = 1


@dataclass
class Matches:
    """
    Correspondences of a reading cloud.

    ``dists`` holds squared distances and ``ids`` reference indices, both of
    shape (k, N). A missing match is stored as ``inf`` / ``-1``.
    """
    dists: np.ndarray
    ids: np.ndarray

    @classmethod
    def empty(cls, k, count):
        return cls(np.full((k, count), np.inf), np.full((k, count), -1, dtype=np.int64))

    def matched_mask(self):
        return self.ids >= 0

    @property
    def matched_count(self):
        return int(np.count_nonzero(self.matched_mask()))


class Matcher(Parametrizable):
    """Base class of matchers: index a reference once, query many readings."""

    def __init__(self, params=None):
        super().__init__(params)
        self.visit_count = 0

    def init(self, reference):
        raise NotImplementedError

    def find_closests(self, reading):
        raise NotImplementedError

    def reset_visit_count(self):
        self.visit_count = 0


@registers(Kind.MATCHER)
class NullMatcher(Matcher):
    """Returns no correspondence at all."""

    def init(self, reference):
        pass

    def find_closests(self, reading):
        return Matches.empty(1, len(reading))


def _query_chunk(tree, queries, k, epsilon, max_dist):
    dists = np.full((k, queries.shape[0]), np.inf)
    ids = np.full((k, queries.shape[0]), -1, dtype=np.int64)
    visits = 0
    for col, query in enumerate(queries):
        d, i, v = tree.query(query, k=k, epsilon=epsilon, max_dist=max_dist)
        dists[:d.shape[0], col] = d
        ids[:i.shape[0], col] = i
        visits += v
    return dists, ids, visits


@registers(Kind.MATCHER)
class KDTreeMatcher(Matcher):
    """
    k-nearest neighbor matcher.

    The reference is indexed once in ``init``; the index is only rebuilt when
    a different reference cloud is given.
    """

    PARAMS = (
        ParamSpec("knn", "number of nearest neighbors to consider in the reference", "1",
                  to_int, in_range(1)),
        ParamSpec("epsilon", "approximation to use for the nearest-neighbor search", "0",
                  to_float, in_range(0.0)),
        ParamSpec("searchType", "0 = brute force, 1 = kd-tree", "1",
                  to_int, one_of(BRUTE_FORCE, KDTREE)),
        ParamSpec("maxDist", "maximum distance to consider for neighbors", "inf",
                  to_float, in_range(0.0, lo_open=True)),
        ParamSpec("nJobs", "number of parallel workers used for queries", "1",
                  to_int, lambda v: v == -1 or v >= 1),
    )

    def __init__(self, params=None):
        super().__init__(params)
        self.knn = self.get("knn")
        self.epsilon = self.get("epsilon")
        self.search_type = self.get("searchType")
        self.max_dist = self.get("maxDist")
        self.n_jobs = self.get("nJobs")
        self.tree = None
        self.reference_points = None
        self._reference = None

    def init(self, reference):
        if reference is self._reference and self.reference_points is not None:
            return
        self._reference = reference
        self.reference_points = np.ascontiguousarray(reference.points)
        if self.search_type == KDTREE:
            self.tree = KDTree(dimension=reference.dimension)
            self.tree.build_optimized(self.reference_points)
        else:
            self.tree = None
        logger.debug("Indexed %d reference points (searchType=%d)",
                     self.reference_points.shape[0], self.search_type)

    def find_closests(self, reading):
        if self.reference_points is None:
            raise PreconditionError("KDTreeMatcher.find_closests called before init")
        queries = reading.points
        if queries.shape[1] != self.reference_points.shape[1]:
            raise PreconditionError(
                f"reading is {queries.shape[1]}D but reference is {self.reference_points.shape[1]}D"
            )

        if self.search_type == BRUTE_FORCE:
            dists, ids = brute_force_knn(self.reference_points, queries, self.knn, self.max_dist)
            self.visit_count += queries.shape[0] * self.reference_points.shape[0]
            return Matches(dists, ids)

        if self.n_jobs == 1 or queries.shape[0] < 2:
            dists, ids, visits = _query_chunk(self.tree, queries, self.knn, self.epsilon, self.max_dist)
            self.visit_count += visits
            return Matches(dists, ids)

        chunks = np.array_split(queries, self._chunk_count(queries.shape[0]))
        results = Parallel(n_jobs=self.n_jobs, backend='loky')(
            delayed(_query_chunk)(self.tree, chunk, self.knn, self.epsilon, self.max_dist)
            for chunk in chunks
        )
        dists, ids, visits = zip(*results)
        self.visit_count += sum(visits)
        return Matches(np.hstack(dists), np.hstack(ids))

    def _chunk_count(self, n_queries):
        workers = self.n_jobs if self.n_jobs > 0 else 8
        return max(1, min(n_queries, workers * 4))
