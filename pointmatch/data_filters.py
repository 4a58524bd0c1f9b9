"""
Point cloud filters applied before (and optionally during) registration.

Every filter takes a :class:`PointCloud` and returns a new one, possibly with
fewer points or extra descriptors. Filters are applied in the configured
order; a filter needing a descriptor produced by another filter must come
after it.
"""

from collections import OrderedDict

import numpy as np

from .errors import InvalidDimension
from .matchers import KDTreeMatcher
from .parameters import (Parametrizable, ParamSpec, in_range, one_of, to_bool, to_float,
                         to_int, to_param)
from .point_cloud import PointCloud
from .registry import Kind, registers
from .utils import get_logger

logger = get_logger(__name__)


class DataPointsFilter(Parametrizable):
    """Base class of point cloud filters."""

    def init(self):
        """Reset per-registration state. Called before each registration."""

    def filter(self, cloud):
        raise NotImplementedError


class DataPointsFilters(list):
    """Ordered chain of filters, recording the point count after each one."""

    def __init__(self, filters=()):
        super().__init__(filters)
        self.counts = []

    def init(self):
        for data_filter in self:
            data_filter.init()

    def apply(self, cloud):
        self.counts = []
        for data_filter in self:
            cloud = data_filter.filter(cloud)
            self.counts.append(len(cloud))
            logger.debug("%s kept %d points", type(data_filter).__name__, len(cloud))
        return cloud


def _axis_values(cloud, dim, owner):
    """Coordinate along ``dim``, or the radius when ``dim`` is -1."""
    if dim >= cloud.dimension:
        raise InvalidDimension(
            f"{owner}: dim={dim} selects an axis of a {cloud.dimension}D cloud"
        )
    if dim == -1:
        return np.linalg.norm(cloud.points, axis=1)
    return cloud.features[dim]


def _rng(seed):
    return np.random.default_rng(seed if seed >= 0 else None)


_DIM_PARAM = ParamSpec("dim", "dimension on which the filter is applied, -1 for the radius",
                       "-1", to_int, one_of(-1, 0, 1, 2))


@registers(Kind.DATA_POINTS_FILTER)
class IdentityDataPointsFilter(DataPointsFilter):
    """Does nothing."""

    def filter(self, cloud):
        return cloud


@registers(Kind.DATA_POINTS_FILTER)
class RemoveNaNDataPointsFilter(DataPointsFilter):
    """Removes points having a non-finite coordinate."""

    def filter(self, cloud):
        return cloud.select(np.all(np.isfinite(cloud.features), axis=0))


@registers(Kind.DATA_POINTS_FILTER)
class MaxDistDataPointsFilter(DataPointsFilter):
    """
    Keeps points closer than ``maxDist`` to the origin, along one axis or radially.

    ``dim`` is checked against the cloud only when the filter is applied: an
    axis missing from the cloud raises :class:`InvalidDimension` at that point.
    """

    PARAMS = (
        _DIM_PARAM,
        ParamSpec("maxDist", "maximum distance", "1.0", to_float, in_range(0.0, lo_open=True)),
    )

    def filter(self, cloud):
        values = _axis_values(cloud, self.get("dim"), type(self).__name__)
        return cloud.select(np.abs(values) < self.get("maxDist"))


@registers(Kind.DATA_POINTS_FILTER)
class MinDistDataPointsFilter(DataPointsFilter):
    """Keeps points further than ``minDist`` from the origin, along one axis or radially."""

    PARAMS = (
        _DIM_PARAM,
        ParamSpec("minDist", "minimum distance", "1.0", to_float, in_range(0.0)),
    )

    def filter(self, cloud):
        values = _axis_values(cloud, self.get("dim"), type(self).__name__)
        return cloud.select(np.abs(values) > self.get("minDist"))


@registers(Kind.DATA_POINTS_FILTER)
class BoundingBoxDataPointsFilter(DataPointsFilter):
    PARAMS = (
        ParamSpec("xMin", "minimum x of the box", "-1.0", to_float),
        ParamSpec("xMax", "maximum x of the box", "1.0", to_float),
        ParamSpec("yMin", "minimum y of the box", "-1.0", to_float),
        ParamSpec("yMax", "maximum y of the box", "1.0", to_float),
        ParamSpec("zMin", "minimum z of the box, ignored in 2D", "-1.0", to_float),
        ParamSpec("zMax", "maximum z of the box, ignored in 2D", "1.0", to_float),
        ParamSpec("removeInside", "1 removes points inside the box, 0 points outside", "1", to_bool),
    )

    def filter(self, cloud):
        lower = np.array([self.get("xMin"), self.get("yMin"), self.get("zMin")])[:cloud.dimension]
        upper = np.array([self.get("xMax"), self.get("yMax"), self.get("zMax")])[:cloud.dimension]
        points = cloud.points
        inside = np.all((points > lower) & (points < upper), axis=1)
        return cloud.select(~inside if self.get("removeInside") else inside)


@registers(Kind.DATA_POINTS_FILTER)
class MaxQuantileOnAxisDataPointsFilter(DataPointsFilter):
    """Keeps the points whose coordinate on ``dim`` is below the ``ratio`` quantile."""

    PARAMS = (
        ParamSpec("dim", "dimension on which the filter is applied", "0", to_int, one_of(0, 1, 2)),
        ParamSpec("ratio", "fraction of points to keep", "0.5", to_float,
                  in_range(0.0, 1.0, lo_open=True, hi_open=True)),
    )

    def filter(self, cloud):
        values = _axis_values(cloud, self.get("dim"), type(self).__name__)
        if values.shape[0] == 0:
            return cloud
        kth = min(int(values.shape[0] * self.get("ratio")), values.shape[0] - 1)
        limit = np.partition(values, kth)[kth]
        return cloud.select(values < limit)


@registers(Kind.DATA_POINTS_FILTER)
class RandomSamplingDataPointsFilter(DataPointsFilter):
    """Keeps each point independently with probability ``prob``."""

    PARAMS = (
        ParamSpec("prob", "probability to keep a point", "0.75", to_float,
                  in_range(0.0, 1.0, lo_open=True)),
        ParamSpec("seed", "seed of the random generator, negative for an unseeded one", "-1", to_int),
    )

    def __init__(self, params=None):
        super().__init__(params)
        self.init()

    def init(self):
        self.rng = _rng(self.get("seed"))

    def filter(self, cloud):
        return cloud.select(self.rng.random(len(cloud)) < self.get("prob"))


@registers(Kind.DATA_POINTS_FILTER)
class MaxPointCountDataPointsFilter(DataPointsFilter):
    """Randomly subsamples clouds larger than ``maxCount`` down to ``maxCount`` points."""

    PARAMS = (
        ParamSpec("maxCount", "maximum number of points", "1000", to_int, in_range(1)),
        ParamSpec("seed", "seed of the random generator, negative for an unseeded one", "-1", to_int),
    )

    def __init__(self, params=None):
        super().__init__(params)
        self.init()

    def init(self):
        self.rng = _rng(self.get("seed"))

    def filter(self, cloud):
        if len(cloud) <= self.get("maxCount"):
            return cloud
        keep = self.rng.choice(len(cloud), size=self.get("maxCount"), replace=False)
        return cloud.select(np.sort(keep))


@registers(Kind.DATA_POINTS_FILTER)
class FixStepSamplingDataPointsFilter(DataPointsFilter):
    """
    Keeps one point every ``step`` points, starting at ``offset``.

    ``step`` starts at ``startStep`` and is multiplied by ``stepMult`` after
    each application, without going past ``endStep``.
    """

    PARAMS = (
        ParamSpec("startStep", "initial number of points to skip", "10", to_int, in_range(1)),
        ParamSpec("endStep", "limit of the number of points to skip", "10", to_int, in_range(1)),
        ParamSpec("stepMult", "multiplier of the step after each application", "1", to_float,
                  in_range(0.0, lo_open=True)),
        ParamSpec("offset", "index of the first kept point", "0", to_int, in_range(0)),
    )

    def __init__(self, params=None):
        super().__init__(params)
        self.init()

    def init(self):
        self.step = float(self.get("startStep"))

    def filter(self, cloud):
        step = max(1, int(self.step))
        filtered = cloud.select(np.arange(self.get("offset"), len(cloud), step))

        self.step *= self.get("stepMult")
        if self.get("stepMult") > 1:
            self.step = min(self.step, self.get("endStep"))
        elif self.get("stepMult") < 1:
            self.step = max(self.step, self.get("endStep"))
        return filtered


@registers(Kind.DATA_POINTS_FILTER)
class VoxelGridDataPointsFilter(DataPointsFilter):
    """Replaces the points of each voxel by their centroid (or the first of them)."""

    PARAMS = (
        ParamSpec("vSizeX", "voxel size along x", "1.0", to_float, in_range(0.0, lo_open=True)),
        ParamSpec("vSizeY", "voxel size along y", "1.0", to_float, in_range(0.0, lo_open=True)),
        ParamSpec("vSizeZ", "voxel size along z, ignored in 2D", "1.0", to_float,
                  in_range(0.0, lo_open=True)),
        ParamSpec("useCentroid", "1 averages the voxel, 0 keeps its first point", "1", to_bool),
    )

    def filter(self, cloud):
        sizes = [self.get("vSizeX"), self.get("vSizeY"), self.get("vSizeZ")][:cloud.dimension]
        return cloud.voxelize(sizes, use_centroid=self.get("useCentroid"))


_KEEP_PARAMS = (
    ParamSpec("keepNormals", "whether the normals should be added as descriptors", "1", to_bool),
    ParamSpec("keepDensities", "whether the point densities should be added as descriptors", "0", to_bool),
    ParamSpec("keepEigenValues", "whether the eigenvalues should be added as descriptors", "0", to_bool),
    ParamSpec("keepEigenVectors", "whether the eigenvectors should be added as descriptors", "0", to_bool),
)


def _unit_volume(dim):
    # Area of the unit disc in 2D, volume of the unit ball in 3D
    return np.pi if dim == 2 else 4.0 / 3.0 * np.pi


def _flatten_eigenvectors(vectors):
    # (N, D, D) with eigenvectors as columns -> (D*D, N), column-major
    n = vectors.shape[0]
    return vectors.transpose(0, 2, 1).reshape(n, -1).T


def _safe_density(count, volume):
    volume = np.asarray(volume, dtype=float)
    density = np.full(volume.shape, np.inf)
    np.divide(count, volume, out=density, where=volume > 0)
    return density


@registers(Kind.DATA_POINTS_FILTER)
class SurfaceNormalDataPointsFilter(DataPointsFilter):
    """
    Normals, eigen decomposition and density from each point's k nearest neighbors.

    The neighborhood of a point includes the point itself. Eigenvalues are
    sorted ascending; the normal is the eigenvector of the smallest one.
    """

    PARAMS = (
        ParamSpec("knn", "number of neighbors to consider, including the point itself", "5",
                  to_int, in_range(3)),
        ParamSpec("epsilon", "approximation to use for the nearest-neighbor search", "0",
                  to_float, in_range(0.0)),
    ) + _KEEP_PARAMS + (
        ParamSpec("keepMatchedIds", "whether the neighbor ids should be added as descriptors", "0", to_bool),
        ParamSpec("nJobs", "number of parallel workers used for the neighbor search", "1",
                  to_int, lambda v: v == -1 or v >= 1),
    )

    def filter(self, cloud):
        count = len(cloud)
        dim = cloud.dimension
        knn = min(self.get("knn"), count)
        if knn == 0:
            return cloud

        matcher = KDTreeMatcher({
            "knn": to_param(knn),
            "epsilon": to_param(self.get("epsilon")),
            "nJobs": to_param(self.get("nJobs")),
        })
        matcher.init(cloud)
        matches = matcher.find_closests(cloud)

        points = cloud.points
        neighbors = points[matches.ids.T]
        centered = neighbors - neighbors.mean(axis=1, keepdims=True)
        covariance = np.einsum("nki,nkj->nij", centered, centered) / knn
        eigen_values, eigen_vectors = np.linalg.eigh(covariance)

        result = cloud.copy()
        if self.get("keepNormals"):
            result.add_descriptor("normals", eigen_vectors[:, :, 0].T)
        if self.get("keepDensities"):
            radius = np.sqrt(matches.dists.max(axis=0))
            result.add_descriptor("densities", _safe_density(knn, _unit_volume(dim) * radius ** dim))
        if self.get("keepEigenValues"):
            result.add_descriptor("eigValues", eigen_values.T)
        if self.get("keepEigenVectors"):
            result.add_descriptor("eigVectors", _flatten_eigenvectors(eigen_vectors))
        if self.get("keepMatchedIds"):
            result.add_descriptor("matchedIds", matches.ids.astype(float))
        return result


@registers(Kind.DATA_POINTS_FILTER)
class SamplingSurfaceNormalDataPointsFilter(DataPointsFilter):
    """
    Subsamples space into buckets and computes one descriptor set per bucket.

    The cloud is split recursively at the median of its widest axis until
    every bucket holds at most ``binSize`` points. Each bucket is replaced by
    its mean point carrying the normal, eigen decomposition and density of the
    bucket.
    """

    PARAMS = (
        ParamSpec("binSize", "limit over which a bucket is split", "10", to_int, in_range(3)),
        ParamSpec("averageExistingDescriptors",
                  "1 averages existing descriptors over each bucket, 0 drops them", "1", to_bool),
    ) + _KEEP_PARAMS

    def filter(self, cloud):
        if len(cloud) == 0:
            return cloud
        points = cloud.points
        buckets = self._split(points)
        dim = cloud.dimension

        means = np.empty((len(buckets), dim))
        eigen_values = np.empty((len(buckets), dim))
        eigen_vectors = np.empty((len(buckets), dim, dim))
        volumes = np.empty(len(buckets))
        counts = np.empty(len(buckets))
        for b, indices in enumerate(buckets):
            bucket = points[indices]
            means[b] = bucket.mean(axis=0)
            centered = bucket - means[b]
            eigen_values[b], eigen_vectors[b] = np.linalg.eigh(centered.T @ centered / len(indices))
            volumes[b] = np.prod(bucket.max(axis=0) - bucket.min(axis=0))
            counts[b] = len(indices)

        descriptors = OrderedDict()
        if self.get("averageExistingDescriptors"):
            for name, values in cloud.descriptors.items():
                descriptors[name] = np.stack([values[:, idx].mean(axis=1) for idx in buckets], axis=1)

        result = PointCloud.from_points(means, descriptors)
        if self.get("keepNormals"):
            result.add_descriptor("normals", eigen_vectors[:, :, 0].T)
        if self.get("keepDensities"):
            result.add_descriptor("densities", _safe_density(counts, volumes))
        if self.get("keepEigenValues"):
            result.add_descriptor("eigValues", eigen_values.T)
        if self.get("keepEigenVectors"):
            result.add_descriptor("eigVectors", _flatten_eigenvectors(eigen_vectors))
        return result

    def _split(self, points):
        bin_size = self.get("binSize")
        buckets = []
        stack = [np.arange(points.shape[0])]
        while stack:
            indices = stack.pop()
            if indices.shape[0] <= bin_size:
                buckets.append(indices)
                continue
            subset = points[indices]
            extent = subset.max(axis=0) - subset.min(axis=0)
            axis = int(np.argmax(extent))
            if extent[axis] == 0:
                buckets.append(indices)
                continue
            middle = indices.shape[0] // 2
            order = np.argpartition(subset[:, axis], middle)
            stack.append(indices[order[middle:]])
            stack.append(indices[order[:middle]])
        return buckets


@registers(Kind.DATA_POINTS_FILTER)
class ObservationDirectionDataPointsFilter(DataPointsFilter):
    """Attaches to each point the vector pointing from it to the sensor position."""

    PARAMS = (
        ParamSpec("x", "x coordinate of the sensor", "0", to_float),
        ParamSpec("y", "y coordinate of the sensor", "0", to_float),
        ParamSpec("z", "z coordinate of the sensor, ignored in 2D", "0", to_float),
    )

    def filter(self, cloud):
        sensor = np.array([self.get("x"), self.get("y"), self.get("z")])[:cloud.dimension]
        result = cloud.copy()
        result.add_descriptor("observationDirections", sensor[:, np.newaxis] - cloud.features[:-1])
        return result


@registers(Kind.DATA_POINTS_FILTER)
class OrientNormalsDataPointsFilter(DataPointsFilter):
    """Flips normals to agree with the observation directions."""

    PARAMS = (
        ParamSpec("towardCenter", "1 orients normals toward the sensor, 0 away from it", "1", to_bool),
    )

    def filter(self, cloud):
        normals = cloud.get_descriptor("normals")
        directions = cloud.get_descriptor("observationDirections")
        dots = np.einsum("ij,ij->j", normals, directions)
        flip = dots < 0 if self.get("towardCenter") else dots > 0

        result = cloud.copy()
        oriented = result.descriptors["normals"]
        oriented[:, flip] *= -1
        return result
