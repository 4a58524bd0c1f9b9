"""
Correspondence weighting.

An outlier filter turns the squared distances of a :class:`Matches` set into
one non-negative weight per correspondence. Unmatched entries always get a
zero weight and never enter the statistics.
"""

import numpy as np

from .errors import InvalidParameter
from .losses import LOSS_FUNCTIONS, get_loss_function
from .parameters import Parametrizable, ParamSpec, in_range, one_of, to_float, to_str
from .registry import Kind, registers

MIXING_MODES = ("product", "min")


class OutlierFilter(Parametrizable):
    """Base class of outlier filters."""

    def compute(self, reading, reference, matches):
        raise NotImplementedError


class OutlierFilters(list):
    """
    Chain of outlier filters.

    Weights of the filters are combined by ``mixing``: ``product`` (any zero
    rejects) or ``min``.
    """

    def __init__(self, filters=(), mixing="product"):
        super().__init__(filters)
        if mixing not in MIXING_MODES:
            raise InvalidParameter(type(self).__name__, "mixing",
                                   f"must be one of {', '.join(MIXING_MODES)}, got {mixing!r}")
        self.mixing = mixing

    def compute(self, reading, reference, matches):
        weights = matches.matched_mask().astype(float)
        for outlier_filter in self:
            filter_weights = outlier_filter.compute(reading, reference, matches)
            if self.mixing == "product":
                weights = weights * filter_weights
            else:
                weights = np.minimum(weights, filter_weights)
        return weights


def _keep_closest(matches, count):
    """Binary weights selecting the ``count`` closest matched correspondences."""
    weights = np.zeros(matches.dists.shape)
    matched = np.flatnonzero(matches.matched_mask())
    if count <= 0 or matched.shape[0] == 0:
        return weights
    dists = matches.dists.ravel()[matched]
    order = np.lexsort((matched, dists))[:count]
    weights.flat[matched[order]] = 1.0
    return weights


@registers(Kind.OUTLIER_FILTER)
class NullOutlierFilter(OutlierFilter):
    """Keeps every matched correspondence with weight 1."""

    def compute(self, reading, reference, matches):
        return matches.matched_mask().astype(float)


@registers(Kind.OUTLIER_FILTER)
class MaxDistOutlierFilter(OutlierFilter):
    """Rejects correspondences further apart than ``maxDist``."""

    PARAMS = (
        ParamSpec("maxDist", "maximum distance between matched points", "1.0", to_float,
                  in_range(0.0, lo_open=True)),
    )

    def compute(self, reading, reference, matches):
        limit = self.get("maxDist") ** 2
        return (matches.matched_mask() & (matches.dists <= limit)).astype(float)


@registers(Kind.OUTLIER_FILTER)
class MinDistOutlierFilter(OutlierFilter):
    """Rejects correspondences closer than ``minDist``."""

    PARAMS = (
        ParamSpec("minDist", "minimum distance between matched points", "1.0", to_float,
                  in_range(0.0)),
    )

    def compute(self, reading, reference, matches):
        limit = self.get("minDist") ** 2
        return (matches.matched_mask() & (matches.dists >= limit)).astype(float)


@registers(Kind.OUTLIER_FILTER)
class MedianDistOutlierFilter(OutlierFilter):
    """Rejects correspondences whose squared distance exceeds ``factor`` times the median."""

    PARAMS = (
        ParamSpec("factor", "points farther away than factor * median will be rejected", "3.0",
                  to_float, in_range(0.0, lo_open=True)),
    )

    def compute(self, reading, reference, matches):
        matched = matches.matched_mask()
        if not matched.any():
            return np.zeros(matches.dists.shape)
        limit = self.get("factor") * np.median(matches.dists[matched])
        return (matched & (matches.dists <= limit)).astype(float)


@registers(Kind.OUTLIER_FILTER)
class TrimmedDistOutlierFilter(OutlierFilter):
    """Keeps the ``ratio`` fraction of closest correspondences, rounded to a count."""

    PARAMS = (
        ParamSpec("ratio", "fraction of closest matches to keep", "0.85", to_float,
                  in_range(0.0, 1.0, lo_open=True)),
    )

    def compute(self, reading, reference, matches):
        count = int(round(self.get("ratio") * matches.matched_count))
        return _keep_closest(matches, count)


@registers(Kind.OUTLIER_FILTER)
class VarTrimmedDistOutlierFilter(OutlierFilter):
    """
    Trimmed filter choosing its own ratio between ``minRatio`` and ``maxRatio``.

    For each candidate kept count ``m`` over the ``n`` sorted matched distances,
    the mean of the ``m`` smallest squared distances is penalized by
    ``(m / n) ** (-2 * lambda)``; the count with the lowest score is kept. A
    well aligned pair yields a flat distance profile and a high ratio, a poorly
    aligned one a low ratio.
    """

    PARAMS = (
        ParamSpec("minRatio", "minimum fraction of matches to keep", "0.05", to_float,
                  in_range(0.0, 1.0, lo_open=True)),
        ParamSpec("maxRatio", "maximum fraction of matches to keep", "0.99", to_float,
                  in_range(0.0, 1.0, lo_open=True)),
        ParamSpec("lambda", "penalty exponent of small ratios", "2.05", to_float,
                  in_range(0.0, lo_open=True)),
    )

    def __init__(self, params=None):
        super().__init__(params)
        if self.get("minRatio") >= self.get("maxRatio"):
            raise InvalidParameter(type(self).__name__, "minRatio",
                                   "must be smaller than maxRatio")
        self.last_ratio = None

    def optimize_inlier_ratio(self, matches):
        dists = np.sort(matches.dists[matches.matched_mask()])
        n = dists.shape[0]
        if n == 0:
            return 0.0
        min_el = int(np.floor(self.get("minRatio") * n))
        max_el = max(int(np.floor(self.get("maxRatio") * n)), min_el + 1)
        kept = np.arange(min_el + 1, max_el + 1)
        sums = np.cumsum(dists)[kept - 1]
        scores = (kept / n) ** (-2.0 * self.get("lambda")) * sums / kept
        return kept[int(np.argmin(scores))] / n

    def compute(self, reading, reference, matches):
        self.last_ratio = self.optimize_inlier_ratio(matches)
        count = int(round(self.last_ratio * matches.matched_count))
        return _keep_closest(matches, count)


@registers(Kind.OUTLIER_FILTER)
class SurfaceNormalOutlierFilter(OutlierFilter):
    """Rejects pairs whose normals differ by more than ``maxAngle`` radians."""

    PARAMS = (
        ParamSpec("maxAngle", "maximum angle between the two normals", "1.57", to_float,
                  in_range(0.0, np.pi)),
    )

    def compute(self, reading, reference, matches):
        reading_normals = reading.get_descriptor("normals")
        reference_normals = reference.get_descriptor("normals")
        matched = matches.matched_mask()
        weights = np.zeros(matches.dists.shape)
        for row in range(matches.ids.shape[0]):
            cols = np.flatnonzero(matched[row])
            a = reading_normals[:, cols]
            b = reference_normals[:, matches.ids[row, cols]]
            cosine = np.abs(np.einsum("ij,ij->j", a, b)) / (
                np.linalg.norm(a, axis=0) * np.linalg.norm(b, axis=0))
            angles = np.arccos(np.clip(cosine, 0.0, 1.0))
            weights[row, cols] = (angles <= self.get("maxAngle")).astype(float)
        return weights


@registers(Kind.OUTLIER_FILTER)
class RobustOutlierFilter(OutlierFilter):
    """Soft weights from a robust loss applied to the match distances."""

    PARAMS = (
        ParamSpec("robustFct", "robust function: huber, tukey or cauchy", "huber", to_str,
                  one_of(*LOSS_FUNCTIONS)),
        ParamSpec("tuning", "scale of the robust function, in distance units", "1.0", to_float,
                  in_range(0.0, lo_open=True)),
    )

    def __init__(self, params=None):
        super().__init__(params)
        self.loss = get_loss_function(self.get("robustFct"))

    def compute(self, reading, reference, matches):
        matched = matches.matched_mask()
        weights = np.zeros(matches.dists.shape)
        residuals = np.sqrt(matches.dists[matched])
        weights[matched] = self.loss(residuals, self.get("tuning"))
        return weights
