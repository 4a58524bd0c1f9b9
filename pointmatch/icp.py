"""Iterative Closest Point (ICP) algorithm implementation."""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import yaml

from .data_filters import DataPointsFilters
from .errors import (ConfigurationError, DivergenceSignal, IncompleteChain,
                     InsufficientCorrespondences, RegistrationFailure)
from .outlier_filters import OutlierFilters
from .parameters import to_param
from .registry import Kind, registry
from .transformation_checkers import TerminationState, TransformationCheckers
from .transforms import invert
from .utils import get_logger

logger = get_logger(__name__)

# YAML section -> (component kind, holds a list)
CHAIN_SECTIONS = {
    "readingDataPointsFilters": (Kind.DATA_POINTS_FILTER, True),
    "readingStepDataPointsFilters": (Kind.DATA_POINTS_FILTER, True),
    "referenceDataPointsFilters": (Kind.DATA_POINTS_FILTER, True),
    "matcher": (Kind.MATCHER, False),
    "outlierFilters": (Kind.OUTLIER_FILTER, True),
    "errorMinimizer": (Kind.ERROR_MINIMIZER, False),
    "transformationCheckers": (Kind.TRANSFORMATION_CHECKER, True),
}
OUTLIER_MIXING_KEY = "outlierMixing"


@dataclass
class RegistrationResult:
    """Result from ICP registration"""
    transformation: np.ndarray
    iterations: int
    termination: TerminationState
    residual: Optional[float] = None
    reading_filter_counts: List[int] = field(default_factory=list)
    prefiltered_reading_count: int = 0
    prefiltered_reference_count: int = 0
    intermediate_transforms: List[np.ndarray] = field(default_factory=list)
    mean_distances: List[float] = field(default_factory=list)
    visit_count: int = 0
    divergence: Optional[DivergenceSignal] = None

    @property
    def converged(self):
        return self.termination is TerminationState.CONVERGED

    @property
    def diverged(self):
        return self.termination is TerminationState.DIVERGED


def _build_component(kind, entry):
    """Create a component from ``"Name"`` or ``{"Name": {param: value}}``."""
    if isinstance(entry, str):
        name, params = entry, {}
    elif isinstance(entry, dict) and len(entry) == 1:
        name, params = next(iter(entry.items()))
        params = params or {}
    else:
        raise ConfigurationError(f"cannot read a {kind} from {entry!r}")
    if not isinstance(params, dict):
        raise ConfigurationError(f"parameters of {name} must be a mapping, got {params!r}")
    return registry.create(kind, name, {key: to_param(value) for key, value in params.items()})


class ICPChainBase:
    """
    The components of an ICP chain.

    Stages: reading, reading-step and reference data filters, one matcher,
    outlier filters, one error minimizer and transformation checkers.
    """

    def __init__(self):
        self.raise_on_divergence = False
        self.cleanup()

    def cleanup(self):
        self.reading_filters = DataPointsFilters()
        self.reading_step_filters = DataPointsFilters()
        self.reference_filters = DataPointsFilters()
        self.matcher = None
        self.outlier_filters = OutlierFilters()
        self.error_minimizer = None
        self.transformation_checkers = TransformationCheckers()

    def set_default(self):
        """Random sampling on the reading, sampled normals on the reference, point-to-plane."""
        self.cleanup()
        self.reading_filters.append(registry.create(Kind.DATA_POINTS_FILTER, "RandomSamplingDataPointsFilter"))
        self.reference_filters.append(
            registry.create(Kind.DATA_POINTS_FILTER, "SamplingSurfaceNormalDataPointsFilter"))
        self.matcher = registry.create(Kind.MATCHER, "KDTreeMatcher")
        self.outlier_filters.append(registry.create(Kind.OUTLIER_FILTER, "TrimmedDistOutlierFilter"))
        self.error_minimizer = registry.create(Kind.ERROR_MINIMIZER, "PointToPlaneErrorMinimizer")
        self.transformation_checkers.append(
            registry.create(Kind.TRANSFORMATION_CHECKER, "CounterTransformationChecker"))
        self.transformation_checkers.append(
            registry.create(Kind.TRANSFORMATION_CHECKER, "DifferentialTransformationChecker"))
        return self

    def from_config(self, config):
        """
        Replace the chain by the one described in ``config``.

        Args:
            config: Mapping with the keys of ``CHAIN_SECTIONS`` and optionally
                ``outlierMixing`` (``product`` or ``min``)
        """
        config = dict(config or {})
        unknown = sorted(set(config) - set(CHAIN_SECTIONS) - {OUTLIER_MIXING_KEY})
        if unknown:
            raise ConfigurationError(f"unknown ICP chain section(s): {', '.join(unknown)}")

        self.cleanup()
        self.outlier_filters = OutlierFilters(mixing=config.get(OUTLIER_MIXING_KEY, "product"))
        targets = {
            "readingDataPointsFilters": self.reading_filters,
            "readingStepDataPointsFilters": self.reading_step_filters,
            "referenceDataPointsFilters": self.reference_filters,
            "outlierFilters": self.outlier_filters,
            "transformationCheckers": self.transformation_checkers,
        }
        for section, (kind, is_list) in CHAIN_SECTIONS.items():
            if section not in config or config[section] is None:
                continue
            entry = config[section]
            if is_list:
                if not isinstance(entry, list):
                    raise ConfigurationError(f"section '{section}' must be a list")
                targets[section].extend(_build_component(kind, item) for item in entry)
            elif section == "matcher":
                self.matcher = _build_component(kind, entry)
            else:
                self.error_minimizer = _build_component(kind, entry)
        return self

    def load_from_yaml(self, stream):
        """Build the chain from a YAML document (string or open file)."""
        config = yaml.safe_load(stream)
        if config is not None and not isinstance(config, dict):
            raise ConfigurationError("an ICP chain description must be a YAML mapping")
        return self.from_config(config)

    def validate(self):
        missing = []
        if self.matcher is None:
            missing.append("matcher")
        if self.error_minimizer is None:
            missing.append("error minimizer")
        if not self.transformation_checkers:
            missing.append("transformation checkers")
        if missing:
            raise IncompleteChain(f"ICP chain is missing: {', '.join(missing)}")

    def _prepare_reference(self, reference_in):
        """Filter the reference and express it in a frame centered on its mean."""
        self.reference_filters.init()
        reference = self.reference_filters.apply(reference_in)
        if len(reference) == 0:
            raise RegistrationFailure("reference cloud is empty after filtering")

        dim = reference.dimension
        T_refIn_refMean = np.eye(dim + 1)
        T_refIn_refMean[:dim, dim] = reference.points.mean(axis=0)
        return reference.transformed(invert(T_refIn_refMean)), T_refIn_refMean

    def _compute(self, reading_in, reference, T_refIn_refMean, T_refIn_dataIn):
        total_start = time.perf_counter()
        dim = reference.dimension
        if reading_in.dimension != dim:
            raise RegistrationFailure(
                f"reading is {reading_in.dimension}D but reference is {dim}D")
        if T_refIn_dataIn.shape != (dim + 1, dim + 1):
            raise RegistrationFailure(
                f"initial transformation must be {dim + 1}x{dim + 1}, got {T_refIn_dataIn.shape}")

        # Reading filters run in the reading's own frame
        self.reading_filters.init()
        reading = self.reading_filters.apply(reading_in)
        prefiltered_reading_count = len(reading)

        # From here the reading is expressed in the reference mean frame
        T_refMean_dataIn = invert(T_refIn_refMean) @ T_refIn_dataIn
        reading = reading.transformed(T_refMean_dataIn)

        logger.info("Starting ICP: %d reading points, %d reference points, %dD",
                    prefiltered_reading_count, len(reference), dim)

        self.reading_step_filters.init()
        T_iter = np.eye(dim + 1)
        self.transformation_checkers.init(T_iter)

        intermediate_transforms = [T_iter.copy()]
        mean_distances = []
        termination = TerminationState.RUNNING
        divergence = None
        iteration = 0

        while termination is TerminationState.RUNNING:
            step_reading = self.reading_step_filters.apply(reading)
            step_reading = step_reading.transformed(T_iter)

            matches = self.matcher.find_closests(step_reading)
            weights = self.outlier_filters.compute(step_reading, reference, matches)

            kept = weights > 0
            mean_distance = float(np.mean(np.sqrt(matches.dists[kept]))) if kept.any() else float("nan")
            mean_distances.append(mean_distance)

            try:
                T_inc = self.error_minimizer.compute(step_reading, reference, weights, matches)
            except InsufficientCorrespondences as exc:
                if iteration == 0:
                    raise RegistrationFailure(f"cannot start registration: {exc}") from exc
                raise

            T_iter = T_inc @ T_iter
            intermediate_transforms.append(T_iter.copy())
            iteration += 1
            logger.debug("Iter %3d: matched=%d kept=%d distance=%.6f",
                         iteration, matches.matched_count, int(np.count_nonzero(kept)), mean_distance)

            try:
                termination = self.transformation_checkers.check(T_iter)
            except DivergenceSignal as signal:
                logger.warning("ICP diverged at iteration %d: %s", iteration, signal)
                if self.raise_on_divergence:
                    raise
                termination = TerminationState.DIVERGED
                divergence = signal

        visit_count = self.matcher.visit_count
        logger.info("Matcher visited %d points", visit_count)
        self.matcher.reset_visit_count()
        logger.info("ICP stopped after %d iterations (%s) in %.3fs",
                    iteration, termination.value, time.perf_counter() - total_start)

        # Move the estimate back out of the reference mean frame
        transformation = T_refIn_refMean @ T_iter @ T_refMean_dataIn
        return RegistrationResult(
            transformation=transformation,
            iterations=iteration,
            termination=termination,
            residual=self.error_minimizer.last_residual,
            reading_filter_counts=list(self.reading_filters.counts),
            prefiltered_reading_count=prefiltered_reading_count,
            prefiltered_reference_count=len(reference),
            intermediate_transforms=intermediate_transforms,
            mean_distances=mean_distances,
            visit_count=visit_count,
            divergence=divergence,
        )


class ICP(ICPChainBase):
    """Registers a reading cloud onto a reference cloud."""

    def register(self, reading, reference, initial=None):
        """
        Run ICP registration.

        Args:
            reading: PointCloud to move
            reference: PointCloud to align onto
            initial: Optional initial guess of the reading pose in the reference frame

        Returns:
            RegistrationResult whose transformation maps reading points into
            the reference frame
        """
        self.validate()
        if initial is None:
            initial = np.eye(reading.dimension + 1)
        reference, T_refIn_refMean = self._prepare_reference(reference)
        self.matcher.init(reference)
        return self._compute(reading, reference, T_refIn_refMean, np.asarray(initial, dtype=float))

    def __call__(self, reading, reference, initial=None):
        return self.register(reading, reference, initial).transformation


class ICPSequence(ICPChainBase):
    """
    Registers successive readings against one map.

    The map is filtered and indexed once in ``set_map``; every ``register``
    call reuses the same index until the map changes.
    """

    def cleanup(self):
        super().cleanup()
        self._map = None
        self._T_refIn_refMean = None

    def set_map(self, cloud):
        self.validate()
        self._map, self._T_refIn_refMean = self._prepare_reference(cloud)
        self.matcher.init(self._map)
        logger.info("Map set with %d points", len(self._map))

    def clear_map(self):
        self._map = None
        self._T_refIn_refMean = None

    @property
    def has_map(self):
        return self._map is not None

    def get_prefiltered_map(self):
        """The filtered map, in its original frame."""
        if self._map is None:
            return None
        return self._map.transformed(self._T_refIn_refMean)

    def register(self, reading, initial=None):
        self.validate()
        if self._map is None:
            raise RegistrationFailure("no map set, call set_map first")
        if initial is None:
            initial = np.eye(reading.dimension + 1)
        return self._compute(reading, self._map, self._T_refIn_refMean,
                             np.asarray(initial, dtype=float))

    def __call__(self, reading, initial=None):
        return self.register(reading, initial).transformation
