"""Convergence and divergence criteria evaluated after every iteration."""

import enum
import time
from collections import deque

import numpy as np

from .errors import DivergenceSignal
from .parameters import Parametrizable, ParamSpec, in_range, to_float, to_int
from .registry import Kind, registers
from .transforms import angular_distance, translation


class TerminationState(enum.Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    MAX_ITERATIONS = "max_iterations"
    DIVERGED = "diverged"

    @property
    def terminal(self):
        return self is not TerminationState.RUNNING


class TransformationChecker(Parametrizable):
    """
    Base class of checkers.

    ``init`` receives the starting estimate; ``check`` receives the
    accumulated estimate after each iteration and returns a state.
    """

    def init(self, transformation):
        pass

    def check(self, transformation):
        raise NotImplementedError


class TransformationCheckers(list):
    """Evaluates every checker in order; the first terminal state wins."""

    def init(self, transformation):
        for checker in self:
            checker.init(transformation)

    def check(self, transformation):
        state = TerminationState.RUNNING
        for checker in self:
            result = checker.check(transformation)
            if state is TerminationState.RUNNING and result.terminal:
                state = result
        return state


@registers(Kind.TRANSFORMATION_CHECKER)
class CounterTransformationChecker(TransformationChecker):
    """Stops after ``maxIterationCount`` iterations."""

    PARAMS = (
        ParamSpec("maxIterationCount", "maximum number of iterations", "40", to_int, in_range(1)),
    )

    def init(self, transformation):
        self.iteration = 0

    def check(self, transformation):
        self.iteration += 1
        if self.iteration >= self.get("maxIterationCount"):
            return TerminationState.MAX_ITERATIONS
        return TerminationState.RUNNING


@registers(Kind.TRANSFORMATION_CHECKER)
class DifferentialTransformationChecker(TransformationChecker):
    """
    Stops once the estimate no longer moves.

    Rotation and translation changes between consecutive estimates are
    averaged over the last ``smoothLength`` iterations; the loop converges
    when both averages drop below their thresholds.
    """

    PARAMS = (
        ParamSpec("minDiffRotErr", "rotation change threshold, in radians", "0.001", to_float,
                  in_range(0.0)),
        ParamSpec("minDiffTransErr", "translation change threshold", "0.001", to_float,
                  in_range(0.0)),
        ParamSpec("smoothLength", "number of iterations over which changes are averaged", "3",
                  to_int, in_range(1)),
    )

    def init(self, transformation):
        dim = transformation.shape[0] - 1
        self.rotations = deque([transformation[:dim, :dim].copy()],
                               maxlen=self.get("smoothLength") + 1)
        self.translations = deque([translation(transformation).copy()],
                                  maxlen=self.get("smoothLength") + 1)
        self.last_rotation_error = None
        self.last_translation_error = None

    def check(self, transformation):
        dim = transformation.shape[0] - 1
        self.rotations.append(transformation[:dim, :dim].copy())
        self.translations.append(translation(transformation).copy())

        if len(self.rotations) <= self.get("smoothLength"):
            return TerminationState.RUNNING

        rotations = list(self.rotations)
        translations = list(self.translations)
        steps = len(rotations) - 1
        self.last_rotation_error = sum(
            angular_distance(rotations[k - 1], rotations[k]) for k in range(1, len(rotations))
        ) / steps
        self.last_translation_error = sum(
            np.linalg.norm(translations[k] - translations[k - 1]) for k in range(1, len(translations))
        ) / steps

        if (self.last_rotation_error < self.get("minDiffRotErr")
                and self.last_translation_error < self.get("minDiffTransErr")):
            return TerminationState.CONVERGED
        return TerminationState.RUNNING


@registers(Kind.TRANSFORMATION_CHECKER)
class BoundTransformationChecker(TransformationChecker):
    """
    Signals divergence when the estimate moves too far from where it started.

    Raises :class:`DivergenceSignal`; pair it with a counter so that the loop
    still has a regular exit.
    """

    PARAMS = (
        ParamSpec("maxRotationNorm", "maximum rotation from the start, in radians", "1.0", to_float,
                  in_range(0.0, lo_open=True)),
        ParamSpec("maxTranslationNorm", "maximum translation from the start", "1.0", to_float,
                  in_range(0.0, lo_open=True)),
    )

    def init(self, transformation):
        self.initial = transformation.copy()

    def check(self, transformation):
        dim = transformation.shape[0] - 1
        rotation = angular_distance(self.initial[:dim, :dim], transformation[:dim, :dim])
        moved = float(np.linalg.norm(translation(transformation) - translation(self.initial)))
        if rotation > self.get("maxRotationNorm"):
            raise DivergenceSignal(
                f"rotation norm {rotation:.4f} exceeds {self.get('maxRotationNorm')}",
                rotation=rotation, translation=moved)
        if moved > self.get("maxTranslationNorm"):
            raise DivergenceSignal(
                f"translation norm {moved:.4f} exceeds {self.get('maxTranslationNorm')}",
                rotation=rotation, translation=moved)
        return TerminationState.RUNNING


@registers(Kind.TRANSFORMATION_CHECKER)
class TimeBoundTransformationChecker(TransformationChecker):
    """Stops once ``maxTime`` seconds have passed since the loop started."""

    PARAMS = (
        ParamSpec("maxTime", "time budget of the loop, in seconds", "1.0", to_float,
                  in_range(0.0, lo_open=True)),
    )

    def init(self, transformation):
        self.start = time.perf_counter()

    def check(self, transformation):
        if time.perf_counter() - self.start >= self.get("maxTime"):
            return TerminationState.MAX_ITERATIONS
        return TerminationState.RUNNING
