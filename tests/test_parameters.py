"""Unit tests for string parameter maps and their validation."""

import math

import numpy as np
import pytest

from pointmatch import Kind, create
from pointmatch.errors import ConfigurationError, InvalidParameter
from pointmatch.parameters import (Parametrizable, ParamSpec, in_range, one_of, to_bool,
                                   to_float, to_int, to_param)


class Dummy(Parametrizable):
    PARAMS = (
        ParamSpec("count", "how many", "3", to_int, in_range(1)),
        ParamSpec("ratio", "a fraction", "0.5", to_float, in_range(0.0, 1.0, lo_open=True)),
        ParamSpec("flag", "a switch", "0", to_bool),
        ParamSpec("mode", "one of two modes", "fast", str, one_of("fast", "slow")),
    )


def test_defaults_are_coerced():
    dummy = Dummy()
    assert dummy.get("count") == 3
    assert dummy.get("ratio") == 0.5
    assert dummy.get("flag") is False
    assert dummy.get("mode") == "fast"


def test_given_values_override_defaults():
    dummy = Dummy({"count": "10", "ratio": "1", "flag": "true", "mode": "slow"})
    assert dummy.parameters == {"count": 10, "ratio": 1.0, "flag": True, "mode": "slow"}


def test_unknown_key_is_rejected():
    with pytest.raises(InvalidParameter) as exc_info:
        Dummy({"cuont": "3"})
    assert exc_info.value.name == "cuont"
    assert exc_info.value.owner == "Dummy"


@pytest.mark.parametrize("params", [
    {"count": "0"},
    {"count": "2.5"},
    {"count": "many"},
    {"ratio": "0"},
    {"ratio": "nan"},
    {"flag": "maybe"},
    {"mode": "medium"},
])
def test_invalid_values_fail_at_construction(params):
    with pytest.raises(InvalidParameter):
        Dummy(params)


def test_invalid_parameter_is_a_configuration_error():
    assert issubclass(InvalidParameter, ConfigurationError)


def test_describe_lists_declared_parameters():
    described = Dummy.describe()
    assert [name for name, _, _ in described] == ["count", "ratio", "flag", "mode"]
    assert described[0] == ("count", "3", "how many")


def test_to_param_canonical_strings():
    assert to_param(True) == "1"
    assert to_param(False) == "0"
    assert to_param(3) == "3"
    assert to_param(0.25) == "0.25"
    assert to_param(math.inf) == "inf"
    assert to_param(-math.inf) == "-inf"
    assert to_param("abc") == "abc"


def test_to_param_encodes_numpy_scalars():
    ratio = np.linspace(0.1, 0.9, 9)[4]
    assert to_param(ratio) == "0.5"
    assert to_param(np.int64(7)) == "7"
    assert to_param(np.float32(np.inf)) == "inf"

    trimmed = create(Kind.OUTLIER_FILTER, "TrimmedDistOutlierFilter", {"ratio": to_param(ratio)})
    assert trimmed.get("ratio") == 0.5
    counter = create(Kind.TRANSFORMATION_CHECKER, "CounterTransformationChecker",
                     {"maxIterationCount": to_param(np.int64(12))})
    assert counter.get("maxIterationCount") == 12


def test_to_float_accepts_infinity():
    assert to_float("inf") == math.inf


def test_range_description():
    check = in_range(0.0, 1.0, lo_open=True)
    assert check.description == "in (0.0, 1.0]"
    assert not check(0.0)
    assert check(1.0)
