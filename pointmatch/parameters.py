"""
String-typed parameter maps.

Every component receives a plain ``dict`` of string keys and string values.
Each component class declares the keys it understands in ``PARAMS``; values
are coerced and range-checked when the component is constructed, so a bad
configuration fails before the first iteration.
"""

import math
import numbers
from collections import namedtuple

from .errors import InvalidParameter

Parameters = dict

ParamSpec = namedtuple("ParamSpec", ["name", "doc", "default", "coerce", "check"], defaults=(None,))

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def to_param(value):
    """Encode a python value as the canonical parameter string."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        value = float(value)
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return repr(value)
    return str(value)


def to_int(text):
    value = float(text)
    if not value.is_integer():
        raise ValueError(f"{text!r} is not an integer")
    return int(value)


def to_float(text):
    value = float(text)
    if math.isnan(value):
        raise ValueError("NaN is not accepted")
    return value


def to_bool(text):
    lowered = str(text).strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{text!r} is not a boolean")


def to_str(text):
    return str(text)


def in_range(lo=None, hi=None, lo_open=False, hi_open=False):
    """Build a check accepting values within [lo, hi] (bounds optionally open)."""
    def check(value):
        if lo is not None and (value < lo or (lo_open and value == lo)):
            return False
        if hi is not None and (value > hi or (hi_open and value == hi)):
            return False
        return True

    left = "(" if lo_open else "["
    right = ")" if hi_open else "]"
    check.description = f"in {left}{'-inf' if lo is None else lo}, {'inf' if hi is None else hi}{right}"
    return check


def one_of(*values):
    def check(value):
        return value in values

    check.description = f"one of {', '.join(str(v) for v in values)}"
    return check


class Parametrizable:
    """Base class for components configured from a string parameter map."""

    PARAMS = ()

    def __init__(self, params=None):
        params = dict(params or {})
        owner = type(self).__name__
        known = {param.name for param in self.PARAMS}
        unknown = sorted(set(params) - known)
        if unknown:
            raise InvalidParameter(owner, unknown[0],
                                   f"is not recognized (known: {', '.join(sorted(known)) or 'none'})")

        self.parameters = {}
        for param in self.PARAMS:
            raw = params.get(param.name, param.default)
            try:
                value = param.coerce(raw)
            except (TypeError, ValueError) as exc:
                raise InvalidParameter(owner, param.name, f"cannot parse {raw!r}: {exc}") from exc
            if param.check is not None and not param.check(value):
                expected = getattr(param.check, "description", "a valid value")
                raise InvalidParameter(owner, param.name, f"must be {expected}, got {raw!r}")
            self.parameters[param.name] = value

    def get(self, name):
        return self.parameters[name]

    @classmethod
    def describe(cls):
        """Return ``(name, default, doc)`` for every declared parameter."""
        return [(param.name, param.default, param.doc) for param in cls.PARAMS]
