"""Name-based factories for every pluggable component kind."""

from .errors import DuplicateComponent, UnknownComponent


class Kind:
    DATA_POINTS_FILTER = "DataPointsFilter"
    MATCHER = "Matcher"
    OUTLIER_FILTER = "OutlierFilter"
    ERROR_MINIMIZER = "ErrorMinimizer"
    TRANSFORMATION_CHECKER = "TransformationChecker"

    ALL = (DATA_POINTS_FILTER, MATCHER, OUTLIER_FILTER, ERROR_MINIMIZER, TRANSFORMATION_CHECKER)


class ComponentRegistry:
    """
    Maps a (kind, name) pair to a factory taking a parameter map.

    Args:
        kinds: Component kinds accepted by this registry
    """

    def __init__(self, kinds=Kind.ALL):
        self._factories = {kind: {} for kind in kinds}

    def register(self, kind, name, factory):
        factories = self._table(kind)
        if name in factories:
            raise DuplicateComponent(kind, name)
        factories[name] = factory
        return factory

    def create(self, kind, name, params=None):
        factories = self._table(kind)
        try:
            factory = factories[name]
        except KeyError:
            raise UnknownComponent(kind, name, sorted(factories)) from None
        return factory(dict(params or {}))

    def names(self, kind):
        return sorted(self._table(kind))

    def describe(self, kind, name):
        factory = self._table(kind).get(name)
        if factory is None:
            raise UnknownComponent(kind, name, self.names(kind))
        describe = getattr(factory, "describe", None)
        return describe() if describe is not None else []

    def __contains__(self, key):
        kind, name = key
        return name in self._factories.get(kind, {})

    def _table(self, kind):
        try:
            return self._factories[kind]
        except KeyError:
            raise UnknownComponent("component kind", kind, sorted(self._factories)) from None


registry = ComponentRegistry()


def registers(kind, name=None):
    """Class decorator adding a component class to the process-wide registry."""
    def decorator(cls):
        registry.register(kind, name or cls.__name__, cls)
        return cls
    return decorator


def register(kind, name, factory):
    return registry.register(kind, name, factory)


def create(kind, name, params=None):
    return registry.create(kind, name, params)
