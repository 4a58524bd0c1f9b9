"""Exception hierarchy of the registration engine."""


class PointMatchError(Exception):
    """Base class of every error raised by pointmatch."""


class ConfigurationError(PointMatchError):
    """Raised while a chain is being assembled, before any iteration runs."""


class UnknownComponent(ConfigurationError):
    def __init__(self, kind, name, available=()):
        self.kind = kind
        self.name = name
        self.available = tuple(available)
        message = f"Unknown {kind} '{name}'"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)


class DuplicateComponent(ConfigurationError):
    def __init__(self, kind, name):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' is already registered")


class InvalidParameter(ConfigurationError):
    def __init__(self, owner, name, reason):
        self.owner = owner
        self.name = name
        self.reason = reason
        super().__init__(f"{owner}: parameter '{name}' {reason}")


class PreconditionError(PointMatchError):
    """Raised lazily by a component whose input lacks something it needs."""


class InvalidDimension(PreconditionError):
    """An axis selector points past the dimensionality of the cloud."""


class InsufficientCorrespondences(PointMatchError):
    def __init__(self, count, required):
        self.count = count
        self.required = required
        super().__init__(
            f"only {count} weighted correspondences left, at least {required} required"
        )


class RegistrationFailure(PointMatchError):
    """The registration could not be started or completed."""


class DivergenceSignal(PointMatchError):
    """Raised by a bound checker when the estimate leaves its allowed region."""

    def __init__(self, message, rotation=None, translation=None):
        self.rotation = rotation
        self.translation = translation
        super().__init__(message)


class IncompleteChain(RegistrationFailure, ConfigurationError):
    """A required stage (matcher, error minimizer, checkers) is not configured."""
