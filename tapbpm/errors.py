"""Custom exceptions for tap-bpm."""


class DegenerateIntervalError(ValueError):
    """Raised when a tap does not come strictly after the previous one."""


class InsufficientDataError(ValueError):
    """Raised when a tempo map is requested before two taps exist."""


class InvalidInputError(ValueError):
    """Raised when a window size or display mode is outside its allowed set."""


class MissingDependencyError(RuntimeError):
    """Raised when an optional dependency required at runtime is missing."""
