"""Custom exceptions for pseudo-transient sensitivity analysis."""


class PtSensError(Exception):
    """Base exception for sensitivity-analysis errors."""


class ConfigurationError(PtSensError):
    """Raised when model or integrator configuration is invalid."""


class DimensionMismatchError(ConfigurationError):
    """Raised when an index or array shape does not match the model."""


class ConvergenceFailure(PtSensError):
    """Raised when a steady state is required but was not reached."""


class NotReadyError(PtSensError):
    """Raised when results are queried before the producing stage completed."""
