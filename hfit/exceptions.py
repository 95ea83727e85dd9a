"""
Exceptions raised by hfit.

Invalid configuration values are rejected eagerly and never clamped.
Calling a refinement step before any fit was computed is a programming
error. Convergence and "nothing left to refine" are not errors; they are
reported through return values.
"""


class HFitError(Exception):
    """Base class for hfit errors."""


class ConfigurationError(HFitError, ValueError):
    """An invalid refinement, smoothing or basis setting."""


class PreconditionError(HFitError, RuntimeError):
    """An operation was called before the state it depends on exists."""
