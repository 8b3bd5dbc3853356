"""Exception hierarchy for pricekit.

Configuration problems (missing engine, negative vol, inconsistent
argument lengths) subclass ``ValueError`` so callers that only know the
built-in type still catch them.  Numerical non-convergence that leaves
no usable estimate subclasses ``RuntimeError``.  Optimizer iteration caps
are *not* exceptions: see ``calibration.EndCriteriaType``.
"""


class PricingError(Exception):
    """Base exception for the library."""
    pass


class ConfigurationError(PricingError, ValueError):
    """Invalid or inconsistent input detected at construction or first use."""
    pass


class EngineNotSetError(ConfigurationError):
    """An instrument was asked for results before an engine was attached."""
    pass


class ConvergenceError(PricingError, RuntimeError):
    """A numerical routine gave up before reaching its accuracy target."""
    pass


def require(condition: bool, message: str) -> None:
    """Raise ``ConfigurationError(message)`` unless ``condition`` holds."""
    if not condition:
        raise ConfigurationError(message)
