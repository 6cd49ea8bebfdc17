class LocatorError(Exception):
    """Base class for errors raised by the relocator."""


class InputError(LocatorError, ValueError):
    """Malformed or insufficient event input, raised before any iteration."""


class NumericalError(LocatorError):
    """Singular or ill-conditioned design matrix."""


class DataError(LocatorError):
    """Reference data (travel-time model, depth grid) is unusable."""


class LoadError(DataError):
    """Reference data could not be read from its backing file."""
