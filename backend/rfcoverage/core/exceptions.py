"""Exceptions raised by the coverage engine."""


class CoverageEngineError(Exception):
    """Base class for coverage engine errors."""


class GPUUnavailableError(CoverageEngineError):
    """No usable compute device for the accelerated propagation engine.

    Raised at construction time; callers fall back to the CPU engine.
    """
