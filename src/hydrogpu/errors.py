"""Exception hierarchy for the HydroGPU solver engine.

Initialization errors (:class:`BuildError`, :class:`ConfigError`) abort
startup.  :class:`ConvergenceError` is raised per step by implicit
integrators and leaves the state buffer exactly as it was before the step,
so callers may retry with a smaller timestep.
"""

from __future__ import annotations


class HydroGPUError(Exception):
    """Base class for all solver engine errors."""


class BuildError(HydroGPUError):
    """The device program failed to compile.

    Attributes:
        log: Compiler-style diagnostic log for the failed build.
    """

    def __init__(self, message: str, log: str = "") -> None:
        self.log = log
        if log:
            message = f"{message}\n{log}"
        super().__init__(message)


class ConfigError(HydroGPUError):
    """Missing or unrecognized configuration detected at solver init."""


class ConvergenceError(HydroGPUError):
    """An implicit solve did not converge within its iteration limit.

    Attributes:
        iterations: Number of iterations performed.
        residual: Relative residual norm when the solve gave up.
    """

    def __init__(self, iterations: int, residual: float) -> None:
        self.iterations = iterations
        self.residual = residual
        super().__init__(
            f"conjugate gradient failed to converge after {iterations} "
            f"iterations (relative residual {residual:.3e}); try a smaller dt"
        )


class UnsupportedOperationError(HydroGPUError):
    """A capability the active solver configuration does not implement."""
