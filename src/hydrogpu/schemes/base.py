"""Numerical scheme interface.

A scheme owns its scratch buffers and kernels and implements one step as a
fixed sequence of kernel launches, integrator passes and boundary calls.
All buffers are allocated through the solver so that ownership stays with
the solver and the state buffer is shared, never copied.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from hydrogpu.device.queue import Kernel
from hydrogpu.schemes.slope_limiter import SLOPE_LIMITER_SOURCE

if TYPE_CHECKING:
    from hydrogpu.solver.solver import Solver


class Scheme(ABC):
    """Base class for finite-volume update schemes.

    Args:
        solver: The owning solver.  Its program, queue, state buffer and
            integrator are available once ``Solver.init`` reaches the
            scheme's ``init_*`` hooks.
    """

    name: ClassVar[str] = ""

    def __init__(self, solver: Solver) -> None:
        self.solver = solver

    def device_source_fragments(self) -> list[str]:
        """Scheme source linked after the common fragments."""
        return [SLOPE_LIMITER_SOURCE]

    @abstractmethod
    def init_buffers(self) -> None:
        """Allocate scheme scratch buffers."""

    @abstractmethod
    def init_kernels(self) -> None:
        """Create kernel handles from the built program."""

    def init_step(self) -> None:
        """Per-update hook run after the boundary and before the timestep."""

    @abstractmethod
    def calc_cfl(self) -> None:
        """Fill the reducer's CFL buffer with per-cell stable timesteps."""

    @abstractmethod
    def step(self, dt: float) -> None:
        """Advance the state buffer by ``dt``."""

    # ------------------------------------------------------------------ #
    #  Launch helpers
    # ------------------------------------------------------------------ #

    def kernel(self, name: str) -> Kernel:
        return self.solver.program.kernel(name)

    def enqueue(self, kernel: Kernel, *args: Any) -> None:
        """Bind ``args`` and launch ``kernel`` over the whole grid."""
        kernel.set_args(*args)
        geometry = self.solver.geometry
        self.solver.queue.enqueue_nd_range_kernel(kernel, geometry.global_size, geometry.local_size)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(equation={self.solver.equation.name})"
