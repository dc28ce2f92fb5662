"""Equation interface.

An equation is an immutable descriptor: the ordered state-variable names,
the primitive tuple accepted by initial conditions, the conversion from
primitives to conserved state, the boundary kernel per (axis, channel,
side), and the device source fragments implementing its physics.

Device fragments of every equation define, for batched cell tensors
``q[..., NUM_STATES]``:

* ``flux(q, axis)``: physical flux along ``axis``.
* ``max_wave_speed(q, axis)``: bound on the characteristic speeds.
* ``eigen_basis(q_left, q_right, axis)``: eigenvalues, right and left
  eigenvectors of the flux Jacobian over the eigen channels, and a mask of
  interfaces where the decomposition is valid.
* ``EIGEN_OFFSET``: index of the first channel with a flux; channels
  before it only change through source terms.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import ClassVar

import numpy as np

from hydrogpu.config import BoundaryConfig, BoundaryMethod, EquationConfig
from hydrogpu.solver.boundary import BoundaryKernel


class Equation(ABC):
    """Base class for the supported conservation laws.

    Capability flags tell the schemes which extra kernels to launch.
    """

    name: ClassVar[str] = ""
    state_names: ClassVar[tuple[str, ...]] = ()
    primitive_names: ClassVar[tuple[str, ...]] = ()

    has_source: ClassVar[bool] = False
    has_constraint: ClassVar[bool] = False
    uses_flux_flags: ClassVar[bool] = False
    has_magnetic_field: ClassVar[bool] = False
    supports_self_gravity: ClassVar[bool] = False

    def __init__(self, config: EquationConfig, boundary: BoundaryConfig) -> None:
        self.config = config
        self.boundary = boundary

    @property
    def num_states(self) -> int:
        return len(self.state_names)

    @abstractmethod
    def read_state_cell(self, primitives: Sequence[float]) -> np.ndarray:
        """Convert one cell's primitive tuple to its conserved state."""

    @abstractmethod
    def device_source_fragments(self) -> list[str]:
        """Equation-specific device source appended to the program."""

    def reflected_channels(self, axis: int) -> tuple[int, ...]:
        """Channels negated by a mirror boundary normal to ``axis``."""
        return ()

    def unbounded_channels(self) -> tuple[int, ...]:
        """Channels the boundary dispatcher must leave alone."""
        return ()

    def boundary_kernel_for(self, axis: int, channel: int, side: int) -> BoundaryKernel | None:
        """Boundary kernel for a state channel, or ``None`` to skip it."""
        if channel in self.unbounded_channels():
            return None
        method = self.boundary.method(axis, side)
        if method == BoundaryMethod.PERIODIC:
            return BoundaryKernel.PERIODIC
        if method == BoundaryMethod.FREEFLOW:
            return BoundaryKernel.FREEFLOW
        if channel in self.reflected_channels(axis):
            return BoundaryKernel.REFLECT
        return BoundaryKernel.MIRROR

    def potential_boundary_kernel_for(self, axis: int, channel: int, side: int) -> BoundaryKernel:
        """Boundary kernel for scalar potentials (gravity, divergence cleaning)."""
        if self.boundary.is_periodic(axis):
            return BoundaryKernel.PERIODIC
        return BoundaryKernel.FREEFLOW

    def validate_primitives(self, primitives: Sequence[float]) -> None:
        if len(primitives) != len(self.primitive_names):
            raise ValueError(
                f"{self.name} initial condition must return {len(self.primitive_names)} "
                f"values {self.primitive_names}, got {len(primitives)}"
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(num_states={self.num_states})"
