"""Self-gravity: Poisson relaxation of the gravitational potential.

Solves ``laplacian(phi) = 4 pi G (rho - rho_0)`` by Jacobi sweeps, warm
started from the previous update's potential, and applies the resulting
acceleration ``g = -grad(phi)`` to momentum and energy.  ``rho_0`` is the
mean density on fully periodic domains (where the Poisson problem has no
solution otherwise) and zero elsewhere.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import torch

from hydrogpu.solver.boundary import BoundaryDispatcher

if TYPE_CHECKING:
    from hydrogpu.solver.solver import Solver

logger = logging.getLogger(__name__)

GRAVITY_SOURCE = '''
# --- self gravity ---
def _relax(phi, source):
    total = torch.zeros_like(phi)
    weight = 0.0
    for axis in range(DIM):
        inv_dx_sq = 1.0 / (DX_AXIS[axis] * DX_AXIS[axis])
        total += (shift(phi, axis, 1) + shift(phi, axis, -1)) * inv_dx_sq
        weight += 2.0 * inv_dx_sq
    relaxed = (total - source) / weight
    phi[INTERIOR] = relaxed[INTERIOR]


@kernel
def poisson_relax(potential, state, background_density):
    source = 4.0 * math.pi * GRAVITATIONAL_CONSTANT * (state[..., DENSITY] - background_density)
    _relax(potential[..., 0], source)


@kernel
def mean_density(result, state):
    result[0] = state[INTERIOR + (DENSITY,)].mean()


@kernel
def apply_gravity(state, potential, dt):
    phi = potential[..., 0]
    rho = state[..., DENSITY]
    update = torch.zeros_like(state)
    for axis in range(DIM):
        g = -central_difference(phi, axis)
        update[..., MOMENTUM + axis] = dt * rho * g
        update[..., ENERGY] += dt * state[..., MOMENTUM + axis] * g
    state[INTERIOR] += update[INTERIOR]
'''


class SelfGravity:
    """Gravitational potential solver attached to a hydro equation.

    Args:
        solver: The owning solver (Euler or MHD equation).
        max_iterations: Jacobi sweeps per update.
    """

    def __init__(self, solver: Solver, max_iterations: int) -> None:
        self.solver = solver
        self.max_iterations = int(max_iterations)
        self.fully_periodic = all(
            solver.config.boundary.is_periodic(axis) for axis in range(solver.grid.dim)
        )
        self.potential = solver.create_buffer(solver.grid.shape + (1,), "gravity_potential")
        self.background = solver.create_buffer((1,), "gravity_background_density")
        program = solver.program
        self.poisson_relax_kernel = program.kernel("poisson_relax")
        self.mean_density_kernel = program.kernel("mean_density")
        self.apply_gravity_kernel = program.kernel("apply_gravity")
        self.boundary = BoundaryDispatcher(
            program, solver.queue, solver.geometry, self.potential,
            solver.equation.potential_boundary_kernel_for,
        )

    def _background_density(self) -> torch.Tensor | float:
        if not self.fully_periodic:
            return 0.0
        self.solver.enqueue(self.mean_density_kernel, self.background, self.solver.state_buffer)
        return self.background

    def relax(self) -> None:
        """Run the configured number of Jacobi sweeps."""
        solver = self.solver
        background = self._background_density()
        for _ in range(self.max_iterations):
            self.boundary.apply()
            solver.enqueue(self.poisson_relax_kernel, self.potential, solver.state_buffer, background)
        self.boundary.apply()

    def init_potential(self) -> None:
        """Start the potential from zero and relax it for the initial state."""
        self.solver.queue.enqueue_fill_buffer(self.potential, 0.0)
        self.relax()
        logger.debug("Gravity potential initialized with %d sweeps", self.max_iterations)

    def apply_potential(self, dt: float) -> None:
        """Relax the potential for the current density and apply its force."""
        self.relax()
        self.solver.enqueue(self.apply_gravity_kernel, self.solver.state_buffer, self.potential, dt)
