"""Projection of the magnetic field onto its divergence-free part.

After each MHD step ``div(B)`` is computed, ``laplacian(phi) = div(B)`` is
relaxed by Jacobi sweeps, and ``B -= grad(phi)``.  Total energy is
adjusted by the change in magnetic energy so the thermal pressure of every
cell is unchanged by the projection.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from hydrogpu.solver.boundary import BoundaryDispatcher

if TYPE_CHECKING:
    from hydrogpu.solver.solver import Solver

logger = logging.getLogger(__name__)

DIVERGENCE_CLEANING_SOURCE = '''
# --- divergence cleaning ---
def _divergence(b):
    div = torch.zeros_like(b[..., 0])
    for axis in range(DIM):
        div += central_difference(b[..., axis], axis)
    return div


@kernel
def calc_magnetic_field_divergence(divergence, state):
    divergence[..., 0] = _divergence(state[..., MAGNETIC_FIELD:MAGNETIC_FIELD + 3])


@kernel
def poisson_relax_divergence(potential, divergence):
    phi = potential[..., 0]
    total = torch.zeros_like(phi)
    weight = 0.0
    for axis in range(DIM):
        inv_dx_sq = 1.0 / (DX_AXIS[axis] * DX_AXIS[axis])
        total += (shift(phi, axis, 1) + shift(phi, axis, -1)) * inv_dx_sq
        weight += 2.0 * inv_dx_sq
    relaxed = (total - divergence[..., 0]) / weight
    phi[INTERIOR] = relaxed[INTERIOR]


@kernel
def remove_divergence(state, potential):
    phi = potential[..., 0]
    b_old = state[..., MAGNETIC_FIELD:MAGNETIC_FIELD + 3]
    b_new = b_old.clone()
    for axis in range(DIM):
        b_new[..., axis] -= central_difference(phi, axis)
    magnetic_change = 0.5 * ((b_new * b_new).sum(-1) - (b_old * b_old).sum(-1))
    state[INTERIOR + (ENERGY,)] += magnetic_change[INTERIOR]
    state[INTERIOR + (slice(MAGNETIC_FIELD, MAGNETIC_FIELD + 3),)] = b_new[INTERIOR]
'''


class DivergenceCleaning:
    """div(B) projection for equations with a magnetic field.

    Args:
        solver: The owning solver.
        max_iterations: Jacobi sweeps per update.
    """

    def __init__(self, solver: Solver, max_iterations: int) -> None:
        self.solver = solver
        self.max_iterations = int(max_iterations)
        shape = solver.grid.shape + (1,)
        self.divergence = solver.create_buffer(shape, "magnetic_field_divergence")
        self.potential = solver.create_buffer(shape, "divergence_potential")
        program = solver.program
        self.calc_divergence_kernel = program.kernel("calc_magnetic_field_divergence")
        self.relax_kernel = program.kernel("poisson_relax_divergence")
        self.remove_kernel = program.kernel("remove_divergence")
        self.boundary = BoundaryDispatcher(
            program, solver.queue, solver.geometry, self.potential,
            solver.equation.potential_boundary_kernel_for,
        )

    def update(self) -> None:
        solver = self.solver
        solver.enqueue(self.calc_divergence_kernel, self.divergence, solver.state_buffer)
        for _ in range(self.max_iterations):
            self.boundary.apply()
            solver.enqueue(self.relax_kernel, self.potential, self.divergence)
        self.boundary.apply()
        solver.enqueue(self.remove_kernel, solver.state_buffer, self.potential)
