"""Burgers-split scheme for Euler and MHD.

The conserved state is first advected with the interface velocity using a
flux-limited donor-cell flux, then pressure gradients (with von
Neumann-Richtmyer artificial viscosity) accelerate the momentum and do work
on the energy in separate integrator passes.  For MHD the magnetic field
is advected with an induction flux, magnetic pressure and tension enter the
momentum and work passes, and the divergence of B is projected out at the
end of the step.
"""

from __future__ import annotations

import logging

import torch

from hydrogpu.schemes.base import Scheme

logger = logging.getLogger(__name__)

ARTIFICIAL_VISCOSITY = 2.0

BURGERS_SOURCE = '''
# --- burgers ---
ARTIFICIAL_VISCOSITY = %r


@kernel
def calc_cfl(cfl, state):
    dt = torch.full(state.shape[:3], math.inf, dtype=state.dtype, device=state.device)
    for axis in range(DIM):
        speed = torch.clamp(max_wave_speed(state, axis), min=1e-12)
        dt = torch.minimum(dt, DX_AXIS[axis] / speed)
    cfl[INTERIOR] = dt[INTERIOR]


@kernel
def calc_interface_velocity(interface_velocity, state):
    v = velocity(state)
    for axis in range(DIM):
        interface_velocity[..., axis] = interface_average(v[..., axis], axis)


@kernel
def calc_interface_magnetic_field(interface_magnetic_field, state):
    b = magnetic_field(state)
    for axis in range(DIM):
        interface_magnetic_field[..., axis] = interface_average(b[..., axis], axis)


def _advect(q, u, axis, dt):
    """Limited donor-cell flux of ``q`` through interfaces moving at ``u``."""
    q_left = shift(q, axis, -1)
    dq = q - q_left
    positive = u >= 0.0
    upwind = torch.where(positive, q_left - shift(q, axis, -2), shift(q, axis, 1) - q)
    phi = slope_limiter(limiter_ratio(upwind, dq))
    donor = torch.where(positive, q_left, q)
    epsilon = u * dt / DX_AXIS[axis]
    return u * donor + 0.5 * u.abs() * (1.0 - epsilon.abs()) * phi * dq


@kernel
def calc_flux(flux_buffer, state, interface_velocity, dt):
    q = state[..., :NUM_HYDRO]
    for axis in range(DIM):
        u = interface_velocity[..., axis].unsqueeze(-1)
        flux_buffer[..., axis, :NUM_HYDRO] = _advect(q, u, axis, dt)


@kernel
def calc_magnetic_field_flux(flux_buffer, state, interface_velocity, interface_magnetic_field, dt):
    b = magnetic_field(state)
    v = velocity(state)
    for axis in range(DIM):
        u = interface_velocity[..., axis].unsqueeze(-1)
        f = _advect(b, u, axis, dt)
        f -= interface_average(v, axis) * interface_magnetic_field[..., axis].unsqueeze(-1)
        f[..., axis] = 0.0
        flux_buffer[..., axis, MAGNETIC_FIELD:MAGNETIC_FIELD + 3] = f


@kernel
def compute_pressure(pressure_buffer, state):
    rho = state[..., DENSITY]
    v = velocity(state)
    p = pressure(state)
    for axis in range(DIM):
        dv = shift(v[..., axis], axis, 1) - shift(v[..., axis], axis, -1)
        viscosity = 0.25 * ARTIFICIAL_VISCOSITY ** 2 * rho * dv * dv
        p = p + torch.where(dv < 0.0, viscosity, torch.zeros_like(viscosity))
    pressure_buffer[...] = p + magnetic_pressure(state)


@kernel
def diffuse_momentum(deriv, pressure_buffer, state):
    total = torch.zeros_like(deriv)
    for axis in range(DIM):
        total[..., MOMENTUM + axis] -= central_difference(pressure_buffer, axis)
    if HAS_MAGNETIC_FIELD:
        b = magnetic_field(state)
        for axis in range(DIM):
            tension = central_difference(b * b[..., axis:axis + 1], axis)
            total[..., MOMENTUM:MOMENTUM + 3] += tension
    deriv[INTERIOR] += total[INTERIOR]


@kernel
def diffuse_work(deriv, state, pressure_buffer):
    v = velocity(state)
    total = torch.zeros_like(pressure_buffer)
    for axis in range(DIM):
        total -= central_difference(pressure_buffer * v[..., axis], axis)
    if HAS_MAGNETIC_FIELD:
        b = magnetic_field(state)
        v_dot_b = (v * b).sum(-1)
        for axis in range(DIM):
            total += central_difference(b[..., axis] * v_dot_b, axis)
    deriv[INTERIOR + (ENERGY,)] += total[INTERIOR]
''' % ARTIFICIAL_VISCOSITY


class BurgersScheme(Scheme):
    """Operator-split advection / pressure scheme (Euler and MHD)."""

    name = "burgers"

    def device_source_fragments(self) -> list[str]:
        return super().device_source_fragments() + [BURGERS_SOURCE]

    def init_buffers(self) -> None:
        solver = self.solver
        shape = solver.grid.shape
        dim = solver.grid.dim
        self.interface_velocity = solver.create_buffer(shape + (dim,), "interface_velocity")
        self.flux = solver.create_buffer(shape + (dim, solver.equation.num_states), "flux")
        self.pressure = solver.create_buffer(shape, "pressure")
        self.interface_magnetic_field = None
        if solver.equation.has_magnetic_field:
            self.interface_magnetic_field = solver.create_buffer(
                shape + (dim,), "interface_magnetic_field",
            )

    def init_kernels(self) -> None:
        self.calc_cfl_kernel = self.kernel("calc_cfl")
        self.calc_interface_velocity_kernel = self.kernel("calc_interface_velocity")
        self.calc_flux_kernel = self.kernel("calc_flux")
        self.calc_flux_deriv_kernel = self.kernel("calc_flux_deriv")
        self.compute_pressure_kernel = self.kernel("compute_pressure")
        self.diffuse_momentum_kernel = self.kernel("diffuse_momentum")
        self.diffuse_work_kernel = self.kernel("diffuse_work")
        if self.solver.equation.has_magnetic_field:
            self.calc_interface_magnetic_field_kernel = self.kernel("calc_interface_magnetic_field")
            self.calc_magnetic_field_flux_kernel = self.kernel("calc_magnetic_field_flux")

    def calc_cfl(self) -> None:
        cfl = self.solver.reducer.cell_view(self.solver.grid.shape)
        self.enqueue(self.calc_cfl_kernel, cfl, self.solver.state_buffer)

    # ------------------------------------------------------------------ #
    #  Integrator passes
    # ------------------------------------------------------------------ #

    def _flux_derivative(self, deriv: torch.Tensor) -> None:
        self.enqueue(self.calc_flux_deriv_kernel, deriv, self.flux)

    def _momentum_derivative(self, deriv: torch.Tensor) -> None:
        state = self.solver.state_buffer
        self.enqueue(self.compute_pressure_kernel, self.pressure, state)
        self.enqueue(self.diffuse_momentum_kernel, deriv, self.pressure, state)

    def _work_derivative(self, deriv: torch.Tensor) -> None:
        self.enqueue(self.diffuse_work_kernel, deriv, self.solver.state_buffer, self.pressure)

    def step(self, dt: float) -> None:
        solver = self.solver
        state = solver.state_buffer
        magnetic = solver.equation.has_magnetic_field

        self.enqueue(self.calc_interface_velocity_kernel, self.interface_velocity, state)
        if magnetic:
            self.enqueue(
                self.calc_interface_magnetic_field_kernel, self.interface_magnetic_field, state,
            )
        self.enqueue(self.calc_flux_kernel, self.flux, state, self.interface_velocity, dt)
        if magnetic:
            self.enqueue(
                self.calc_magnetic_field_flux_kernel,
                self.flux, state, self.interface_velocity, self.interface_magnetic_field, dt,
            )
        solver.integrator.integrate(dt, self._flux_derivative)
        solver.boundary()

        if solver.self_gravity is not None:
            solver.self_gravity.apply_potential(dt)

        solver.integrator.integrate(dt, self._momentum_derivative)
        solver.boundary()

        solver.integrator.integrate(dt, self._work_derivative)
        solver.boundary()

        if solver.divergence_cleaning is not None:
            solver.divergence_cleaning.update()
            solver.boundary()
