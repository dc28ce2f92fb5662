"""Roe-type characteristic scheme.

Each update the eigen basis of the flux Jacobian is computed once per
interface (``init_step``).  The flux at an interface is the central
average of the physical fluxes plus flux-limited characteristic
dissipation::

    F = (F_L + F_R) / 2 + R * fluxTilde
    fluxTilde = -lambda dqTilde (theta + phi(r) (epsilon - theta)) / 2

with ``dqTilde = L (q_R - q_L)``, ``theta = sign(lambda)``,
``epsilon = lambda dt / dx`` and ``r`` the upwind-to-local ratio of
``dqTilde``.

Equations whose eigen basis can fail (numeric decompositions) get a flag
buffer: the eigen kernel writes a Rusanov flux at interfaces where the
basis is unusable and sets the flag, and the flux kernel leaves flagged
interfaces alone.  Flags are cleared to 0 at the start of every update.
"""

from __future__ import annotations

import logging

import torch

from hydrogpu.schemes.base import Scheme

logger = logging.getLogger(__name__)

ROE_SOURCE = '''
# --- roe ---
def rusanov_flux(q_left, q_right, axis):
    speed = torch.maximum(max_wave_speed(q_left, axis), max_wave_speed(q_right, axis))
    return (
        0.5 * (flux(q_left, axis) + flux(q_right, axis))
        - 0.5 * speed.unsqueeze(-1) * (q_right - q_left)
    )


def flux_jacobian(q, axis):
    """Central finite-difference Jacobian over the eigen channels."""
    n = NUM_STATES - EIGEN_OFFSET
    step = torch.finfo(q.dtype).eps ** (1.0 / 3.0) * (1.0 + q[..., EIGEN_OFFSET:].abs())
    eye = torch.eye(n, dtype=q.dtype, device=q.device)
    delta = step.unsqueeze(-2) * eye
    base = q.unsqueeze(-2).expand(q.shape[:-1] + (n, NUM_STATES))
    q_plus = base.clone()
    q_plus[..., EIGEN_OFFSET:] += delta
    q_minus = base.clone()
    q_minus[..., EIGEN_OFFSET:] -= delta
    df = (flux(q_plus, axis) - flux(q_minus, axis))[..., EIGEN_OFFSET:]
    return df.transpose(-1, -2) / (2.0 * step.unsqueeze(-2))


def numeric_eigen_basis(q_left, q_right, axis):
    """Eigen decomposition of the Jacobian at the interface mean state.

    Interfaces with complex or non-finite modes, or a basis that does not
    reproduce the Jacobian, are marked invalid and given an identity basis
    with eigenvalues spanning the fastest wave speed.
    """
    jacobian = flux_jacobian(0.5 * (q_left + q_right), axis)
    finite = torch.isfinite(jacobian).all(dim=-1).all(dim=-1)
    jacobian = torch.nan_to_num(jacobian, nan=0.0, posinf=0.0, neginf=0.0)
    n = jacobian.shape[-1]
    tolerance = torch.finfo(jacobian.dtype).eps ** (1.0 / 3.0)

    work = jacobian.cpu() if jacobian.device.type == "mps" else jacobian
    values, vectors = torch.linalg.eig(work)
    values = values.to(jacobian.device)
    vectors = vectors.to(jacobian.device)

    eigenvalues, order = torch.sort(values.real, dim=-1)
    imaginary = torch.gather(values.imag, -1, order)
    vectors = torch.gather(vectors, -1, order.unsqueeze(-2).expand(vectors.shape))
    # A nearly-real conjugate pair (x + iy, x - iy) spans the same real plane as (x, -y)
    right = torch.where((imaginary < 0.0).unsqueeze(-2), vectors.imag, vectors.real)
    left, info = torch.linalg.inv_ex(right)

    scale = 1.0 + jacobian.abs().amax(dim=(-1, -2))
    rebuilt = right @ (eigenvalues.unsqueeze(-1) * left)
    valid = (
        finite
        & (info == 0)
        & (imaginary.abs() <= tolerance * (1.0 + eigenvalues.abs())).all(dim=-1)
        & torch.isfinite(left).all(dim=-1).all(dim=-1)
        & ((rebuilt - jacobian).abs().amax(dim=(-1, -2)) <= tolerance * scale)
    )

    eye = torch.eye(n, dtype=jacobian.dtype, device=jacobian.device)
    mask = valid[..., None, None]
    right = torch.where(mask, right, eye)
    left = torch.where(mask, torch.nan_to_num(left), eye)
    speed = torch.maximum(max_wave_speed(q_left, axis), max_wave_speed(q_right, axis))
    fallback = torch.zeros_like(eigenvalues)
    fallback[..., 0] = -speed
    fallback[..., -1] = speed
    eigenvalues = torch.where(valid.unsqueeze(-1), eigenvalues, fallback)
    return eigenvalues, right, left, valid


@kernel
def calc_eigen_basis(eigenvalues, eigen_right, eigen_left, state, flux_buffer, flux_flags):
    for axis in range(DIM):
        q_left = shift(state, axis, -1)
        lam, right, left, valid = eigen_basis(q_left, state, axis)
        eigenvalues[..., axis, :] = lam
        eigen_right[..., axis, :, :] = right
        eigen_left[..., axis, :, :] = left
        if flux_flags is not None:
            invalid = ~valid
            fallback = rusanov_flux(q_left, state, axis)
            flux_buffer[..., axis, :] = torch.where(
                invalid.unsqueeze(-1), fallback, flux_buffer[..., axis, :],
            )
            flux_flags[..., axis] = torch.where(
                invalid, torch.ones_like(flux_flags[..., axis]), flux_flags[..., axis],
            )


@kernel
def calc_cfl(cfl, eigenvalues):
    dt = torch.full(eigenvalues.shape[:3], math.inf, dtype=eigenvalues.dtype, device=eigenvalues.device)
    for axis in range(DIM):
        lam = eigenvalues[..., axis, :]
        max_lambda = torch.clamp(lam[..., -1], min=0.0)
        min_lambda = torch.clamp(shift(lam, axis, 1)[..., 0], max=0.0)
        speed = torch.clamp(max_lambda - min_lambda, min=1e-12)
        dt = torch.minimum(dt, DX_AXIS[axis] / speed)
    cfl[INTERIOR] = dt[INTERIOR]


@kernel
def calc_delta_q_tilde(delta_q_tilde, state, eigen_left):
    for axis in range(DIM):
        dq = (state - shift(state, axis, -1))[..., EIGEN_OFFSET:]
        delta_q_tilde[..., axis, :] = (eigen_left[..., axis, :, :] @ dq.unsqueeze(-1)).squeeze(-1)


@kernel
def calc_flux(flux_buffer, state, eigenvalues, eigen_right, delta_q_tilde, dt, flux_flags):
    for axis in range(DIM):
        lam = eigenvalues[..., axis, :]
        dq_tilde = delta_q_tilde[..., axis, :]
        positive = lam >= 0.0
        upwind = torch.where(positive, shift(dq_tilde, axis, -1), shift(dq_tilde, axis, 1))
        phi = slope_limiter(limiter_ratio(upwind, dq_tilde))
        theta = torch.where(positive, torch.ones_like(lam), -torch.ones_like(lam))
        epsilon = lam * dt / DX_AXIS[axis]
        flux_tilde = -0.5 * lam * dq_tilde * (theta + phi * (epsilon - theta))

        q_left = shift(state, axis, -1)
        f = 0.5 * (flux(q_left, axis) + flux(state, axis))
        f[..., EIGEN_OFFSET:] += (eigen_right[..., axis, :, :] @ flux_tilde.unsqueeze(-1)).squeeze(-1)
        if flux_flags is not None:
            flagged = flux_flags[..., axis].bool().unsqueeze(-1)
            f = torch.where(flagged, flux_buffer[..., axis, :], f)
        flux_buffer[..., axis, :] = f
'''


class RoeScheme(Scheme):
    """Flux-limited Roe scheme for every equation."""

    name = "roe"

    def device_source_fragments(self) -> list[str]:
        return super().device_source_fragments() + [ROE_SOURCE]

    def init_buffers(self) -> None:
        solver = self.solver
        equation = solver.equation
        dim = solver.grid.dim
        num_eigen = equation.num_states - solver.program.constant("EIGEN_OFFSET")
        shape = solver.grid.shape
        self.num_eigen = num_eigen
        self.eigenvalues = solver.create_buffer(shape + (dim, num_eigen), "eigenvalues")
        self.eigen_right = solver.create_buffer(shape + (dim, num_eigen, num_eigen), "eigen_right")
        self.eigen_left = solver.create_buffer(shape + (dim, num_eigen, num_eigen), "eigen_left")
        self.delta_q_tilde = solver.create_buffer(shape + (dim, num_eigen), "delta_q_tilde")
        self.flux = solver.create_buffer(shape + (dim, equation.num_states), "flux")
        self.flux_flags = None
        if equation.uses_flux_flags:
            self.flux_flags = solver.create_buffer(shape + (dim,), "flux_flags", dtype=torch.int8)

    def init_kernels(self) -> None:
        self.calc_eigen_basis_kernel = self.kernel("calc_eigen_basis")
        self.calc_cfl_kernel = self.kernel("calc_cfl")
        self.calc_delta_q_tilde_kernel = self.kernel("calc_delta_q_tilde")
        self.calc_flux_kernel = self.kernel("calc_flux")
        self.calc_flux_deriv_kernel = self.kernel("calc_flux_deriv")
        equation = self.solver.equation
        self.add_source_kernel = self.kernel("add_source") if equation.has_source else None
        self.constrain_kernel = self.kernel("constrain") if equation.has_constraint else None

    def init_step(self) -> None:
        queue = self.solver.queue
        if self.flux_flags is not None:
            queue.enqueue_fill_buffer(self.flux_flags, 0)
        self.enqueue(
            self.calc_eigen_basis_kernel,
            self.eigenvalues, self.eigen_right, self.eigen_left,
            self.solver.state_buffer, self.flux, self.flux_flags,
        )

    def calc_cfl(self) -> None:
        cfl = self.solver.reducer.cell_view(self.solver.grid.shape)
        self.enqueue(self.calc_cfl_kernel, cfl, self.eigenvalues)

    def _flux_derivative(self, dt: float):
        state = self.solver.state_buffer

        def derivative(deriv: torch.Tensor) -> None:
            self.enqueue(self.calc_delta_q_tilde_kernel, self.delta_q_tilde, state, self.eigen_left)
            self.enqueue(
                self.calc_flux_kernel,
                self.flux, state, self.eigenvalues, self.eigen_right,
                self.delta_q_tilde, dt, self.flux_flags,
            )
            self.enqueue(self.calc_flux_deriv_kernel, deriv, self.flux)

        return derivative

    def _source_derivative(self, deriv: torch.Tensor) -> None:
        self.enqueue(self.add_source_kernel, deriv, self.solver.state_buffer)

    def step(self, dt: float) -> None:
        solver = self.solver
        solver.integrator.integrate(dt, self._flux_derivative(dt))
        if self.add_source_kernel is not None:
            solver.integrator.integrate(dt, self._source_derivative)
        if self.constrain_kernel is not None:
            self.enqueue(self.constrain_kernel, solver.state_buffer)
        if solver.self_gravity is not None:
            solver.self_gravity.apply_potential(dt)
        solver.boundary()
        if solver.divergence_cleaning is not None:
            solver.divergence_cleaning.update()
            solver.boundary()
