"""Ideal magnetohydrodynamics.

Conserved state per cell: ``(rho, m_x, m_y, m_z, E, B_x, B_y, B_z)`` in
code units with ``mu_0`` absorbed into ``B``, so the magnetic pressure is
``|B|^2 / 2`` and ``E = p / (gamma - 1) + rho |v|^2 / 2 + |B|^2 / 2``.
Initial conditions supply ``(rho, v_x, v_y, v_z, p, B_x, B_y, B_z)``.

The flux Jacobian has degenerate wave families (e.g. where the normal
field vanishes), so the Roe scheme uses a numeric eigen basis and flags
interfaces where the decomposition is unusable; those interfaces fall
back to a Rusanov flux.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from hydrogpu.equations.base import Equation

MHD_SOURCE = '''
# --- mhd ---
EIGEN_OFFSET = 0
DENSITY = 0
MOMENTUM = 1
ENERGY = 4
MAGNETIC_FIELD = 5
NUM_HYDRO = 5
HAS_MAGNETIC_FIELD = True
DENSITY_FLOOR = 1e-12
PRESSURE_FLOOR = 1e-14


def velocity(q):
    return q[..., MOMENTUM:MOMENTUM + 3] / q[..., DENSITY:DENSITY + 1]


def magnetic_field(q):
    return q[..., MAGNETIC_FIELD:MAGNETIC_FIELD + 3]


def magnetic_pressure(q):
    return 0.5 * (magnetic_field(q) ** 2).sum(-1)


def pressure(q):
    """Thermal pressure."""
    kinetic = 0.5 * (q[..., MOMENTUM:MOMENTUM + 3] ** 2).sum(-1) / q[..., DENSITY]
    return (GAMMA - 1.0) * (q[..., ENERGY] - kinetic - magnetic_pressure(q))


def fast_speed(q, axis):
    """Fast magnetosonic speed normal to ``axis``."""
    rho = torch.clamp(q[..., DENSITY], min=DENSITY_FLOOR)
    p = torch.clamp(pressure(q), min=PRESSURE_FLOOR)
    b = magnetic_field(q)
    a_sq = GAMMA * p / rho
    va_sq = (b * b).sum(-1) / rho
    van_sq = b[..., axis] ** 2 / rho
    sum_sq = a_sq + va_sq
    discriminant = torch.clamp(sum_sq * sum_sq - 4.0 * a_sq * van_sq, min=0.0)
    return torch.sqrt(0.5 * (sum_sq + torch.sqrt(discriminant)))


def flux(q, axis):
    v = velocity(q)
    b = magnetic_field(q)
    vn = v[..., axis]
    bn = b[..., axis]
    total_pressure = pressure(q) + magnetic_pressure(q)
    f = q * vn.unsqueeze(-1)
    f[..., MOMENTUM:MOMENTUM + 3] -= b * bn.unsqueeze(-1)
    f[..., MOMENTUM + axis] += total_pressure
    f[..., ENERGY] += total_pressure * vn - bn * (v * b).sum(-1)
    f[..., MAGNETIC_FIELD:MAGNETIC_FIELD + 3] -= v * bn.unsqueeze(-1)
    return f


def max_wave_speed(q, axis):
    return velocity(q)[..., axis].abs() + fast_speed(q, axis)


def eigen_basis(q_left, q_right, axis):
    return numeric_eigen_basis(q_left, q_right, axis)
'''


class MHD(Equation):
    """Ideal MHD equations."""

    name = "mhd"
    state_names = (
        "density", "momentum_x", "momentum_y", "momentum_z", "energy_total",
        "magnetic_field_x", "magnetic_field_y", "magnetic_field_z",
    )
    primitive_names = (
        "density", "velocity_x", "velocity_y", "velocity_z", "pressure",
        "magnetic_field_x", "magnetic_field_y", "magnetic_field_z",
    )
    uses_flux_flags = True
    has_magnetic_field = True
    supports_self_gravity = True

    MOMENTUM = 1
    MAGNETIC_FIELD = 5

    @property
    def gamma(self) -> float:
        return self.config.gamma

    def read_state_cell(self, primitives: Sequence[float]) -> np.ndarray:
        self.validate_primitives(primitives)
        rho, vx, vy, vz, p, bx, by, bz = (float(v) for v in primitives)
        kinetic = 0.5 * rho * (vx * vx + vy * vy + vz * vz)
        magnetic = 0.5 * (bx * bx + by * by + bz * bz)
        return np.array([
            rho, rho * vx, rho * vy, rho * vz,
            p / (self.gamma - 1.0) + kinetic + magnetic,
            bx, by, bz,
        ])

    def reflected_channels(self, axis: int) -> tuple[int, ...]:
        return (self.MOMENTUM + axis, self.MAGNETIC_FIELD + axis)

    def device_source_fragments(self) -> list[str]:
        return [f"GAMMA = {self.gamma!r}", MHD_SOURCE]
