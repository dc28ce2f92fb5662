"""Euler equations of compressible gas dynamics.

Conserved state per cell: ``(rho, m_x, m_y, m_z, E)`` with total energy
``E = p / (gamma - 1) + rho |v|^2 / 2``.  Initial conditions supply
``(rho, v_x, v_y, v_z, p)``.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from hydrogpu.equations.base import Equation

EULER_SOURCE = '''
# --- euler ---
EIGEN_OFFSET = 0
DENSITY = 0
MOMENTUM = 1
ENERGY = 4
NUM_HYDRO = 5
HAS_MAGNETIC_FIELD = False


def velocity(q):
    return q[..., MOMENTUM:MOMENTUM + 3] / q[..., DENSITY:DENSITY + 1]


def pressure(q):
    kinetic = 0.5 * (q[..., MOMENTUM:MOMENTUM + 3] ** 2).sum(-1) / q[..., DENSITY]
    return (GAMMA - 1.0) * (q[..., ENERGY] - kinetic)


def magnetic_pressure(q):
    return torch.zeros_like(q[..., DENSITY])


def sound_speed(q):
    return torch.sqrt(torch.clamp(GAMMA * pressure(q) / q[..., DENSITY], min=0.0))


def flux(q, axis):
    vn = velocity(q)[..., axis]
    p = pressure(q)
    f = q * vn.unsqueeze(-1)
    f[..., MOMENTUM + axis] += p
    f[..., ENERGY] += p * vn
    return f


def max_wave_speed(q, axis):
    return velocity(q)[..., axis].abs() + sound_speed(q)


def eigen_basis(q_left, q_right, axis):
    """Roe-averaged eigen decomposition of the Euler flux Jacobian."""
    sqrt_left = torch.sqrt(q_left[..., DENSITY])
    sqrt_right = torch.sqrt(q_right[..., DENSITY])
    weight = (sqrt_left + sqrt_right).unsqueeze(-1)
    v = (velocity(q_left) * sqrt_left.unsqueeze(-1) + velocity(q_right) * sqrt_right.unsqueeze(-1)) / weight
    h_left = (q_left[..., ENERGY] + pressure(q_left)) / q_left[..., DENSITY]
    h_right = (q_right[..., ENERGY] + pressure(q_right)) / q_right[..., DENSITY]
    h = (h_left * sqrt_left + h_right * sqrt_right) / weight.squeeze(-1)
    v_sq = (v * v).sum(-1)
    c = torch.sqrt(torch.clamp((GAMMA - 1.0) * (h - 0.5 * v_sq), min=1e-30))
    vn = v[..., axis]
    t1 = (axis + 1) % 3
    t2 = (axis + 2) % 3

    right = q_left.new_zeros(q_left.shape[:-1] + (5, 5))
    # acoustic wave moving left
    right[..., DENSITY, 0] = 1.0
    right[..., MOMENTUM:MOMENTUM + 3, 0] = v
    right[..., MOMENTUM + axis, 0] -= c
    right[..., ENERGY, 0] = h - vn * c
    # entropy wave
    right[..., DENSITY, 1] = 1.0
    right[..., MOMENTUM:MOMENTUM + 3, 1] = v
    right[..., ENERGY, 1] = 0.5 * v_sq
    # shear waves
    right[..., MOMENTUM + t1, 2] = 1.0
    right[..., ENERGY, 2] = v[..., t1]
    right[..., MOMENTUM + t2, 3] = 1.0
    right[..., ENERGY, 3] = v[..., t2]
    # acoustic wave moving right
    right[..., DENSITY, 4] = 1.0
    right[..., MOMENTUM:MOMENTUM + 3, 4] = v
    right[..., MOMENTUM + axis, 4] += c
    right[..., ENERGY, 4] = h + vn * c

    eigenvalues = torch.stack([vn - c, vn, vn, vn, vn + c], dim=-1)
    left = torch.linalg.inv(right)
    valid = torch.isfinite(left).all(dim=-1).all(dim=-1)
    return eigenvalues, right, left, valid
'''


class Euler(Equation):
    """Ideal-gas Euler equations."""

    name = "euler"
    state_names = ("density", "momentum_x", "momentum_y", "momentum_z", "energy_total")
    primitive_names = ("density", "velocity_x", "velocity_y", "velocity_z", "pressure")
    supports_self_gravity = True

    MOMENTUM = 1

    @property
    def gamma(self) -> float:
        return self.config.gamma

    def read_state_cell(self, primitives: Sequence[float]) -> np.ndarray:
        self.validate_primitives(primitives)
        rho, vx, vy, vz, p = (float(v) for v in primitives)
        kinetic = 0.5 * rho * (vx * vx + vy * vy + vz * vz)
        return np.array(
            [rho, rho * vx, rho * vy, rho * vz, p / (self.gamma - 1.0) + kinetic],
        )

    def reflected_channels(self, axis: int) -> tuple[int, ...]:
        return (self.MOMENTUM + axis,)

    def device_source_fragments(self) -> list[str]:
        return [f"GAMMA = {self.gamma!r}", EULER_SOURCE]
