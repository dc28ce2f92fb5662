"""Special-relativistic hydrodynamics (units with c = 1).

Conserved state per cell: ``(D, S_x, S_y, S_z, tau)`` with Lorentz factor
``W = 1 / sqrt(1 - |v|^2)`` and specific enthalpy
``h = 1 + eps + p / rho``::

    D   = rho W
    S   = rho h W^2 v
    tau = rho h W^2 - p - D

Primitive variables are recovered on the device by Newton iteration on the
pressure (Marti & Mueller, Living Rev. Relativ. 6, 2003).
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from hydrogpu.equations.base import Equation

SRHD_SOURCE = '''
# --- srhd ---
EIGEN_OFFSET = 0
DENSITY = 0
MOMENTUM = 1
ENERGY = 4
NEWTON_ITERATIONS = 30
PRESSURE_FLOOR = 1e-14
MAX_VELOCITY_SQ = 1.0 - 1e-12


def primitives(q):
    """Recover ``(rho, v, p, W, h)`` from the conserved state."""
    d = torch.clamp(q[..., DENSITY], min=1e-30)
    s = q[..., MOMENTUM:MOMENTUM + 3]
    tau = q[..., ENERGY]
    s_sq = (s * s).sum(-1)
    p = torch.clamp((GAMMA - 1.0) * tau, min=PRESSURE_FLOOR)
    p = torch.maximum(p, torch.sqrt(s_sq) - tau - d + PRESSURE_FLOOR)
    for _ in range(NEWTON_ITERATIONS):
        v_sq = torch.clamp(s_sq / (tau + d + p) ** 2, max=MAX_VELOCITY_SQ)
        w = 1.0 / torch.sqrt(1.0 - v_sq)
        rho = d / w
        eps = (tau + d * (1.0 - w) + p * (1.0 - w * w)) / (d * w)
        residual = (GAMMA - 1.0) * rho * eps - p
        h = 1.0 + eps + p / rho
        cs_sq = torch.clamp(GAMMA * p / (rho * h), min=0.0, max=1.0)
        p = torch.clamp(p - residual / (v_sq * cs_sq - 1.0), min=PRESSURE_FLOOR)
    e_total = tau + d + p
    v = s / e_total.unsqueeze(-1)
    v_sq = torch.clamp((v * v).sum(-1), max=MAX_VELOCITY_SQ)
    w = 1.0 / torch.sqrt(1.0 - v_sq)
    rho = d / w
    h = e_total / (rho * w * w)
    return rho, v, p, w, h


def flux(q, axis):
    rho, v, p, w, h = primitives(q)
    vn = v[..., axis]
    f = q * vn.unsqueeze(-1)
    f[..., MOMENTUM + axis] += p
    f[..., ENERGY] += p * vn
    return f


def max_wave_speed(q, axis):
    rho, v, p, w, h = primitives(q)
    cs_sq = torch.clamp(GAMMA * p / (rho * h), min=0.0, max=MAX_VELOCITY_SQ)
    v_sq = (v * v).sum(-1)
    vn = v[..., axis]
    root = torch.sqrt(torch.clamp(
        cs_sq * (1.0 - v_sq) * (1.0 - v_sq * cs_sq - vn * vn * (1.0 - cs_sq)), min=0.0,
    ))
    denom = 1.0 - v_sq * cs_sq
    plus = (vn * (1.0 - cs_sq) + root) / denom
    minus = (vn * (1.0 - cs_sq) - root) / denom
    return torch.maximum(plus.abs(), minus.abs())


def eigen_basis(q_left, q_right, axis):
    return numeric_eigen_basis(q_left, q_right, axis)
'''


class SRHD(Equation):
    """Special-relativistic ideal-gas hydrodynamics."""

    name = "srhd"
    state_names = ("rest_mass_density", "momentum_x", "momentum_y", "momentum_z", "energy_tau")
    primitive_names = ("density", "velocity_x", "velocity_y", "velocity_z", "pressure")
    uses_flux_flags = True

    MOMENTUM = 1

    @property
    def gamma(self) -> float:
        return self.config.gamma

    def read_state_cell(self, primitives: Sequence[float]) -> np.ndarray:
        self.validate_primitives(primitives)
        rho, vx, vy, vz, p = (float(v) for v in primitives)
        if rho <= 0.0:
            raise ValueError(f"rest-mass density must be positive, got rho = {rho}")
        v_sq = vx * vx + vy * vy + vz * vz
        if v_sq >= 1.0:
            raise ValueError(f"velocity must be below the speed of light, got |v|^2 = {v_sq}")
        w = 1.0 / math.sqrt(1.0 - v_sq)
        h = 1.0 + p / ((self.gamma - 1.0) * rho) + p / rho
        d = rho * w
        enthalpy_density = rho * h * w * w
        return np.array([
            d,
            enthalpy_density * vx,
            enthalpy_density * vy,
            enthalpy_density * vz,
            enthalpy_density - p - d,
        ])

    def reflected_channels(self, axis: int) -> tuple[int, ...]:
        return (self.MOMENTUM + axis,)

    def device_source_fragments(self) -> list[str]:
        return [f"GAMMA = {self.gamma!r}", SRHD_SOURCE]
