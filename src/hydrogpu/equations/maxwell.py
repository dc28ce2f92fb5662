"""Maxwell's equations in a linear, isotropic, conducting medium.

Conserved state per cell: ``(E_x, E_y, E_z, B_x, B_y, B_z)``.  With
``c^2 = 1 / (permittivity * permeability)``::

    dE/dt - c^2 curl(B) = -(conductivity / permittivity) E
    dB/dt + curl(E) = 0

The system is linear, so the eigen basis is constant per axis.  The
conduction current is an add-source term integrated after the flux pass.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from hydrogpu.equations.base import Equation

MAXWELL_SOURCE = '''
# --- maxwell ---
EIGEN_OFFSET = 0
ELECTRIC_FIELD = 0
MAGNETIC_FIELD = 3
LIGHT_SPEED_SQ = 1.0 / (PERMITTIVITY * PERMEABILITY)
LIGHT_SPEED = math.sqrt(LIGHT_SPEED_SQ)


def flux(q, axis):
    e = q[..., ELECTRIC_FIELD:ELECTRIC_FIELD + 3]
    b = q[..., MAGNETIC_FIELD:MAGNETIC_FIELD + 3]
    t1 = (axis + 1) % 3
    t2 = (axis + 2) % 3
    f = torch.zeros_like(q)
    f[..., ELECTRIC_FIELD + t1] = LIGHT_SPEED_SQ * b[..., t2]
    f[..., ELECTRIC_FIELD + t2] = -LIGHT_SPEED_SQ * b[..., t1]
    f[..., MAGNETIC_FIELD + t1] = -e[..., t2]
    f[..., MAGNETIC_FIELD + t2] = e[..., t1]
    return f


def max_wave_speed(q, axis):
    return torch.full_like(q[..., 0], LIGHT_SPEED)


def _axis_basis(axis, dtype, device):
    c = LIGHT_SPEED
    t1 = (axis + 1) % 3
    t2 = (axis + 2) % 3
    right = torch.zeros(6, 6, dtype=dtype, device=device)
    # (E_t2, B_t1) and (E_t1, B_t2) pairs travel at -c and +c
    right[ELECTRIC_FIELD + t2, 0] = c
    right[MAGNETIC_FIELD + t1, 0] = 1.0
    right[ELECTRIC_FIELD + t1, 1] = -c
    right[MAGNETIC_FIELD + t2, 1] = 1.0
    # normal components do not propagate
    right[ELECTRIC_FIELD + axis, 2] = 1.0
    right[MAGNETIC_FIELD + axis, 3] = 1.0
    right[ELECTRIC_FIELD + t1, 4] = c
    right[MAGNETIC_FIELD + t2, 4] = 1.0
    right[ELECTRIC_FIELD + t2, 5] = -c
    right[MAGNETIC_FIELD + t1, 5] = 1.0
    eigenvalues = torch.tensor([-c, -c, 0.0, 0.0, c, c], dtype=dtype, device=device)
    return eigenvalues, right, torch.linalg.inv(right)


def eigen_basis(q_left, q_right, axis):
    eigenvalues, right, left = _axis_basis(axis, q_left.dtype, q_left.device)
    shape = q_left.shape[:-1]
    valid = torch.ones(shape, dtype=torch.bool, device=q_left.device)
    return (
        eigenvalues.expand(shape + (6,)),
        right.expand(shape + (6, 6)),
        left.expand(shape + (6, 6)),
        valid,
    )


@kernel
def add_source(deriv, state):
    """Conduction current damping of the electric field."""
    field = INTERIOR + (slice(ELECTRIC_FIELD, ELECTRIC_FIELD + 3),)
    deriv[field] -= (CONDUCTIVITY / PERMITTIVITY) * state[field]
'''


class Maxwell(Equation):
    """Maxwell's equations."""

    name = "maxwell"
    state_names = (
        "electric_field_x", "electric_field_y", "electric_field_z",
        "magnetic_field_x", "magnetic_field_y", "magnetic_field_z",
    )
    primitive_names = state_names
    has_source = True

    ELECTRIC_FIELD = 0
    MAGNETIC_FIELD = 3

    def read_state_cell(self, primitives: Sequence[float]) -> np.ndarray:
        self.validate_primitives(primitives)
        return np.array([float(v) for v in primitives])

    def reflected_channels(self, axis: int) -> tuple[int, ...]:
        # Perfect conductor: tangential E and normal B vanish at the wall
        t1, t2 = (axis + 1) % 3, (axis + 2) % 3
        return (self.ELECTRIC_FIELD + t1, self.ELECTRIC_FIELD + t2, self.MAGNETIC_FIELD + axis)

    def device_source_fragments(self) -> list[str]:
        header = "\n".join([
            f"PERMITTIVITY = {self.config.permittivity!r}",
            f"PERMEABILITY = {self.config.permeability!r}",
            f"CONDUCTIVITY = {self.config.conductivity!r}",
        ])
        return [header, MAXWELL_SOURCE]
