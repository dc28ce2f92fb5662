"""ADM 3+1 evolution in first-order Bona-Masso form with zero shift.

Evolved fields per cell (37 channels)::

    alpha               lapse
    gamma_ij  (6)       spatial metric, symmetric storage xx xy xz yy yz zz
    A_k       (3)       d_k ln(alpha)
    D_kij     (18)      (1/2) d_k gamma_ij, six components per k
    K_ij      (6)       extrinsic curvature
    V_k       (3)       D_km^m - D^m_mk, an algebraic constraint

Only ``A``, ``D`` and ``K`` have fluxes (30 eigen channels starting at
channel 7).  ``alpha``, ``gamma`` and ``K`` also receive add-source terms,
and the post-step constrain kernel re-imposes the ``V_k`` definition.  The
``K_ij`` source keeps the quadratic curvature terms
``alpha (tr(K) K_ij - 2 K_ik K^k_j)``.

Initial conditions supply the 34 values of ``alpha, gamma_ij, A_k, D_kij,
K_ij``; ``V_k`` is computed from them.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from hydrogpu.equations.base import Equation

ADM3D_SOURCE = '''
# --- adm3d ---
ALPHA = 0
GAMMA_LL = 1
A_L = 7
D_LLL = 10
K_LL = 28
V_L = 34
EIGEN_OFFSET = 7
SYM_INDEX = ((0, 1, 2), (1, 3, 4), (2, 4, 5))


def _sym(q, offset):
    comps = q[..., offset:offset + 6]
    rows = [
        torch.stack([comps[..., SYM_INDEX[i][j]] for j in range(3)], dim=-1)
        for i in range(3)
    ]
    return torch.stack(rows, dim=-2)


def _unsym(m):
    return torch.stack(
        [m[..., 0, 0], m[..., 0, 1], m[..., 0, 2], m[..., 1, 1], m[..., 1, 2], m[..., 2, 2]],
        dim=-1,
    )


def _geometry(q):
    gamma = _sym(q, GAMMA_LL)
    gamma_inv = torch.linalg.inv(gamma)
    d = torch.stack([_sym(q, D_LLL + 6 * k) for k in range(3)], dim=-3)
    k = _sym(q, K_LL)
    return gamma_inv, d, k


def constraint_v(gamma_inv, d):
    """``V_k = gamma^mn D_kmn - gamma^mn D_mnk``."""
    first = torch.einsum("...mn,...kmn->...k", gamma_inv, d)
    second = torch.einsum("...mn,...mnk->...k", gamma_inv, d)
    return first - second


def flux(q, axis):
    alpha = q[..., ALPHA]
    gamma_inv, d, k = _geometry(q)
    trace_k = (gamma_inv * k).sum((-1, -2))
    a = q[..., A_L:A_L + 3]
    v = q[..., V_L:V_L + 3]

    f = torch.zeros_like(q)
    f[..., A_L + axis] = alpha * ADM_F * trace_k
    f[..., D_LLL + 6 * axis:D_LLL + 6 * axis + 6] = alpha.unsqueeze(-1) * q[..., K_LL:K_LL + 6]

    d_up = torch.einsum("...m,...mij->...ij", gamma_inv[..., axis, :], d)
    d_trace = torch.einsum("...mn,...jmn->...j", gamma_inv, d)
    w = 0.5 * (a + 2.0 * v - d_trace)
    lam = d_up.clone()
    lam[..., axis, :] += w
    lam[..., :, axis] += w
    f[..., K_LL:K_LL + 6] = alpha.unsqueeze(-1) * _unsym(lam)
    return f


def max_wave_speed(q, axis):
    gamma_inv = torch.linalg.inv(_sym(q, GAMMA_LL))
    return q[..., ALPHA].abs() * torch.sqrt(
        torch.clamp(max(ADM_F, 1.0) * gamma_inv[..., axis, axis], min=0.0)
    )


def eigen_basis(q_left, q_right, axis):
    return numeric_eigen_basis(q_left, q_right, axis)


@kernel
def add_source(deriv, state):
    alpha = state[..., ALPHA]
    gamma_inv, d, k = _geometry(state)
    trace_k = (gamma_inv * k).sum((-1, -2))
    k_mixed = k @ gamma_inv @ k

    source = torch.zeros_like(state)
    source[..., ALPHA] = -alpha * alpha * ADM_F * trace_k
    source[..., GAMMA_LL:GAMMA_LL + 6] = -2.0 * alpha.unsqueeze(-1) * state[..., K_LL:K_LL + 6]
    source[..., K_LL:K_LL + 6] = alpha.unsqueeze(-1) * _unsym(
        trace_k[..., None, None] * k - 2.0 * k_mixed
    )
    deriv[INTERIOR] += source[INTERIOR]


@kernel
def constrain(state):
    gamma_inv, d, k = _geometry(state)
    state[..., V_L:V_L + 3] = constraint_v(gamma_inv, d)
'''

_SYM_INDEX = ((0, 1, 2), (1, 3, 4), (2, 4, 5))


def _sym(values: np.ndarray) -> np.ndarray:
    return np.array([[values[_SYM_INDEX[i][j]] for j in range(3)] for i in range(3)])


class ADM3D(Equation):
    """Bona-Masso ADM formulation of the Einstein equations."""

    name = "adm3d"
    state_names = (
        ("alpha",)
        + tuple(f"gamma_{ij}" for ij in ("xx", "xy", "xz", "yy", "yz", "zz"))
        + tuple(f"a_{k}" for k in "xyz")
        + tuple(f"d_{k}{ij}" for k in "xyz" for ij in ("xx", "xy", "xz", "yy", "yz", "zz"))
        + tuple(f"k_{ij}" for ij in ("xx", "xy", "xz", "yy", "yz", "zz"))
        + tuple(f"v_{k}" for k in "xyz")
    )
    primitive_names = state_names[:34]
    has_source = True
    has_constraint = True
    uses_flux_flags = True

    V_L = 34

    def read_state_cell(self, primitives: Sequence[float]) -> np.ndarray:
        self.validate_primitives(primitives)
        values = np.asarray(primitives, dtype=np.float64)
        gamma_inv = np.linalg.inv(_sym(values[1:7]))
        d = np.stack([_sym(values[10 + 6 * k:16 + 6 * k]) for k in range(3)])
        v = np.einsum("mn,kmn->k", gamma_inv, d) - np.einsum("mn,mnk->k", gamma_inv, d)
        return np.concatenate([values, v])

    def unbounded_channels(self) -> tuple[int, ...]:
        # V is recomputed everywhere by the constrain kernel
        return (self.V_L, self.V_L + 1, self.V_L + 2)

    def device_source_fragments(self) -> list[str]:
        return [f"ADM_F = {self.config.adm_f!r}", ADM3D_SOURCE]
