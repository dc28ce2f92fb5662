"""Flux limiter functions phi(r) compiled into the device program.

The active limiter is selected by the ``SLOPE_LIMITER`` header constant;
``slope_limiter`` is bound once at build time so kernels call it directly.
"""

from __future__ import annotations

SLOPE_LIMITER_NAMES: tuple[str, ...] = (
    "donor_cell",
    "lax_wendroff",
    "beam_warming",
    "fromm",
    "minmod",
    "superbee",
    "monotonized_central",
    "van_leer",
    "van_albada1",
    "koren",
    "ospre",
)

SLOPE_LIMITER_SOURCE = '''
def _limiter_donor_cell(r):
    return torch.zeros_like(r)


def _limiter_lax_wendroff(r):
    return torch.ones_like(r)


def _limiter_beam_warming(r):
    return r


def _limiter_fromm(r):
    return 0.5 * (1.0 + r)


def _limiter_minmod(r):
    return torch.clamp(torch.minimum(r, torch.ones_like(r)), min=0.0)


def _limiter_superbee(r):
    one = torch.ones_like(r)
    return torch.clamp(
        torch.maximum(torch.minimum(2.0 * r, one), torch.minimum(r, 2.0 * one)),
        min=0.0,
    )


def _limiter_monotonized_central(r):
    return torch.clamp(
        torch.minimum(torch.minimum(2.0 * r, 0.5 * (1.0 + r)), torch.full_like(r, 2.0)),
        min=0.0,
    )


def _limiter_van_leer(r):
    return (r + r.abs()) / (1.0 + r.abs())


def _limiter_van_albada1(r):
    return torch.clamp((r * r + r) / (r * r + 1.0), min=0.0)


def _limiter_koren(r):
    return torch.clamp(
        torch.minimum(torch.minimum(2.0 * r, (1.0 + 2.0 * r) / 3.0), torch.full_like(r, 2.0)),
        min=0.0,
    )


def _limiter_ospre(r):
    return torch.clamp(1.5 * (r * r + r) / (r * r + r + 1.0), min=0.0)


slope_limiter = globals()["_limiter_" + SLOPE_LIMITER]


def limiter_ratio(upwind, local):
    """Ratio of upwind to local jumps, zero where the local jump vanishes."""
    nonzero = local != 0
    safe = torch.where(nonzero, local, torch.ones_like(local))
    return torch.where(nonzero, upwind / safe, torch.zeros_like(local))
'''
