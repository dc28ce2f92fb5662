"""Verification problems with exact or reference solutions."""

from hydrogpu.verification.shock_tubes import (
    ShockTubeResult,
    run_brio_wu,
    run_sod,
    sod_shock_tube_analytical,
)

__all__ = [
    "ShockTubeResult",
    "run_brio_wu",
    "run_sod",
    "sod_shock_tube_analytical",
]
