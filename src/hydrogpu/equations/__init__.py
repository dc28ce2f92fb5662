"""Conservation laws the solver can evolve.

Modules:
    base        - Equation interface and boundary lookup
    euler       - Euler gas dynamics
    mhd         - Ideal magnetohydrodynamics
    maxwell     - Maxwell electromagnetics
    srhd        - Special-relativistic hydrodynamics
    adm3d       - ADM3D Bona-Masso numerical relativity
"""

from __future__ import annotations

from hydrogpu.config import BoundaryConfig, EquationConfig
from hydrogpu.equations.adm3d import ADM3D
from hydrogpu.equations.base import Equation
from hydrogpu.equations.euler import Euler
from hydrogpu.equations.maxwell import Maxwell
from hydrogpu.equations.mhd import MHD
from hydrogpu.equations.srhd import SRHD
from hydrogpu.errors import ConfigError

EQUATIONS: dict[str, type[Equation]] = {
    cls.name: cls for cls in (Euler, MHD, Maxwell, SRHD, ADM3D)
}


def make_equation(config: EquationConfig, boundary: BoundaryConfig) -> Equation:
    """Construct the equation named by ``config.name``.

    Raises:
        ConfigError: If the name is not a known equation.
    """
    if config.name not in EQUATIONS:
        available = ", ".join(EQUATIONS)
        raise ConfigError(f"Unknown equation '{config.name}'. Available: {available}")
    return EQUATIONS[config.name](config, boundary)


__all__ = ["ADM3D", "EQUATIONS", "Equation", "Euler", "MHD", "Maxwell", "SRHD", "make_equation"]
