"""HydroGPU: finite-volume solver engine for hyperbolic conservation laws.

Evolves Euler, MHD, Maxwell, special-relativistic hydrodynamics and ADM3D
numerical relativity on 1-3D structured grids with Roe or Burgers-split
schemes.  Kernels are assembled into one device program and run on CUDA,
MPS or the CPU through PyTorch.
"""

from __future__ import annotations

from hydrogpu.config import SolverConfig
from hydrogpu.errors import (
    BuildError,
    ConfigError,
    ConvergenceError,
    HydroGPUError,
    UnsupportedOperationError,
)
from hydrogpu.solver.solver import Solver

__version__ = "0.1.0"

__all__ = [
    "BuildError",
    "ConfigError",
    "ConvergenceError",
    "HydroGPUError",
    "Solver",
    "SolverConfig",
    "UnsupportedOperationError",
    "__version__",
]
