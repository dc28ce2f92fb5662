"""Pydantic v2 configuration system for HydroGPU simulations.

Provides validated, typed configuration with submodels for the grid,
boundaries, timestep control, equation parameters, numerical scheme,
auxiliary solvers and device selection.  Supports JSON I/O and
cross-field validation.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from hydrogpu.constants import (
    DEFAULT_GRAVITATIONAL_CONSTANT,
    DEFAULT_SLOPE_LIMITER,
    MIN_ACTIVE_CELLS,
)
from hydrogpu.schemes.slope_limiter import SLOPE_LIMITER_NAMES

EQUATION_NAMES = ("euler", "mhd", "maxwell", "srhd", "adm3d")
SCHEME_NAMES = ("roe", "burgers")

# Equations each scheme can drive
SCHEME_EQUATIONS: dict[str, tuple[str, ...]] = {
    "roe": EQUATION_NAMES,
    "burgers": ("euler", "mhd"),
}


class BoundaryMethod(str, Enum):
    """Boundary method selectable per axis and side."""

    PERIODIC = "periodic"
    MIRROR = "mirror"
    FREEFLOW = "freeflow"


class GridConfig(BaseModel):
    """Cell counts and physical extents of the structured grid.

    Cell counts include the ghost layers.  Axes beyond ``dim`` are forced
    to a single cell.
    """

    dim: int = Field(1, ge=1, le=3, description="Number of active axes")
    size: list[int] = Field(
        default_factory=lambda: [100, 1, 1],
        min_length=1, max_length=3,
        description="Cells per axis including ghost layers",
    )
    xmin: list[float] = Field(
        default_factory=lambda: [-0.5, -0.5, -0.5],
        min_length=1, max_length=3,
        description="Lower domain extent per axis",
    )
    xmax: list[float] = Field(
        default_factory=lambda: [0.5, 0.5, 0.5],
        min_length=1, max_length=3,
        description="Upper domain extent per axis",
    )

    @model_validator(mode="after")
    def check_extents(self) -> GridConfig:
        if len(self.size) < self.dim:
            raise ValueError(f"size needs {self.dim} entries, got {len(self.size)}")
        self.size = [
            int(self.size[axis]) if axis < self.dim else 1 for axis in range(3)
        ]
        self.xmin = list(self.xmin) + [-0.5] * (3 - len(self.xmin))
        self.xmax = list(self.xmax) + [0.5] * (3 - len(self.xmax))
        for axis in range(self.dim):
            if self.size[axis] < MIN_ACTIVE_CELLS:
                raise ValueError(
                    f"axis {axis} needs at least {MIN_ACTIVE_CELLS} cells, "
                    f"got {self.size[axis]}"
                )
            if self.xmin[axis] >= self.xmax[axis]:
                raise ValueError(f"xmin must be less than xmax on axis {axis}")
        return self


class BoundaryConfig(BaseModel):
    """Boundary method per axis as a ``[min, max]`` pair."""

    methods: list[tuple[BoundaryMethod, BoundaryMethod]] = Field(
        default_factory=lambda: [(BoundaryMethod.PERIODIC, BoundaryMethod.PERIODIC)] * 3,
        min_length=1, max_length=3,
        description="Per-axis (min side, max side) boundary methods",
    )

    @model_validator(mode="after")
    def pad_axes(self) -> BoundaryConfig:
        while len(self.methods) < 3:
            self.methods.append((BoundaryMethod.PERIODIC, BoundaryMethod.PERIODIC))
        return self

    def method(self, axis: int, side: int) -> BoundaryMethod:
        """Configured method for ``axis`` on ``side`` (0 = min, 1 = max)."""
        return self.methods[axis][side]

    def is_periodic(self, axis: int) -> bool:
        return all(m == BoundaryMethod.PERIODIC for m in self.methods[axis])


class TimestepConfig(BaseModel):
    """Fixed or CFL-limited timestep selection."""

    use_fixed_dt: bool = Field(False, description="Use fixed_dt instead of the CFL reduction")
    fixed_dt: float = Field(1e-3, gt=0, description="Fixed timestep")
    cfl: float = Field(0.5, gt=0, le=1.0, description="CFL safety factor")
    show_timestep: bool = Field(False, description="Log the timestep of every update")


class EquationConfig(BaseModel):
    """Equation selection and physical parameters (code units)."""

    name: str = Field("euler", description=f"One of {', '.join(EQUATION_NAMES)}")
    gamma: float = Field(1.4, gt=1.0, description="Adiabatic index (Euler, MHD, SRHD)")
    permittivity: float = Field(1.0, gt=0, description="Maxwell permittivity")
    permeability: float = Field(1.0, gt=0, description="Maxwell permeability")
    conductivity: float = Field(0.0, ge=0, description="Maxwell conductivity")
    adm_f: float = Field(1.0, gt=0, description="Bona-Masso lapse function f(alpha)")

    @model_validator(mode="after")
    def check_name(self) -> EquationConfig:
        if self.name not in EQUATION_NAMES:
            raise ValueError(
                f"Unknown equation '{self.name}'. Available: {', '.join(EQUATION_NAMES)}"
            )
        return self


class SchemeConfig(BaseModel):
    """Numerical scheme, slope limiter and time integrator."""

    name: str = Field("roe", description="'roe' or 'burgers'")
    slope_limiter: str = Field(DEFAULT_SLOPE_LIMITER, description="Flux limiter name")
    integrator: str = Field(
        "ForwardEuler",
        description="ForwardEuler, RungeKutta4 or BackwardEulerConjugateGradient",
    )
    tolerance: float = Field(1e-10, gt=0, description="CG relative residual tolerance")
    max_iterations: int = Field(100, ge=1, description="CG iteration cap")

    @model_validator(mode="after")
    def check_names(self) -> SchemeConfig:
        if self.name not in SCHEME_NAMES:
            raise ValueError(
                f"Unknown scheme '{self.name}'. Available: {', '.join(SCHEME_NAMES)}"
            )
        if self.slope_limiter not in SLOPE_LIMITER_NAMES:
            raise ValueError(
                f"Unknown slope limiter '{self.slope_limiter}'. "
                f"Available: {', '.join(SLOPE_LIMITER_NAMES)}"
            )
        return self


class GravityConfig(BaseModel):
    """Self-gravity Poisson relaxation."""

    enabled: bool = Field(False, description="Enable self-gravity")
    gravitational_constant: float = Field(
        DEFAULT_GRAVITATIONAL_CONSTANT, gt=0, description="G in code units",
    )
    max_iterations: int = Field(20, ge=1, description="Relaxation sweeps per update")


class DivergenceCleaningConfig(BaseModel):
    """Magnetic divergence projection (MHD only)."""

    enabled: bool = Field(True, description="Project div(B) out after each step")
    max_iterations: int = Field(20, ge=1, description="Relaxation sweeps per update")


class DeviceConfig(BaseModel):
    """Compute device and floating point precision."""

    device: str = Field("auto", description="'auto', 'cuda', 'mps' or 'cpu'")
    precision: str = Field("float64", description="'float32' or 'float64'")

    @model_validator(mode="after")
    def check_device(self) -> DeviceConfig:
        if self.device not in ("auto", "cuda", "mps", "cpu"):
            raise ValueError(f"Unknown device '{self.device}'")
        if self.precision not in ("float32", "float64"):
            raise ValueError(f"Unknown precision '{self.precision}'")
        return self


class OutputConfig(BaseModel):
    """Per-channel output and checkpoint settings."""

    directory: str = Field("output", description="Directory for per-channel files")
    save_interval: int = Field(0, ge=0, description="Save every N frames (0 = off)")
    checkpoint_filename: str = Field("checkpoint.h5", description="Checkpoint file name")


class SolverConfig(BaseModel):
    """Top-level HydroGPU configuration."""

    grid: GridConfig = Field(default_factory=GridConfig)
    boundary: BoundaryConfig = Field(default_factory=BoundaryConfig)
    timestep: TimestepConfig = Field(default_factory=TimestepConfig)
    equation: EquationConfig = Field(default_factory=EquationConfig)
    scheme: SchemeConfig = Field(default_factory=SchemeConfig)
    gravity: GravityConfig = Field(default_factory=GravityConfig)
    divergence_cleaning: DivergenceCleaningConfig = Field(
        default_factory=DivergenceCleaningConfig,
    )
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    initial_condition: str | None = Field(
        None, description="Preset name or 'module:function' entry point",
    )

    @model_validator(mode="after")
    def check_combinations(self) -> SolverConfig:
        allowed = SCHEME_EQUATIONS[self.scheme.name]
        if self.equation.name not in allowed:
            raise ValueError(
                f"scheme '{self.scheme.name}' does not support equation "
                f"'{self.equation.name}'"
            )
        if self.gravity.enabled and self.equation.name not in ("euler", "mhd"):
            raise ValueError("self-gravity requires the euler or mhd equation")
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> SolverConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        return cls(**data)

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out
