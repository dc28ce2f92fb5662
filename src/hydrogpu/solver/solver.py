"""Solver: owner of the device program, buffers and per-frame sequence.

Lifecycle::

    solver = Solver(config, initial_condition)
    solver.init()           # equation, geometry, program, buffers, integrator
    solver.reset_state()    # initial condition -> state buffer
    while running:
        solver.update()     # boundary -> pre-step -> dt -> scheme step

Every kernel launched by any component references the one state buffer
allocated in :meth:`Solver.init`; it is mutated in place and never
reallocated.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import torch

from hydrogpu.config import SCHEME_EQUATIONS, SolverConfig
from hydrogpu.device.device import get_device_manager
from hydrogpu.device.program import Program, build_program, program_header
from hydrogpu.device.queue import CommandQueue, Kernel
from hydrogpu.diagnostics.channel_writer import write_channels
from hydrogpu.diagnostics.checkpoint import load_checkpoint, save_checkpoint
from hydrogpu.equations import Equation, make_equation
from hydrogpu.errors import ConfigError, ConvergenceError, UnsupportedOperationError
from hydrogpu.grid import DispatchGeometry, GridDescriptor
from hydrogpu.integrators import Integrator, make_integrator
from hydrogpu.presets import InitialCondition, get_initial_condition
from hydrogpu.schemes.base import Scheme
from hydrogpu.schemes.burgers import BurgersScheme
from hydrogpu.schemes.roe import RoeScheme
from hydrogpu.solver.boundary import BOUNDARY_SOURCE, BoundaryDispatcher
from hydrogpu.solver.common import COMMON_SOURCE
from hydrogpu.solver.divergence_cleaning import DIVERGENCE_CLEANING_SOURCE, DivergenceCleaning
from hydrogpu.solver.self_gravity import GRAVITY_SOURCE, SelfGravity
from hydrogpu.solver.timestep import REDUCE_SOURCE, TimestepReducer

logger = logging.getLogger(__name__)

SCHEMES: dict[str, type[Scheme]] = {
    cls.name: cls for cls in (RoeScheme, BurgersScheme)
}


class Solver:
    """Finite-volume solver for one equation/scheme/integrator combination.

    Args:
        config: Solver configuration; defaults to ``SolverConfig()``.
        initial_condition: Callable ``f(x, y, z) -> tuple`` of primitive
            values.  When omitted, ``config.initial_condition`` is resolved
            during :meth:`init`.
    """

    def __init__(
        self,
        config: SolverConfig | None = None,
        initial_condition: InitialCondition | None = None,
    ) -> None:
        self.config: SolverConfig = config if config is not None else SolverConfig()
        self.grid: GridDescriptor = GridDescriptor.from_config(self.config.grid)
        self.initial_condition: InitialCondition | None = initial_condition

        self.time: float = 0.0
        self.frame: int = 0
        self.allocated_bytes: int = 0
        self._initialized: bool = False

        self.device: torch.device | None = None
        self.dtype: torch.dtype | None = None
        self.queue: CommandQueue | None = None
        self.equation: Equation | None = None
        self.scheme: Scheme | None = None
        self.geometry: DispatchGeometry | None = None
        self.program: Program | None = None
        self.state_buffer: torch.Tensor | None = None
        self.reducer: TimestepReducer | None = None
        self.integrator: Integrator | None = None
        self.self_gravity: SelfGravity | None = None
        self.divergence_cleaning: DivergenceCleaning | None = None
        self._boundary: BoundaryDispatcher | None = None
        self._step_backup: torch.Tensor | None = None

    # ------------------------------------------------------------------ #
    #  Initialization
    # ------------------------------------------------------------------ #

    def init(self) -> None:
        """Build the program and allocate every buffer.

        Raises:
            BuildError: If the device program fails to compile.
            ConfigError: For an unknown equation, scheme, integrator or
                initial condition, or an unsupported combination.
        """
        cfg = self.config
        manager = get_device_manager()
        self.device, self.dtype = manager.resolve(cfg.device.device, cfg.device.precision)
        self.queue = CommandQueue(self.device)

        self.equation = make_equation(cfg.equation, cfg.boundary)
        self.scheme = self._make_scheme()
        if cfg.gravity.enabled and not self.equation.supports_self_gravity:
            raise ConfigError(f"self-gravity is not supported for equation '{self.equation.name}'")

        self.geometry = DispatchGeometry.for_grid(self.grid, manager.is_gpu(self.device))
        logger.info(
            "Dispatch geometry: dim=%d  global=%s  local=%s",
            self.grid.dim, self.geometry.global_size, self.geometry.local_size,
        )

        self.program = build_program(self.program_sources(), self.device, self.dtype)

        self.state_buffer = self.create_buffer(
            self.grid.shape + (self.equation.num_states,), "state",
        )
        self.reducer = TimestepReducer(
            self.program, self.queue, self.grid.volume, cfg.timestep.cfl, self.dtype, self.device,
        )
        self.allocated_bytes += self.reducer.nbytes
        self._boundary = BoundaryDispatcher(
            self.program, self.queue, self.geometry, self.state_buffer,
            self.equation.boundary_kernel_for,
        )
        if cfg.gravity.enabled:
            self.self_gravity = SelfGravity(self, cfg.gravity.max_iterations)
        if cfg.divergence_cleaning.enabled and self.equation.has_magnetic_field:
            self.divergence_cleaning = DivergenceCleaning(self, cfg.divergence_cleaning.max_iterations)

        self.scheme.init_buffers()
        self.scheme.init_kernels()

        options: dict[str, Any] = {}
        if cfg.scheme.integrator == "BackwardEulerConjugateGradient":
            options = {"tolerance": cfg.scheme.tolerance, "max_iterations": cfg.scheme.max_iterations}
        self.integrator = make_integrator(cfg.scheme.integrator, self.state_buffer, **options)
        if self.integrator.implicit:
            self._step_backup = self.create_buffer(self.state_buffer.shape, "step_backup")

        if self.initial_condition is None and cfg.initial_condition is not None:
            try:
                self.initial_condition = get_initial_condition(cfg.initial_condition)
            except KeyError as exc:
                raise ConfigError(str(exc)) from exc

        self._initialized = True
        logger.info(
            "Solver initialized: equation=%s  scheme=%s  integrator=%s  grid=%s  "
            "states=%d  limiter=%s  buffers=%d bytes",
            self.equation.name, self.scheme.name, self.integrator.name, self.grid.size,
            self.equation.num_states, cfg.scheme.slope_limiter, self.allocated_bytes,
        )

    def _make_scheme(self) -> Scheme:
        name = self.config.scheme.name
        if name not in SCHEMES:
            available = ", ".join(SCHEMES)
            raise ConfigError(f"Unknown scheme '{name}'. Available: {available}")
        if self.equation.name not in SCHEME_EQUATIONS[name]:
            raise ConfigError(
                f"scheme '{name}' does not support equation '{self.equation.name}'"
            )
        return SCHEMES[name](self)

    def program_sources(self) -> list[str]:
        """Header and fragments of the device program, in link order."""
        cfg = self.config
        sources = [
            program_header(
                self.grid,
                self.equation.num_states,
                cfg.scheme.slope_limiter,
                cfg.gravity.gravitational_constant,
            ),
            COMMON_SOURCE,
            BOUNDARY_SOURCE,
            REDUCE_SOURCE,
        ]
        sources += self.scheme.device_source_fragments()
        sources += self.equation.device_source_fragments()
        if cfg.gravity.enabled:
            sources.append(GRAVITY_SOURCE)
        if cfg.divergence_cleaning.enabled and self.equation.has_magnetic_field:
            sources.append(DIVERGENCE_CLEANING_SOURCE)
        return sources

    def create_buffer(
        self,
        shape: tuple[int, ...],
        name: str,
        dtype: torch.dtype | None = None,
    ) -> torch.Tensor:
        """Allocate a zeroed device buffer owned by this solver."""
        buffer = torch.zeros(shape, dtype=dtype or self.dtype, device=self.device)
        nbytes = buffer.numel() * buffer.element_size()
        self.allocated_bytes += nbytes
        logger.debug("Allocated %s %s: %d bytes (total %d)", name, tuple(shape), nbytes, self.allocated_bytes)
        return buffer

    def enqueue(self, kernel: Kernel, *args: Any) -> None:
        """Bind ``args`` and launch ``kernel`` over the whole grid."""
        kernel.set_args(*args)
        self.queue.enqueue_nd_range_kernel(kernel, self.geometry.global_size, self.geometry.local_size)

    def _require_init(self) -> None:
        if not self._initialized:
            raise RuntimeError("Solver.init() must be called first")

    # ------------------------------------------------------------------ #
    #  State
    # ------------------------------------------------------------------ #

    @property
    def channel_names(self) -> tuple[str, ...]:
        self._require_init()
        return self.equation.state_names

    def set_initial_condition(self, initial_condition: InitialCondition) -> None:
        self.initial_condition = initial_condition

    def reset_state(self) -> None:
        """Fill the state buffer from the initial condition.

        The callback is evaluated at every cell centre (ghost cells
        included) and converted with the equation's primitive-to-conserved
        transform; the populated buffer is uploaded in one transfer.

        Raises:
            ConfigError: If no initial condition is registered or it
                returns values the equation cannot convert.
        """
        self._require_init()
        if self.initial_condition is None:
            raise ConfigError("no initial condition registered; set config.initial_condition "
                              "or call set_initial_condition()")

        x, y, z = self.grid.cell_centers()
        host = np.empty(self.grid.shape + (self.equation.num_states,), dtype=np.float64)
        for index in np.ndindex(*self.grid.shape):
            primitives = self.initial_condition(float(x[index]), float(y[index]), float(z[index]))
            try:
                host[index] = self.equation.read_state_cell(tuple(primitives))
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"initial condition at cell {index}: {exc}") from exc

        self.queue.enqueue_write_buffer(self.state_buffer, host)
        if self.self_gravity is not None:
            self.self_gravity.init_potential()
        self.time = 0.0
        self.frame = 0
        logger.info("State reset for %d cells", self.grid.volume)

    def read_state(self) -> np.ndarray:
        """Blocking host copy of the state buffer, shape ``(sz, sy, sx, states)``."""
        self._require_init()
        return self.queue.enqueue_read_buffer(self.state_buffer)

    def load_state(self, state: np.ndarray) -> None:
        """Upload a host array into the state buffer in one transfer."""
        self._require_init()
        if tuple(state.shape) != tuple(self.state_buffer.shape):
            raise ValueError(
                f"state shape {tuple(state.shape)} does not match buffer "
                f"{tuple(self.state_buffer.shape)}"
            )
        self.queue.enqueue_write_buffer(self.state_buffer, state)

    # ------------------------------------------------------------------ #
    #  Per-frame sequence
    # ------------------------------------------------------------------ #

    def boundary(self) -> None:
        """Apply the boundary kernels to every axis, channel and side."""
        self._require_init()
        self._boundary.apply()

    def compute_timestep(self) -> float:
        ts = self.config.timestep
        if ts.use_fixed_dt:
            return ts.fixed_dt
        self.scheme.calc_cfl()
        return self.reducer.reduce()

    def update(self) -> float:
        """Advance one frame and return the timestep taken.

        Raises:
            ConvergenceError: If an implicit integrator pass fails.  The
                state buffer is restored to its contents before this call,
                including passes of the step that had already converged.
        """
        self._require_init()
        if self._step_backup is not None:
            self.queue.enqueue_copy_buffer(self.state_buffer, self._step_backup)
        try:
            self.boundary()
            self.scheme.init_step()
            dt = self.compute_timestep()
            if self.config.timestep.show_timestep:
                logger.info("dt %g", dt)
            self.scheme.step(dt)
        except ConvergenceError:
            if self._step_backup is not None:
                self.queue.enqueue_copy_buffer(self._step_backup, self.state_buffer)
            logger.warning("Update %d failed to converge; state restored", self.frame + 1)
            raise
        self.time += dt
        self.frame += 1
        return dt

    def run(self, frames: int, save_interval: int = 0, directory: str | Path | None = None) -> dict[str, Any]:
        """Run ``frames`` updates, saving every ``save_interval`` frames."""
        self._require_init()
        dts = []
        for _ in range(frames):
            dts.append(self.update())
            if save_interval and self.frame % save_interval == 0:
                self.save(directory)
        return {
            "frames": self.frame,
            "time": self.time,
            "dt_min": min(dts) if dts else 0.0,
            "dt_max": max(dts) if dts else 0.0,
        }

    # ------------------------------------------------------------------ #
    #  Implicit system matrix
    # ------------------------------------------------------------------ #

    def create_dstate_dt_matrix(self) -> None:
        raise UnsupportedOperationError(
            f"{type(self.scheme).__name__} does not assemble a dState/dt matrix"
        )

    def apply_dstate_dt_matrix(self, result: torch.Tensor, x: torch.Tensor) -> None:
        raise UnsupportedOperationError(
            f"{type(self.scheme).__name__} does not apply a dState/dt matrix"
        )

    # ------------------------------------------------------------------ #
    #  Persistence
    # ------------------------------------------------------------------ #

    def save(self, directory: str | Path | None = None) -> int:
        """Write one file per channel; returns the save index used."""
        self._require_init()
        directory = directory if directory is not None else self.config.output.directory
        return write_channels(directory, self.read_state(), self.channel_names, self.time, self.frame)

    def save_checkpoint(self, filename: str | Path | None = None) -> None:
        self._require_init()
        if filename is None:
            filename = Path(self.config.output.directory) / self.config.output.checkpoint_filename
            filename.parent.mkdir(parents=True, exist_ok=True)
        save_checkpoint(
            str(filename), self.read_state(), self.channel_names,
            self.time, self.frame, self.config.to_json(),
        )

    def load_checkpoint(self, filename: str | Path) -> None:
        """Restore state, time and frame from a checkpoint.

        Raises:
            ConfigError: If the checkpoint was written for other channels.
        """
        self._require_init()
        data = load_checkpoint(str(filename))
        if tuple(data["channel_names"]) != self.channel_names:
            raise ConfigError(
                f"checkpoint channels {data['channel_names']} do not match "
                f"{list(self.channel_names)}"
            )
        self.load_state(data["state"])
        self.time = data["time"]
        self.frame = data["frame"]
        if self.self_gravity is not None:
            self.self_gravity.init_potential()

    def __repr__(self) -> str:
        if not self._initialized:
            return f"Solver(grid={self.grid.size}, uninitialized)"
        return (
            f"Solver(equation={self.equation.name}, scheme={self.scheme.name}, "
            f"integrator={self.integrator.name}, grid={self.grid.size}, "
            f"device={self.device})"
        )
