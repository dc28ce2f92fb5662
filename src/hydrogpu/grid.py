"""Grid descriptor and compute-dispatch geometry.

The state of a grid with ``size = (sx, sy, sz)`` cells is stored as a
tensor of shape ``(sz, sy, sx, num_states)``; spatial axis ``a`` therefore
lives on tensor dimension ``2 - a`` and the flat cell index is
``x + sx * (y + sy * z)``.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from hydrogpu.config import GridConfig
from hydrogpu.constants import LOCAL_SIZE_1D, LOCAL_SIZE_2D, LOCAL_SIZE_3D


@dataclass(frozen=True)
class GridDescriptor:
    """Immutable cell counts and extents of the structured grid.

    Attributes:
        dim: Number of active axes (1, 2 or 3).
        size: Cells per axis including ghost layers; unused axes are 1.
        xmin: Lower extent per axis.
        xmax: Upper extent per axis.
    """

    dim: int
    size: tuple[int, int, int]
    xmin: tuple[float, float, float]
    xmax: tuple[float, float, float]

    @classmethod
    def from_config(cls, config: GridConfig) -> GridDescriptor:
        return cls(
            dim=config.dim,
            size=tuple(int(n) for n in config.size),
            xmin=tuple(float(v) for v in config.xmin),
            xmax=tuple(float(v) for v in config.xmax),
        )

    @property
    def dx(self) -> tuple[float, float, float]:
        return tuple(
            (self.xmax[axis] - self.xmin[axis]) / self.size[axis] for axis in range(3)
        )

    @property
    def volume(self) -> int:
        return self.size[0] * self.size[1] * self.size[2]

    @property
    def shape(self) -> tuple[int, int, int]:
        """Spatial tensor shape ``(sz, sy, sx)``."""
        return (self.size[2], self.size[1], self.size[0])

    def axis_centers(self, axis: int) -> np.ndarray:
        """Cell-centre coordinates along one axis."""
        n = self.size[axis]
        i = np.arange(n, dtype=np.float64)
        return (self.xmax[axis] - self.xmin[axis]) * (i + 0.5) / n + self.xmin[axis]

    def cell_centers(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Centre coordinates of every cell, each of shape ``(sz, sy, sx)``."""
        z, y, x = np.meshgrid(
            self.axis_centers(2), self.axis_centers(1), self.axis_centers(0),
            indexing="ij",
        )
        return x, y, z


@dataclass(frozen=True)
class DispatchGeometry:
    """Global/local work partition for kernel launches.

    Attributes:
        global_size: Work items per launch over the whole grid.
        local_size: Work-group size (all ones on the CPU).
    """

    global_size: tuple[int, ...]
    local_size: tuple[int, ...]
    size: tuple[int, int, int]

    @classmethod
    def for_grid(cls, grid: GridDescriptor, use_gpu: bool) -> DispatchGeometry:
        global_size = tuple(grid.size[:grid.dim])
        if not use_gpu:
            local_size = (1,) * grid.dim
        elif grid.dim == 1:
            local_size = LOCAL_SIZE_1D
        elif grid.dim == 2:
            local_size = LOCAL_SIZE_2D
        else:
            local_size = LOCAL_SIZE_3D
        local_size = tuple(min(l, g) for l, g in zip(local_size, global_size))
        return cls(global_size=global_size, local_size=local_size, size=grid.size)

    def boundary_global_size(self, axis: int) -> tuple[int, ...]:
        """Work items covering the face normal to ``axis``."""
        dim = len(self.global_size)
        if dim == 1:
            return (1,)
        face = [self.size[a] for a in range(dim) if a != axis]
        return tuple(face)

    def boundary_local_size(self, axis: int) -> tuple[int, ...]:
        face = self.boundary_global_size(axis)
        others = [l for a, l in enumerate(self.local_size) if a != axis] or [1]
        return tuple(min(l, g) for l, g in zip(others, face))
