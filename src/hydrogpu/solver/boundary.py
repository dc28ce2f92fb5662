"""Boundary-condition kernels and dispatcher.

Each active axis carries ``NUM_GHOST`` ghost layers per side.  A boundary
kernel rewrites the ghost layers of one channel on one side of one axis
from interior cells; nothing else is touched.

Kernel variants:

* ``PERIODIC``: ghosts copy the interior cells at the opposite edge.
* ``MIRROR``: ghosts copy the mirror-image interior cells.
* ``REFLECT``: as ``MIRROR`` with the sign flipped (normal vector
  components at a wall).
* ``FREEFLOW``: ghosts copy the nearest interior cell.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import IntEnum

import torch

from hydrogpu.device.program import Program
from hydrogpu.device.queue import CommandQueue, Kernel
from hydrogpu.grid import DispatchGeometry

logger = logging.getLogger(__name__)

SIDE_NAMES = ("min", "max")


class BoundaryKernel(IntEnum):
    """Device boundary kernel variants."""

    PERIODIC = 0
    MIRROR = 1
    REFLECT = 2
    FREEFLOW = 3

    @property
    def kernel_name(self) -> str:
        return f"state_boundary_{self.name.lower()}"


BOUNDARY_SOURCE = '''
# --- boundary ---
def _ghost_cells(axis, index, channel):
    cells = [slice(None), slice(None), slice(None), channel]
    cells[AXIS_DIM[axis]] = index
    return tuple(cells)


def _copy_ghosts(buffer, axis, channel, pairs, sign):
    for dst, src in pairs:
        value = buffer[_ghost_cells(axis, src, channel)]
        if sign < 0:
            value = -value
        buffer[_ghost_cells(axis, dst, channel)] = value


@kernel
def state_boundary_periodic(buffer, axis, side, channel):
    n = SIZE[axis]
    if side == 0:
        pairs = [(g, n - 2 * NUM_GHOST + g) for g in range(NUM_GHOST)]
    else:
        pairs = [(n - NUM_GHOST + g, NUM_GHOST + g) for g in range(NUM_GHOST)]
    _copy_ghosts(buffer, axis, channel, pairs, 1)


def _mirror_pairs(axis, side):
    n = SIZE[axis]
    if side == 0:
        return [(g, 2 * NUM_GHOST - 1 - g) for g in range(NUM_GHOST)]
    return [(n - 1 - g, n - 2 * NUM_GHOST + g) for g in range(NUM_GHOST)]


@kernel
def state_boundary_mirror(buffer, axis, side, channel):
    _copy_ghosts(buffer, axis, channel, _mirror_pairs(axis, side), 1)


@kernel
def state_boundary_reflect(buffer, axis, side, channel):
    _copy_ghosts(buffer, axis, channel, _mirror_pairs(axis, side), -1)


@kernel
def state_boundary_freeflow(buffer, axis, side, channel):
    n = SIZE[axis]
    if side == 0:
        pairs = [(g, NUM_GHOST) for g in range(NUM_GHOST)]
    else:
        pairs = [(n - NUM_GHOST + g, n - NUM_GHOST - 1) for g in range(NUM_GHOST)]
    _copy_ghosts(buffer, axis, channel, pairs, 1)
'''

BoundaryLookup = Callable[[int, int, int], "BoundaryKernel | None"]


class BoundaryDispatcher:
    """Applies boundary kernels to every channel of one buffer.

    The kernel table is indexed ``[variant][axis][side]``; each entry is
    bound to ``buffer`` once and only the channel argument changes per
    launch.

    Args:
        program: Built device program containing :data:`BOUNDARY_SOURCE`.
        queue: Command queue kernels are launched on.
        geometry: Dispatch geometry of the grid.
        buffer: Buffer of shape ``(sz, sy, sx, channels)``.
        lookup: ``(axis, channel, side) -> BoundaryKernel | None``; ``None``
            skips the combination.
    """

    def __init__(
        self,
        program: Program,
        queue: CommandQueue,
        geometry: DispatchGeometry,
        buffer: torch.Tensor,
        lookup: BoundaryLookup,
    ) -> None:
        self.queue = queue
        self.geometry = geometry
        self.buffer = buffer
        self.lookup = lookup
        self.dim = len(geometry.global_size)
        self.num_channels = buffer.shape[-1]
        self.kernels: list[list[list[Kernel]]] = [
            [
                [
                    program.kernel(variant.kernel_name).set_args(buffer, axis, side, 0)
                    for side in range(2)
                ]
                for axis in range(self.dim)
            ]
            for variant in BoundaryKernel
        ]

    def apply(self) -> None:
        """Refresh the ghost cells of every axis, channel and side."""
        for axis in range(self.dim):
            global_size = self.geometry.boundary_global_size(axis)
            local_size = self.geometry.boundary_local_size(axis)
            for channel in range(self.num_channels):
                for side in range(2):
                    variant = self.lookup(axis, channel, side)
                    if variant is None:
                        continue
                    kernel = self.kernels[variant][axis][side]
                    kernel.set_arg(3, channel)
                    self.queue.enqueue_nd_range_kernel(kernel, global_size, local_size)
