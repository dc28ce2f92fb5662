"""Adaptive timestep: parallel minimum reduction of the CFL buffer.

The scheme's CFL kernel writes the largest stable timestep of every
interior cell into :attr:`TimestepReducer.cfl_buffer`.  Ghost cells keep
the maximum representable value they were seeded with, so they can never
win the reduction.  Each round folds groups of ``REDUCE_RADIX`` elements
into their minimum; the last round writes the one-element result, which is
read back (the only synchronization point of an update) and scaled by the
CFL safety factor.
"""

from __future__ import annotations

import logging

import torch

from hydrogpu.constants import REDUCE_RADIX
from hydrogpu.device.program import Program
from hydrogpu.device.queue import CommandQueue

logger = logging.getLogger(__name__)

REDUCE_SOURCE = '''
# --- reduce ---
REDUCE_RADIX = %d


@kernel
def find_min_timestep_reduce(src, reduce_size, dst):
    """Write the minimum of each radix group of ``src[:reduce_size]`` into ``dst``."""
    groups = (reduce_size + REDUCE_RADIX - 1) // REDUCE_RADIX
    values = src[:reduce_size]
    padding = groups * REDUCE_RADIX - reduce_size
    if padding:
        fill = values.new_full((padding,), torch.finfo(values.dtype).max)
        values = torch.cat([values, fill])
    dst[:groups] = values.view(groups, REDUCE_RADIX).amin(dim=1)
''' % REDUCE_RADIX


def reduce_rounds(size: int) -> list[int]:
    """Element counts remaining after each reduction round."""
    rounds = []
    while size > 1:
        size = (size + REDUCE_RADIX - 1) // REDUCE_RADIX
        rounds.append(size)
    return rounds


class TimestepReducer:
    """Tree reduction of per-cell timesteps to the global step size.

    Args:
        program: Program containing :data:`REDUCE_SOURCE`.
        queue: Command queue.
        volume: Number of cells in the CFL buffer.
        cfl: Safety factor in (0, 1].
        dtype: Real type of the buffers.
        device: Device of the buffers.
    """

    def __init__(
        self,
        program: Program,
        queue: CommandQueue,
        volume: int,
        cfl: float,
        dtype: torch.dtype,
        device: torch.device,
    ) -> None:
        if not 0.0 < cfl <= 1.0:
            raise ValueError(f"cfl must be in (0, 1], got {cfl}")
        self.queue = queue
        self.volume = int(volume)
        self.cfl = float(cfl)
        self.max_value = torch.finfo(dtype).max

        self.cfl_buffer = torch.full((self.volume,), self.max_value, dtype=dtype, device=device)
        swap_size = max((self.volume + REDUCE_RADIX - 1) // REDUCE_RADIX, 1)
        # Ping-pong between two private buffers so the CFL buffer keeps its
        # seeded ghost values from one update to the next.
        self.swap_buffers = (
            torch.empty(swap_size, dtype=dtype, device=device),
            torch.empty(max((swap_size + REDUCE_RADIX - 1) // REDUCE_RADIX, 1), dtype=dtype, device=device),
        )
        self.dt_buffer = torch.empty(1, dtype=dtype, device=device)
        self._kernel = program.kernel("find_min_timestep_reduce")

    @property
    def nbytes(self) -> int:
        buffers = (self.cfl_buffer, *self.swap_buffers, self.dt_buffer)
        return sum(b.numel() * b.element_size() for b in buffers)

    def cell_view(self, shape: tuple[int, ...]) -> torch.Tensor:
        """The CFL buffer viewed with the spatial shape of the grid."""
        return self.cfl_buffer.view(shape)

    def reduce(self) -> float:
        """Return ``min(cfl_buffer) * cfl``."""
        reduce_size = self.volume
        src = self.cfl_buffer
        if reduce_size == 1:
            self.queue.enqueue_copy_buffer(src[:1], self.dt_buffer)
        round_index = 0
        while reduce_size > 1:
            next_size = (reduce_size + REDUCE_RADIX - 1) // REDUCE_RADIX
            dst = self.dt_buffer if next_size == 1 else self.swap_buffers[round_index % 2]
            self._kernel.set_args(src, reduce_size, dst)
            self.queue.enqueue_nd_range_kernel(self._kernel, (next_size,), (1,))
            src = dst
            reduce_size = next_size
            round_index += 1

        dt = float(self.queue.enqueue_read_buffer(self.dt_buffer)[0])
        return dt * self.cfl
