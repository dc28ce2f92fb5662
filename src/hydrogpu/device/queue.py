"""In-order command queue and kernel handles.

Kernels are whole-array tensor functions compiled from the device program.
A :class:`Kernel` carries its bound arguments; :class:`CommandQueue` issues
launches in program order.  PyTorch executes tensor operations on a device
stream in issue order, so the queue never needs explicit dependencies.
Reads back to the host are the only synchronization points.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
import torch

logger = logging.getLogger(__name__)

_UNSET = object()


class Kernel:
    """A named device function with bound launch arguments.

    Args:
        name: Function name inside the device program.
        function: The compiled callable.
        num_args: Positional argument count of ``function``.
    """

    def __init__(self, name: str, function: Callable[..., Any], num_args: int) -> None:
        self.name = name
        self.function = function
        self.args: list[Any] = [_UNSET] * num_args

    def set_args(self, *args: Any) -> Kernel:
        """Bind all arguments at once."""
        if len(args) != len(self.args):
            raise TypeError(
                f"kernel {self.name} takes {len(self.args)} arguments, got {len(args)}"
            )
        self.args = list(args)
        return self

    def set_arg(self, index: int, value: Any) -> Kernel:
        """Rebind a single argument, e.g. the channel of a boundary kernel."""
        self.args[index] = value
        return self

    def __call__(self) -> Any:
        for i, arg in enumerate(self.args):
            if arg is _UNSET:
                raise RuntimeError(f"kernel {self.name}: argument {i} is not set")
        return self.function(*self.args)

    def __repr__(self) -> str:
        return f"Kernel({self.name!r}, args={len(self.args)})"


class CommandQueue:
    """Single in-order queue onto one compute device.

    Args:
        device: Device all buffers and launches live on.
    """

    def __init__(self, device: torch.device) -> None:
        self.device = device
        self.launch_counts: Counter[str] = Counter()

    # ------------------------------------------------------------------ #
    #  Kernel launches
    # ------------------------------------------------------------------ #

    def enqueue_nd_range_kernel(
        self,
        kernel: Kernel,
        global_size: Sequence[int],
        local_size: Sequence[int] | None = None,
    ) -> None:
        """Launch ``kernel`` over ``global_size`` work items.

        The work partition is kept for accounting; each kernel body is a
        whole-range tensor expression.
        """
        if local_size is not None and len(local_size) != len(global_size):
            raise ValueError(
                f"kernel {kernel.name}: local size {tuple(local_size)} does not "
                f"match global size {tuple(global_size)}"
            )
        kernel()
        self.launch_counts[kernel.name] += 1

    # ------------------------------------------------------------------ #
    #  Buffer commands
    # ------------------------------------------------------------------ #

    def enqueue_fill_buffer(self, buffer: torch.Tensor, value: float) -> None:
        buffer.fill_(value)

    def enqueue_copy_buffer(self, src: torch.Tensor, dst: torch.Tensor) -> None:
        dst.copy_(src)

    def enqueue_write_buffer(self, buffer: torch.Tensor, host: np.ndarray) -> None:
        """Upload a host array into ``buffer`` in a single transfer."""
        data = torch.as_tensor(np.ascontiguousarray(host), dtype=buffer.dtype)
        if data.shape != buffer.shape:
            data = data.reshape(buffer.shape)
        buffer.copy_(data)

    def enqueue_read_buffer(self, buffer: torch.Tensor) -> np.ndarray:
        """Blocking read: drains the queue up to this point."""
        return buffer.detach().to("cpu").numpy().copy()

    def finish(self) -> None:
        """Block until every enqueued command has completed."""
        if self.device.type == "cuda":
            torch.cuda.synchronize(self.device)
        elif self.device.type == "mps":
            torch.mps.synchronize()

    def __repr__(self) -> str:
        return f"CommandQueue(device={self.device}, launches={sum(self.launch_counts.values())})"
