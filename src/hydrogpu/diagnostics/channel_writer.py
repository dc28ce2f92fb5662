"""Per-channel planar output.

Each save writes one HDF5 file per state channel named
``<channel><index>.h5``.  The index is the smallest one for which no file
of the first channel exists yet, so repeated saves never overwrite earlier
output.  Each file holds the channel as a ``(size_z, size_y, size_x)``
dataset named ``data``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import h5py
import numpy as np

logger = logging.getLogger(__name__)

EXTENSION = ".h5"
MAX_SAVE_INDEX = 1_000_000


def channel_path(directory: str | Path, channel: str, index: int) -> Path:
    return Path(directory) / f"{channel}{index}{EXTENSION}"


def next_save_index(directory: str | Path, channel_names: Sequence[str]) -> int:
    """Smallest index not yet used by the first channel.

    Raises:
        FileExistsError: If every index up to ``MAX_SAVE_INDEX`` is taken.
    """
    first = channel_names[0]
    for index in range(MAX_SAVE_INDEX):
        if not channel_path(directory, first, index).exists():
            return index
    raise FileExistsError(f"no free output index for '{first}' in {directory}")


def write_channels(
    directory: str | Path,
    state: np.ndarray,
    channel_names: Sequence[str],
    time: float = 0.0,
    frame: int = 0,
) -> int:
    """Write every channel of ``state`` to its own file.

    Args:
        directory: Output directory (created if missing).
        state: Host copy of the state buffer, shape ``(sz, sy, sx, channels)``.
        channel_names: Name of each channel, in buffer order.
        time: Simulation time stored as an attribute.
        frame: Update count stored as an attribute.

    Returns:
        The index used for this save.
    """
    if state.shape[-1] != len(channel_names):
        raise ValueError(
            f"state has {state.shape[-1]} channels but {len(channel_names)} names were given"
        )
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    index = next_save_index(directory, channel_names)

    for channel, name in enumerate(channel_names):
        with h5py.File(channel_path(directory, name, index), "w") as f:
            f.create_dataset("data", data=np.ascontiguousarray(state[..., channel]))
            f.attrs["channel"] = name
            f.attrs["index"] = index
            f.attrs["time"] = time
            f.attrs["frame"] = frame

    logger.info("Saved %d channels to %s with index %d", len(channel_names), directory, index)
    return index


def read_channel(directory: str | Path, channel: str, index: int) -> np.ndarray:
    """Load one saved channel array."""
    with h5py.File(channel_path(directory, channel, index), "r") as f:
        return np.array(f["data"])
