"""Checkpoint/restart support for HydroGPU simulations.

Saves and loads the full state buffer together with the channel names,
simulation time, frame count and configuration to an HDF5 file.

Usage:
    # Save checkpoint
    save_checkpoint("checkpoint.h5", state, channel_names, time, frame, config_json)

    # Load checkpoint
    data = load_checkpoint("checkpoint.h5")
    state = data["state"]
    time = data["time"]
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import h5py
import numpy as np

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


def save_checkpoint(
    filename: str,
    state: np.ndarray,
    channel_names: Sequence[str],
    time: float,
    frame: int,
    config_json: str | None = None,
) -> None:
    """Save the full solver state to an HDF5 checkpoint file.

    Args:
        filename: Output HDF5 file path.
        state: Host copy of the state buffer, shape ``(sz, sy, sx, channels)``.
        channel_names: Name of each channel.
        time: Current simulation time.
        frame: Number of updates performed.
        config_json: JSON string of the solver config (for reference).
    """
    logger.info("Saving checkpoint to %s at t=%.4e, frame=%d", filename, time, frame)

    with h5py.File(filename, "w") as f:
        f.attrs["time"] = time
        f.attrs["frame"] = frame
        f.attrs["checkpoint_version"] = CHECKPOINT_VERSION
        f.attrs["channel_names"] = np.array(list(channel_names), dtype=h5py.string_dtype())

        if config_json is not None:
            f.attrs["config_json"] = config_json

        f.create_dataset("state", data=state)

    logger.info("Checkpoint saved: %s", filename)


def load_checkpoint(filename: str) -> dict[str, Any]:
    """Load solver state from an HDF5 checkpoint file.

    Returns:
        Dictionary with keys:
            - "state": numpy array of shape ``(sz, sy, sx, channels)``
            - "channel_names": list of str
            - "time": float (simulation time)
            - "frame": int (update count)
            - "config_json": str or None (config for reference)
    """
    logger.info("Loading checkpoint from %s", filename)

    with h5py.File(filename, "r") as f:
        time = float(f.attrs["time"])
        frame = int(f.attrs["frame"])
        channel_names = [
            name.decode() if isinstance(name, bytes) else str(name)
            for name in f.attrs["channel_names"]
        ]

        config_json = None
        if "config_json" in f.attrs:
            config_json = str(f.attrs["config_json"])

        state = np.array(f["state"])

    logger.info(
        "Checkpoint loaded: t=%.4e, frame=%d, shape=%s", time, frame, state.shape,
    )

    return {
        "state": state,
        "channel_names": channel_names,
        "time": time,
        "frame": frame,
        "config_json": config_json,
    }
