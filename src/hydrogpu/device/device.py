"""Compute device detection and selection.

Resolves the configured device name (``auto``, ``cuda``, ``mps``, ``cpu``)
and precision to a concrete :class:`torch.device` and dtype.  Detection
results are cached on a process-wide :class:`DeviceManager`.
"""

from __future__ import annotations

import logging
from typing import Any

import torch

logger = logging.getLogger(__name__)

# Singleton instance
_device_manager: DeviceManager | None = None


class DeviceManager:
    """Detects available PyTorch compute backends.

    Provides methods to detect CUDA and MPS, resolve a requested device
    and dtype, and report device information for the CLI.
    """

    def __init__(self) -> None:
        """Initialize device manager."""
        self._cache: dict[str, Any] = {}
        logger.debug("DeviceManager initialized")

    def detect_cuda(self) -> bool:
        """Check if a CUDA device is usable.

        Returns
        -------
        bool
            True if PyTorch was built with CUDA and a device is present.
        """
        if "cuda" not in self._cache:
            self._cache["cuda"] = bool(torch.cuda.is_available())
            logger.debug("CUDA detection: %s", self._cache["cuda"])
        return self._cache["cuda"]

    def detect_mps(self) -> bool:
        """Check if the Metal Performance Shaders (MPS) backend is available.

        Returns
        -------
        bool
            True if PyTorch MPS backend is built and available on this system.
        """
        if "mps" in self._cache:
            return self._cache["mps"]

        try:
            available = torch.backends.mps.is_available() and torch.backends.mps.is_built()
        except AttributeError:
            available = False
        self._cache["mps"] = available
        logger.debug("MPS detection: %s", available)
        return available

    def resolve(self, requested: str = "auto", precision: str = "float64") -> tuple[torch.device, torch.dtype]:
        """Resolve a device name and precision to a torch device and dtype.

        Parameters
        ----------
        requested : str
            ``"auto"``, ``"cuda"``, ``"mps"`` or ``"cpu"``.
        precision : str
            ``"float32"`` or ``"float64"``.

        Returns
        -------
        tuple[torch.device, torch.dtype]
            The device kernels run on and the real type of every buffer.

        Notes
        -----
        MPS has no float64 support, so double precision on an MPS-only host
        runs on the CPU.  Unavailable devices fall back to the CPU with a
        warning.
        """
        dtype = torch.float64 if precision == "float64" else torch.float32

        device = requested
        if device == "auto":
            if self.detect_cuda():
                device = "cuda"
            elif self.detect_mps():
                device = "mps"
            else:
                device = "cpu"

        if device == "cuda" and not self.detect_cuda():
            logger.warning("CUDA device requested but not available; falling back to CPU")
            device = "cpu"
        if device == "mps" and not self.detect_mps():
            logger.warning("MPS device requested but not available; falling back to CPU")
            device = "cpu"
        if device == "mps" and dtype == torch.float64:
            # MPS does not support float64 → force CPU
            logger.info("Float64 precision requested - using CPU backend instead of MPS")
            device = "cpu"

        logger.info("Compute device: %s (%s)", device, precision)
        return torch.device(device), dtype

    def is_gpu(self, device: torch.device) -> bool:
        """Whether kernels on ``device`` are dispatched in work groups."""
        return device.type in ("cuda", "mps")

    def device_info(self) -> dict[str, Any]:
        """Summary of the available backends for display."""
        info: dict[str, Any] = {
            "torch_version": torch.__version__,
            "cuda": self.detect_cuda(),
            "mps": self.detect_mps(),
            "cpu_threads": torch.get_num_threads(),
        }
        if info["cuda"]:
            info["cuda_devices"] = [
                torch.cuda.get_device_name(i) for i in range(torch.cuda.device_count())
            ]
        return info


def get_device_manager() -> DeviceManager:
    """Return the process-wide :class:`DeviceManager`."""
    global _device_manager
    if _device_manager is None:
        _device_manager = DeviceManager()
    return _device_manager
