"""Compute device selection, command queue and device program builder."""

from hydrogpu.device.device import DeviceManager, get_device_manager
from hydrogpu.device.program import Program, build_program
from hydrogpu.device.queue import CommandQueue, Kernel

__all__ = [
    "CommandQueue",
    "DeviceManager",
    "Kernel",
    "Program",
    "build_program",
    "get_device_manager",
]
