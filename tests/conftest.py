"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from hydrogpu.config import SolverConfig
from hydrogpu.solver.solver import Solver


@pytest.fixture
def cpu_device():
    """Every test runs in double precision on the CPU."""
    return {"device": "cpu", "precision": "float64"}


@pytest.fixture
def sod_config_dict(cpu_device):
    """Minimal 1D Euler configuration as a dictionary."""
    return {
        "grid": {"dim": 1, "size": [32], "xmin": [-0.5], "xmax": [0.5]},
        "boundary": {"methods": [["freeflow", "freeflow"]]},
        "equation": {"name": "euler", "gamma": 1.4},
        "scheme": {"name": "roe", "slope_limiter": "superbee"},
        "device": cpu_device,
        "initial_condition": "sod",
    }


@pytest.fixture
def sod_config(sod_config_dict):
    return SolverConfig(**sod_config_dict)


@pytest.fixture
def make_solver(cpu_device):
    """Factory building an initialized, reset solver from config overrides."""

    def _make(initial_condition=None, reset=True, **overrides):
        overrides.setdefault("device", cpu_device)
        config = SolverConfig(**overrides)
        solver = Solver(config, initial_condition)
        solver.init()
        if reset:
            solver.reset_state()
        return solver

    return _make
