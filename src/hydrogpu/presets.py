"""Named initial conditions and configuration presets.

An initial condition is a callable ``f(x, y, z) -> tuple`` returning the
primitive values of the active equation at a cell centre.  Each preset
pairs one with a configuration dictionary that can be unpacked into
``SolverConfig(**preset)``:

- sod: Sod shock tube (Euler)
- brio_wu: Brio-Wu MHD shock tube
- gaussian_pulse: right-moving electromagnetic pulse (Maxwell)
- srhd_sod: relativistic shock tube (SRHD)
- gauge_pulse: lapse perturbation on flat space (ADM3D)

Usage:
    from hydrogpu.presets import get_preset, get_initial_condition
    config = SolverConfig(**get_preset("sod"))
    ic = get_initial_condition("sod")
"""

from __future__ import annotations

import importlib
import math
from collections.abc import Callable
from typing import Any

InitialCondition = Callable[[float, float, float], tuple[float, ...]]


# ============================================================
# Initial conditions
# ============================================================

def sod(x: float, y: float, z: float) -> tuple[float, ...]:
    """Sod (1978) shock tube split at x = 0."""
    if x < 0.0:
        return (1.0, 0.0, 0.0, 0.0, 1.0)
    return (0.125, 0.0, 0.0, 0.0, 0.1)


def uniform(x: float, y: float, z: float) -> tuple[float, ...]:
    """Gas at rest with unit density and pressure."""
    return (1.0, 0.0, 0.0, 0.0, 1.0)


def brio_wu(x: float, y: float, z: float) -> tuple[float, ...]:
    """Brio & Wu (1988) MHD shock tube split at x = 0."""
    if x < 0.0:
        return (1.0, 0.0, 0.0, 0.0, 1.0, 0.75, 1.0, 0.0)
    return (0.125, 0.0, 0.0, 0.0, 0.1, 0.75, -1.0, 0.0)


def gaussian_pulse(x: float, y: float, z: float) -> tuple[float, ...]:
    """Electromagnetic pulse travelling in +x in vacuum units (c = 1)."""
    amplitude = math.exp(-(x / 0.05) ** 2)
    return (0.0, amplitude, 0.0, 0.0, 0.0, amplitude)


def srhd_sod(x: float, y: float, z: float) -> tuple[float, ...]:
    """Mildly relativistic shock tube split at x = 0."""
    if x < 0.0:
        return (1.0, 0.0, 0.0, 0.0, 1.0)
    return (0.125, 0.0, 0.0, 0.0, 0.1)


def minkowski(x: float, y: float, z: float) -> tuple[float, ...]:
    """Flat space in Cartesian coordinates with unit lapse."""
    alpha = 1.0
    gamma = (1.0, 0.0, 0.0, 1.0, 0.0, 1.0)
    return (alpha, *gamma) + (0.0,) * 27


def gauge_pulse(x: float, y: float, z: float) -> tuple[float, ...]:
    """Gaussian lapse perturbation on a flat, time-symmetric slice.

    ``A_x = d_x ln(alpha)`` is set consistently; the metric and curvature
    stay flat, so the data satisfy the constraints.
    """
    width = 0.1
    bump = 0.1 * math.exp(-(x / width) ** 2)
    alpha = 1.0 + bump
    a_x = -2.0 * x / (width * width) * bump / alpha
    gamma = (1.0, 0.0, 0.0, 1.0, 0.0, 1.0)
    return (alpha, *gamma, a_x, 0.0, 0.0) + (0.0,) * 24


INITIAL_CONDITIONS: dict[str, InitialCondition] = {
    "sod": sod,
    "uniform": uniform,
    "brio_wu": brio_wu,
    "gaussian_pulse": gaussian_pulse,
    "srhd_sod": srhd_sod,
    "minkowski": minkowski,
    "gauge_pulse": gauge_pulse,
}


def get_initial_condition(name: str) -> InitialCondition:
    """Resolve a registered name or a ``module:function`` entry point.

    Raises:
        KeyError: If the name is neither registered nor importable.
    """
    if name in INITIAL_CONDITIONS:
        return INITIAL_CONDITIONS[name]
    if ":" in name:
        module_name, _, attr = name.partition(":")
        try:
            module = importlib.import_module(module_name)
            function = getattr(module, attr)
        except (ImportError, AttributeError) as exc:
            raise KeyError(f"Cannot load initial condition '{name}': {exc}") from exc
        if not callable(function):
            raise KeyError(f"Initial condition '{name}' is not callable")
        return function
    available = ", ".join(INITIAL_CONDITIONS)
    raise KeyError(f"Unknown initial condition '{name}'. Available: {available}")


def list_initial_conditions() -> list[str]:
    """Return the registered initial condition names."""
    return list(INITIAL_CONDITIONS)


# ============================================================
# Configuration presets
# ============================================================

_PRESETS: dict[str, dict[str, Any]] = {
    "sod": {
        "_meta": {"description": "Sod shock tube, 1D Euler, 100 cells", "equation": "euler"},
        "grid": {"dim": 1, "size": [100], "xmin": [-0.5], "xmax": [0.5]},
        "boundary": {"methods": [["freeflow", "freeflow"]]},
        "equation": {"name": "euler", "gamma": 1.4},
        "scheme": {"name": "roe", "slope_limiter": "superbee"},
        "initial_condition": "sod",
    },
    "brio_wu": {
        "_meta": {"description": "Brio-Wu MHD shock tube, 1D, 200 cells", "equation": "mhd"},
        "grid": {"dim": 1, "size": [200], "xmin": [-0.5], "xmax": [0.5]},
        "boundary": {"methods": [["freeflow", "freeflow"]]},
        "equation": {"name": "mhd", "gamma": 2.0},
        "scheme": {"name": "roe", "slope_limiter": "minmod"},
        "initial_condition": "brio_wu",
    },
    "gaussian_pulse": {
        "_meta": {"description": "Electromagnetic pulse on a periodic line", "equation": "maxwell"},
        "grid": {"dim": 1, "size": [200], "xmin": [-0.5], "xmax": [0.5]},
        "boundary": {"methods": [["periodic", "periodic"]]},
        "equation": {"name": "maxwell"},
        "scheme": {"name": "roe", "slope_limiter": "monotonized_central"},
        "initial_condition": "gaussian_pulse",
    },
    "srhd_sod": {
        "_meta": {"description": "Relativistic shock tube, 1D SRHD", "equation": "srhd"},
        "grid": {"dim": 1, "size": [100], "xmin": [-0.5], "xmax": [0.5]},
        "boundary": {"methods": [["freeflow", "freeflow"]]},
        "equation": {"name": "srhd", "gamma": 5.0 / 3.0},
        "scheme": {"name": "roe", "slope_limiter": "minmod"},
        "initial_condition": "srhd_sod",
    },
    "gauge_pulse": {
        "_meta": {"description": "Lapse pulse on flat space, 1D ADM3D", "equation": "adm3d"},
        "grid": {"dim": 1, "size": [64], "xmin": [-0.5], "xmax": [0.5]},
        "boundary": {"methods": [["periodic", "periodic"]]},
        "equation": {"name": "adm3d", "adm_f": 1.0},
        "scheme": {"name": "roe", "slope_limiter": "minmod"},
        "initial_condition": "gauge_pulse",
    },
}


def list_presets() -> list[dict[str, str]]:
    """Return summary info for all available presets.

    Returns:
        List of dicts with keys: name, description, equation.
    """
    result = []
    for name, preset in _PRESETS.items():
        meta = preset.get("_meta", {})
        result.append({
            "name": name,
            "description": meta.get("description", ""),
            "equation": meta.get("equation", ""),
        })
    return result


def get_preset(name: str) -> dict[str, Any]:
    """Return a preset config dict (without _meta) suitable for SolverConfig.

    Raises:
        KeyError: If the preset name is not found.
    """
    if name not in _PRESETS:
        available = ", ".join(_PRESETS.keys())
        raise KeyError(f"Unknown preset '{name}'. Available: {available}")
    preset = dict(_PRESETS[name])
    preset.pop("_meta", None)
    return preset


def get_preset_names() -> list[str]:
    """Return list of all preset names."""
    return list(_PRESETS.keys())
