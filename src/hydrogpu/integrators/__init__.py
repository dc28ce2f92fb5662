"""Time integrators selected by name at solver initialization.

Modules:
    base                - Integrator interface and derivative callback type
    forward_euler       - ForwardEuler
    runge_kutta4        - RungeKutta4
    backward_euler_cg   - BackwardEulerConjugateGradient
"""

from __future__ import annotations

from typing import Any

import torch

from hydrogpu.errors import ConfigError
from hydrogpu.integrators.backward_euler_cg import BackwardEulerConjugateGradient
from hydrogpu.integrators.base import DerivativeFn, Integrator
from hydrogpu.integrators.forward_euler import ForwardEuler
from hydrogpu.integrators.runge_kutta4 import RungeKutta4

INTEGRATORS: dict[str, type[Integrator]] = {
    cls.name: cls for cls in (ForwardEuler, RungeKutta4, BackwardEulerConjugateGradient)
}


def make_integrator(name: str, state: torch.Tensor, **options: Any) -> Integrator:
    """Construct the integrator registered under ``name``.

    Raises:
        ConfigError: If ``name`` is not a known integrator.
    """
    if name not in INTEGRATORS:
        available = ", ".join(INTEGRATORS)
        raise ConfigError(f"Unknown integrator '{name}'. Available: {available}")
    cls = INTEGRATORS[name]
    if cls is BackwardEulerConjugateGradient:
        return cls(state, **options)
    return cls(state)


__all__ = [
    "BackwardEulerConjugateGradient",
    "DerivativeFn",
    "ForwardEuler",
    "INTEGRATORS",
    "Integrator",
    "RungeKutta4",
    "make_integrator",
]
