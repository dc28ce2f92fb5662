"""Time integrator interface.

An integrator advances the solver's state buffer in place given a step
size and a derivative callback.  The callback receives a zeroed derivative
buffer and accumulates ``dState/dt`` evaluated at the *current* contents of
the state buffer, so integrators realize intermediate stages by writing
them into the state buffer itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

import torch

DerivativeFn = Callable[[torch.Tensor], None]


class Integrator(ABC):
    """Base class for in-place time integrators.

    Args:
        state: The solver's state buffer.  Never reallocated.
    """

    name: str = ""
    # Implicit integrators can raise ConvergenceError mid-step
    implicit: bool = False

    def __init__(self, state: torch.Tensor) -> None:
        self.state = state
        self.deriv = torch.zeros_like(state)

    def evaluate(self, derivative_fn: DerivativeFn) -> torch.Tensor:
        """Zero the derivative buffer and fill it from the current state."""
        self.deriv.zero_()
        derivative_fn(self.deriv)
        return self.deriv

    @abstractmethod
    def integrate(self, dt: float, derivative_fn: DerivativeFn) -> None:
        """Advance the state buffer by ``dt``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(shape={tuple(self.state.shape)})"
