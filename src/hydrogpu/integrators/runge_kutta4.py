"""Classical fourth-order Runge-Kutta integrator."""

from __future__ import annotations

import torch

from hydrogpu.integrators.base import DerivativeFn, Integrator


class RungeKutta4(Integrator):
    """Classical RK4 with stages evaluated in the state buffer.

    Scratch buffers hold the initial state and the weighted sum of stage
    derivatives::

        k1 = f(y0)
        k2 = f(y0 + dt/2 k1)
        k3 = f(y0 + dt/2 k2)
        k4 = f(y0 + dt k3)
        y1 = y0 + dt/6 (k1 + 2 k2 + 2 k3 + k4)
    """

    name = "RungeKutta4"

    def __init__(self, state: torch.Tensor) -> None:
        super().__init__(state)
        self.initial = torch.empty_like(state)
        self.accum = torch.empty_like(state)

    def integrate(self, dt: float, derivative_fn: DerivativeFn) -> None:
        self.initial.copy_(self.state)

        k = self.evaluate(derivative_fn)
        self.accum.copy_(k)
        torch.add(self.initial, k, alpha=0.5 * dt, out=self.state)

        k = self.evaluate(derivative_fn)
        self.accum.add_(k, alpha=2.0)
        torch.add(self.initial, k, alpha=0.5 * dt, out=self.state)

        k = self.evaluate(derivative_fn)
        self.accum.add_(k, alpha=2.0)
        torch.add(self.initial, k, alpha=dt, out=self.state)

        k = self.evaluate(derivative_fn)
        self.accum.add_(k)
        torch.add(self.initial, self.accum, alpha=dt / 6.0, out=self.state)
