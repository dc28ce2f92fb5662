"""First-order explicit Euler integrator."""

from __future__ import annotations

from hydrogpu.integrators.base import DerivativeFn, Integrator


class ForwardEuler(Integrator):
    """``state += dt * dState/dt`` with a single derivative evaluation."""

    name = "ForwardEuler"

    def integrate(self, dt: float, derivative_fn: DerivativeFn) -> None:
        deriv = self.evaluate(derivative_fn)
        self.state.add_(deriv, alpha=dt)
