"""Linearized backward Euler solved by a matrix-free conjugate gradient method.

Backward Euler requires ``x = b + dt * f(x)`` for the new state ``x``
given the start-of-step state ``b``.  One Newton step about ``b`` gives
the linear system::

    (I - dt J) delta = dt * f(b),    x = b + delta

with ``J`` the Jacobian of the derivative callback at ``b``.  ``J`` is
never formed: each product ``J y`` is a central difference of the
callback, evaluated by writing ``b +- eps * y`` into the state buffer.
For a linear callback this is exactly backward Euler.

Transport Jacobians are not symmetric, so the system is solved with the
stabilized bi-conjugate gradient iteration (BiCGSTAB), which reduces to a
conjugate gradient method on symmetric operators.

The new state is committed only after convergence.  On failure the state
buffer is restored bit-for-bit and :class:`ConvergenceError` is raised.
"""

from __future__ import annotations

import logging
import math

import torch

from hydrogpu.errors import ConvergenceError
from hydrogpu.integrators.base import DerivativeFn, Integrator

logger = logging.getLogger(__name__)


def _dot(a: torch.Tensor, b: torch.Tensor) -> float:
    return float(torch.sum(a * b))


class BackwardEulerConjugateGradient(Integrator):
    """First-order implicit integrator.

    Args:
        state: The solver's state buffer.
        tolerance: Relative residual ``|rhs - M delta| / |rhs|`` at which to stop.
        max_iterations: Iteration cap.
    """

    name = "BackwardEulerConjugateGradient"
    implicit = True

    def __init__(self, state: torch.Tensor, tolerance: float = 1e-10, max_iterations: int = 100) -> None:
        super().__init__(state)
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)
        # Central differences: truncation and round-off both O(eps^(2/3))
        self.step_scale = torch.finfo(state.dtype).eps ** (1.0 / 3.0)
        self.initial = torch.empty_like(state)
        self.rhs = torch.empty_like(state)
        self.solution = torch.empty_like(state)
        self.residual = torch.empty_like(state)
        self.shadow = torch.empty_like(state)
        self.direction = torch.empty_like(state)
        self.applied_direction = torch.empty_like(state)
        self.intermediate = torch.empty_like(state)
        self.applied_intermediate = torch.empty_like(state)
        self._base_scale = 1.0
        self.last_iterations = 0

    # ---- linear operator ---- #

    def _jacobian_product(self, y: torch.Tensor, out: torch.Tensor, derivative_fn: DerivativeFn) -> None:
        """``out = J y`` about the start-of-step state."""
        y_max = float(y.abs().max())
        if y_max == 0.0:
            out.zero_()
            return
        eps = self.step_scale * self._base_scale / y_max
        self.state.copy_(self.initial).add_(y, alpha=eps)
        out.copy_(self.evaluate(derivative_fn))
        self.state.copy_(self.initial).add_(y, alpha=-eps)
        out.sub_(self.evaluate(derivative_fn)).div_(2.0 * eps)

    def _apply_operator(
        self, y: torch.Tensor, out: torch.Tensor, dt: float, derivative_fn: DerivativeFn,
    ) -> None:
        """``out = (I - dt J) y``."""
        self._jacobian_product(y, out, derivative_fn)
        out.mul_(-dt).add_(y)

    # ---- solve ---- #

    def integrate(self, dt: float, derivative_fn: DerivativeFn) -> None:
        b = self.initial
        b.copy_(self.state)
        x = self.solution
        x.zero_()
        iterations = 0

        try:
            self._base_scale = 1.0 + float(b.abs().max())
            rhs = self.rhs
            rhs.copy_(self.evaluate(derivative_fn)).mul_(dt)
            rhs_norm = math.sqrt(_dot(rhs, rhs))
            if not math.isfinite(rhs_norm):
                relative = math.nan
            elif rhs_norm == 0.0:
                relative = 0.0
            else:
                iterations, relative = self._solve(dt, derivative_fn, rhs_norm)
        except BaseException:
            self.state.copy_(b)
            raise

        self.last_iterations = iterations
        if not math.isfinite(relative) or relative > self.tolerance:
            self.state.copy_(b)
            raise ConvergenceError(iterations, relative)

        logger.debug("Implicit solve converged in %d iterations (residual %.3e)", iterations, relative)
        self.state.copy_(b).add_(x)

    def _solve(self, dt: float, derivative_fn: DerivativeFn, rhs_norm: float) -> tuple[int, float]:
        """BiCGSTAB from ``delta = 0``; returns iterations and relative residual."""
        x = self.solution
        r = self.residual
        r_hat = self.shadow
        p = self.direction
        v = self.applied_direction
        s = self.intermediate
        t = self.applied_intermediate

        r.copy_(self.rhs)
        r_hat.copy_(r)
        p.zero_()
        v.zero_()
        rho = alpha = omega = 1.0
        relative = 1.0
        iterations = 0

        while relative > self.tolerance and iterations < self.max_iterations:
            rho_new = _dot(r_hat, r)
            if rho_new == 0.0 or not math.isfinite(rho_new):
                break
            beta = (rho_new / rho) * (alpha / omega)
            p.sub_(v, alpha=omega).mul_(beta).add_(r)
            self._apply_operator(p, v, dt, derivative_fn)
            denominator = _dot(r_hat, v)
            if denominator == 0.0 or not math.isfinite(denominator):
                break
            alpha = rho_new / denominator
            s.copy_(r).sub_(v, alpha=alpha)
            iterations += 1

            relative = math.sqrt(_dot(s, s)) / rhs_norm
            if relative <= self.tolerance:
                x.add_(p, alpha=alpha)
                break

            self._apply_operator(s, t, dt, derivative_fn)
            t_norm_sq = _dot(t, t)
            if t_norm_sq == 0.0 or not math.isfinite(t_norm_sq):
                break
            omega = _dot(t, s) / t_norm_sq
            x.add_(p, alpha=alpha).add_(s, alpha=omega)
            r.copy_(s).sub_(t, alpha=omega)
            rho = rho_new
            relative = math.sqrt(_dot(r, r)) / rhs_norm
            if omega == 0.0:
                break

        return iterations, relative
