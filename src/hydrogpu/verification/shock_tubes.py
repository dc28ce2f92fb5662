"""Shock tube verification problems.

Provides the exact solution of the Sod shock tube and driver functions
that run the standard shock tubes through :class:`hydrogpu.Solver` and
report quantitative error norms and qualitative sanity checks.

Implemented problems
--------------------
1. **Sod shock tube** (Sod 1978) -- exact Riemann solver for the
   one-dimensional Euler equations: a left rarefaction, a contact
   discontinuity and a right shock.

2. **Brio-Wu MHD shock tube** (Brio & Wu 1988) -- no closed-form
   solution; the driver checks positivity and conservation of the normal
   magnetic field.

References
----------
- G. A. Sod, *J. Comput. Phys.* **27**, 1--31 (1978).
- E. F. Toro, *Riemann Solvers and Numerical Methods for Fluid Dynamics*,
  ch. 4.
- M. Brio & C. C. Wu, *J. Comput. Phys.* **75**, 400--422 (1988).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from hydrogpu.config import SolverConfig
from hydrogpu.constants import NUM_GHOST
from hydrogpu.presets import brio_wu, get_preset, sod
from hydrogpu.solver.solver import Solver

logger = logging.getLogger(__name__)


# ============================================================
# Data containers
# ============================================================

@dataclass
class ShockTubeResult:
    """Container returned by the run_* driver functions.

    Attributes:
        x: Interior cell-centre coordinates, shape ``(nx,)``.
        time: Simulation time reached.
        frames: Number of updates taken.
        numerical: Primitive field arrays from the solver.
        analytical: Exact arrays, or ``None`` without a closed form.
        errors: ``{field_name: L1_error}`` against the exact solution.
        checks: ``{check_name: bool}`` qualitative sanity checks.
    """

    x: np.ndarray
    time: float
    frames: int
    numerical: dict[str, np.ndarray]
    analytical: dict[str, np.ndarray] | None = None
    errors: dict[str, float] = field(default_factory=dict)
    checks: dict[str, bool] = field(default_factory=dict)


# ============================================================
# Sod shock tube -- exact Riemann solver
# ============================================================

def _sod_find_pstar(
    rho_L: float,
    p_L: float,
    u_L: float,
    rho_R: float,
    p_R: float,
    u_R: float,
    gamma: float,
    tol: float = 1e-12,
    max_iter: int = 200,
) -> tuple[float, float]:
    """Star-region pressure and velocity of the exact Riemann problem.

    Newton-Raphson on ``f(p) = f_L(p) + f_R(p) + (u_R - u_L) = 0``
    started from the linearised (PVRS) estimate.

    Returns:
        ``(p_star, u_star)``
    """
    gm1 = gamma - 1.0
    gp1 = gamma + 1.0
    a_L = np.sqrt(gamma * p_L / rho_L)
    a_R = np.sqrt(gamma * p_R / rho_R)

    def _f(p: float, rho_k: float, p_k: float, a_k: float) -> float:
        if p > p_k:
            A_k = 2.0 / (gp1 * rho_k)
            B_k = gm1 / gp1 * p_k
            return (p - p_k) * np.sqrt(A_k / (p + B_k))
        return 2.0 * a_k / gm1 * ((p / p_k) ** (gm1 / (2.0 * gamma)) - 1.0)

    def _fprime(p: float, rho_k: float, p_k: float, a_k: float) -> float:
        if p > p_k:
            A_k = 2.0 / (gp1 * rho_k)
            B_k = gm1 / gp1 * p_k
            q = np.sqrt(A_k / (p + B_k))
            return q * (1.0 - (p - p_k) / (2.0 * (p + B_k)))
        return 1.0 / (rho_k * a_k) * (p / p_k) ** (-gp1 / (2.0 * gamma))

    p_star = 0.5 * (p_L + p_R) - 0.125 * (u_R - u_L) * (rho_L + rho_R) * (a_L + a_R)
    p_star = max(p_star, 1e-30)

    for _ in range(max_iter):
        f_val = _f(p_star, rho_L, p_L, a_L) + _f(p_star, rho_R, p_R, a_R) + (u_R - u_L)
        df_val = _fprime(p_star, rho_L, p_L, a_L) + _fprime(p_star, rho_R, p_R, a_R)
        if abs(df_val) < 1e-30:
            break
        p_new = max(p_star - f_val / df_val, 1e-30)
        converged = abs(p_new - p_star) < tol * 0.5 * (p_star + p_new)
        p_star = p_new
        if converged:
            break

    fL = _f(p_star, rho_L, p_L, a_L)
    fR = _f(p_star, rho_R, p_R, a_R)
    u_star = 0.5 * (u_L + u_R) + 0.5 * (fR - fL)
    return p_star, u_star


def sod_shock_tube_analytical(
    x: np.ndarray,
    t: float,
    gamma: float = 1.4,
    x0: float = 0.0,
) -> dict[str, np.ndarray]:
    """Exact solution of the Sod shock tube.

    ========  ======  ======  ====
     Region    rho      p      u
    ========  ======  ======  ====
     Left      1.0     1.0    0.0
     Right     0.125   0.1    0.0
    ========  ======  ======  ====

    Args:
        x: 1-D array of cell-centre positions.
        t: Evaluation time.  Must be > 0.
        gamma: Adiabatic index.
        x0: Initial discontinuity position.

    Returns:
        Dictionary with keys ``"rho"``, ``"u"``, ``"p"``.
    """
    if t <= 0.0:
        raise ValueError("Time t must be > 0 for the Sod analytical solution.")

    gm1 = gamma - 1.0
    gp1 = gamma + 1.0
    rho_L, p_L, u_L = 1.0, 1.0, 0.0
    rho_R, p_R, u_R = 0.125, 0.1, 0.0
    a_L = np.sqrt(gamma * p_L / rho_L)
    a_R = np.sqrt(gamma * p_R / rho_R)

    p_star, u_star = _sod_find_pstar(rho_L, p_L, u_L, rho_R, p_R, u_R, gamma)

    # Left rarefaction
    rho_star_L = rho_L * (p_star / p_L) ** (1.0 / gamma)
    a_star_L = a_L * (p_star / p_L) ** (gm1 / (2.0 * gamma))
    S_HL = u_L - a_L
    S_TL = u_star - a_star_L

    # Right shock (Rankine-Hugoniot)
    rho_star_R = rho_R * (
        (p_star / p_R + gm1 / gp1) / (gm1 / gp1 * p_star / p_R + 1.0)
    )
    S_R = u_R + a_R * np.sqrt(gp1 / (2.0 * gamma) * p_star / p_R + gm1 / (2.0 * gamma))

    xi = (np.asarray(x, dtype=np.float64) - x0) / t
    fan = 2.0 / gp1 + gm1 / (gp1 * a_L) * (u_L - xi)

    rho = np.select(
        [xi <= S_HL, xi <= S_TL, xi <= u_star, xi <= S_R],
        [rho_L, rho_L * np.abs(fan) ** (2.0 / gm1), rho_star_L, rho_star_R],
        rho_R,
    )
    u = np.select(
        [xi <= S_HL, xi <= S_TL, xi <= S_R],
        [u_L, 2.0 / gp1 * (a_L + gm1 / 2.0 * u_L + xi), u_star],
        u_R,
    )
    p = np.select(
        [xi <= S_HL, xi <= S_TL, xi <= S_R],
        [p_L, p_L * np.abs(fan) ** (2.0 * gamma / gm1), p_star],
        p_R,
    )
    return {"rho": rho, "u": u, "p": p}


# ============================================================
# Helpers
# ============================================================

def _interior_x(solver: Solver) -> np.ndarray:
    n = solver.grid.size[0]
    return solver.grid.axis_centers(0)[NUM_GHOST:n - NUM_GHOST]


def _interior_row(solver: Solver) -> np.ndarray:
    """State along x on the first transverse row, ghosts stripped."""
    n = solver.grid.size[0]
    return solver.read_state()[0, 0, NUM_GHOST:n - NUM_GHOST, :]


def _advance(solver: Solver, t_end: float, max_frames: int) -> None:
    while solver.time < t_end and solver.frame < max_frames:
        solver.update()
    if solver.time < t_end:
        logger.warning(
            "Stopped at t=%.4e after %d frames (target %.4e)", solver.time, solver.frame, t_end,
        )


def _l1(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.mean(np.abs(a - b)))


# ============================================================
# Drivers
# ============================================================

def run_sod(
    cells: int = 100,
    t_end: float = 0.2,
    scheme: str = "roe",
    integrator: str = "ForwardEuler",
    slope_limiter: str = "superbee",
    device: str = "cpu",
    cfl: float = 0.5,
    max_frames: int = 100_000,
) -> ShockTubeResult:
    """Run the Sod shock tube on ``[-0.5, 0.5]`` and compare to the exact solution.

    Args:
        cells: Cells along x including ghost layers.
        t_end: Target time; the run stops on the first update reaching it.
        scheme: ``"roe"`` or ``"burgers"``.
        integrator: Time integrator name.
        slope_limiter: Flux limiter name.
        device: Compute device.
        cfl: CFL safety factor.
        max_frames: Safety cap on the number of updates.

    Returns:
        :class:`ShockTubeResult` with L1 errors for rho, u and p.
    """
    preset = get_preset("sod")
    preset["grid"] = dict(preset["grid"], size=[cells])
    preset["scheme"] = dict(preset["scheme"], name=scheme, integrator=integrator,
                            slope_limiter=slope_limiter)
    preset["timestep"] = {"cfl": cfl}
    preset["device"] = {"device": device, "precision": "float64"}
    config = SolverConfig(**preset)
    gamma = config.equation.gamma

    solver = Solver(config, sod)
    solver.init()
    solver.reset_state()
    _advance(solver, t_end, max_frames)

    q = _interior_row(solver)
    rho = q[:, 0]
    u = q[:, 1] / rho
    kinetic = 0.5 * (q[:, 1] ** 2 + q[:, 2] ** 2 + q[:, 3] ** 2) / rho
    p = (gamma - 1.0) * (q[:, 4] - kinetic)
    numerical = {"rho": rho, "u": u, "p": p}

    x = _interior_x(solver)
    analytical = sod_shock_tube_analytical(x, solver.time, gamma=gamma, x0=0.0)
    errors = {key: _l1(numerical[key], analytical[key]) for key in numerical}
    checks = {
        "finite": bool(np.all(np.isfinite(q))),
        "positive_density": bool(np.all(rho > 0.0)),
        "positive_pressure": bool(np.all(p > 0.0)),
    }
    logger.info(
        "Sod %s/%s: t=%.4f frames=%d  L1 rho=%.3e u=%.3e p=%.3e",
        scheme, integrator, solver.time, solver.frame,
        errors["rho"], errors["u"], errors["p"],
    )
    return ShockTubeResult(
        x=x, time=solver.time, frames=solver.frame,
        numerical=numerical, analytical=analytical, errors=errors, checks=checks,
    )


def run_brio_wu(
    cells: int = 200,
    t_end: float = 0.1,
    scheme: str = "roe",
    device: str = "cpu",
    max_frames: int = 100_000,
) -> ShockTubeResult:
    """Run the Brio-Wu MHD shock tube and check admissibility.

    Returns:
        :class:`ShockTubeResult` without an analytical solution; ``checks``
        reports positivity and preservation of ``B_x = 0.75``.
    """
    preset = get_preset("brio_wu")
    preset["grid"] = dict(preset["grid"], size=[cells])
    preset["scheme"] = dict(preset["scheme"], name=scheme)
    preset["device"] = {"device": device, "precision": "float64"}
    config = SolverConfig(**preset)
    gamma = config.equation.gamma

    solver = Solver(config, brio_wu)
    solver.init()
    solver.reset_state()
    _advance(solver, t_end, max_frames)

    q = _interior_row(solver)
    rho = q[:, 0]
    b = q[:, 5:8]
    kinetic = 0.5 * (q[:, 1] ** 2 + q[:, 2] ** 2 + q[:, 3] ** 2) / rho
    p = (gamma - 1.0) * (q[:, 4] - kinetic - 0.5 * np.sum(b * b, axis=1))
    numerical = {"rho": rho, "u": q[:, 1] / rho, "p": p, "By": b[:, 1], "Bx": b[:, 0]}
    checks = {
        "finite": bool(np.all(np.isfinite(q))),
        "positive_density": bool(np.all(rho > 0.0)),
        "positive_pressure": bool(np.all(p > 0.0)),
        "bx_preserved": bool(np.allclose(b[:, 0], 0.75, atol=1e-6)),
    }
    logger.info("Brio-Wu %s: t=%.4f frames=%d checks=%s", scheme, solver.time, solver.frame, checks)
    return ShockTubeResult(
        x=_interior_x(solver), time=solver.time, frames=solver.frame,
        numerical=numerical, checks=checks,
    )
