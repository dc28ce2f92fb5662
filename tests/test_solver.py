"""Tests for the Solver orchestrator.

Test categories:
1. Initialization and configuration errors
2. State reset, upload and read-back
3. Step invariants (ghost-only boundary, zero step, buffer identity)
4. Conservation and stationary states per equation
5. Sod shock tube at solver level
6. Implicit integration and whole-step rollback
7. Divergence cleaning and Roe flux flags
8. Unsupported operations
"""

from __future__ import annotations

import numpy as np
import pytest
import torch

from hydrogpu.constants import NUM_GHOST
from hydrogpu.errors import ConfigError, ConvergenceError, UnsupportedOperationError
from hydrogpu.presets import gaussian_pulse, minkowski, sod, uniform
from hydrogpu.solver.solver import Solver


def _line(n, method="periodic"):
    return {
        "grid": {"dim": 1, "size": [n], "xmin": [-0.5], "xmax": [0.5]},
        "boundary": {"methods": [[method, method]]},
    }


def _interior(state, dim=1):
    if dim == 1:
        return state[:, :, NUM_GHOST:-NUM_GHOST]
    if dim == 2:
        return state[:, NUM_GHOST:-NUM_GHOST, NUM_GHOST:-NUM_GHOST]
    return state[NUM_GHOST:-NUM_GHOST, NUM_GHOST:-NUM_GHOST, NUM_GHOST:-NUM_GHOST]


def _smooth_density(x, y, z):
    rho = 1.0 + 0.2 * np.sin(2.0 * np.pi * x)
    return (rho, 0.3, 0.0, 0.0, 1.0)


# ====================================================
# Initialization
# ====================================================


class TestInit:
    """Solver construction and init-time errors."""

    def test_init_allocates_state(self, sod_config):
        solver = Solver(sod_config)
        solver.init()
        assert tuple(solver.state_buffer.shape) == (1, 1, 32, 5)
        assert solver.channel_names[0] == "density"
        assert solver.allocated_bytes > solver.state_buffer.numel() * 8
        assert "roe" in repr(solver)

    def test_uninitialized_operations_raise(self, sod_config):
        solver = Solver(sod_config)
        assert "uninitialized" in repr(solver)
        with pytest.raises(RuntimeError, match="init"):
            solver.update()
        with pytest.raises(RuntimeError, match="init"):
            solver.read_state()

    def test_unknown_initial_condition(self, sod_config_dict):
        sod_config_dict["initial_condition"] = "no_such_problem"
        from hydrogpu.config import SolverConfig

        solver = Solver(SolverConfig(**sod_config_dict))
        with pytest.raises(ConfigError, match="Unknown initial condition"):
            solver.init()

    def test_reset_without_initial_condition(self, make_solver):
        solver = make_solver(reset=False, **_line(16))
        with pytest.raises(ConfigError, match="no initial condition"):
            solver.reset_state()

    def test_initial_condition_arity_checked(self, make_solver):
        solver = make_solver(lambda x, y, z: (1.0, 0.0), reset=False, **_line(16))
        with pytest.raises(ConfigError, match="must return 5 values"):
            solver.reset_state()

    def test_srhd_vacuum_initial_condition_rejected(self, make_solver):
        solver = make_solver(
            lambda x, y, z: (0.0, 0.0, 0.0, 0.0, 1.0), reset=False,
            equation={"name": "srhd"}, **_line(16),
        )
        with pytest.raises(ConfigError, match="density must be positive"):
            solver.reset_state()

    def test_unsupported_scheme_equation_pair(self, sod_config):
        config = sod_config.model_copy(deep=True)
        config.scheme.name = "burgers"
        config.equation.name = "maxwell"
        solver = Solver(config)
        with pytest.raises(ConfigError, match="does not support"):
            solver.init()

    def test_program_sources_deterministic(self, sod_config):
        a = Solver(sod_config)
        a.init()
        b = Solver(sod_config)
        b.init()
        assert a.program.source == b.program.source


# ====================================================
# State transfer
# ====================================================


class TestState:
    """Upload and read-back of the state buffer."""

    def test_reset_matches_read_state_cell(self, make_solver):
        solver = make_solver(_smooth_density, **_line(16))
        state = solver.read_state()
        x, y, z = solver.grid.cell_centers()
        for i in (0, 5, 15):
            expected = solver.equation.read_state_cell(_smooth_density(x[0, 0, i], 0.0, 0.0))
            np.testing.assert_allclose(state[0, 0, i], expected)

    def test_reset_clears_time_and_frame(self, make_solver):
        solver = make_solver(uniform, **_line(16))
        solver.update()
        assert solver.frame == 1
        assert solver.time > 0.0
        solver.reset_state()
        assert solver.frame == 0
        assert solver.time == 0.0

    def test_load_state_rejects_wrong_shape(self, make_solver):
        solver = make_solver(uniform, **_line(16))
        with pytest.raises(ValueError, match="does not match"):
            solver.load_state(np.zeros((1, 1, 8, 5)))

    def test_state_buffer_identity_across_updates(self, make_solver):
        solver = make_solver(
            _smooth_density, scheme={"name": "roe", "integrator": "RungeKutta4"}, **_line(16),
        )
        buffer = solver.state_buffer
        pointer = buffer.data_ptr()
        for _ in range(3):
            solver.update()
        assert solver.state_buffer is buffer
        assert buffer.data_ptr() == pointer
        assert solver.integrator.state is buffer


# ====================================================
# Step invariants
# ====================================================


class TestStepInvariants:
    """Boundary and zero-timestep behaviour."""

    @pytest.mark.parametrize("dim", [1, 2, 3])
    def test_boundary_only_touches_ghosts(self, make_solver, dim):
        grid = {"dim": dim, "size": [8] * dim}
        solver = make_solver(
            uniform, grid=grid, boundary={"methods": [["freeflow", "freeflow"]] * dim},
        )
        rng = np.random.default_rng(dim)
        noisy = solver.read_state() * (1.0 + 0.1 * rng.uniform(size=solver.state_buffer.shape))
        solver.load_state(noisy)
        solver.boundary()
        np.testing.assert_array_equal(_interior(solver.read_state(), dim), _interior(noisy, dim))

    def test_zero_timestep_keeps_interior(self, make_solver):
        solver = make_solver(
            _smooth_density, timestep={"use_fixed_dt": True, "fixed_dt": 1e-300}, **_line(16),
        )
        before = solver.read_state()
        dt = solver.update()
        assert dt == pytest.approx(1e-300)
        np.testing.assert_allclose(_interior(solver.read_state()), _interior(before), rtol=1e-12)

    def test_fixed_timestep(self, make_solver):
        solver = make_solver(uniform, timestep={"use_fixed_dt": True, "fixed_dt": 1e-3}, **_line(16))
        solver.update()
        solver.update()
        assert solver.time == pytest.approx(2e-3)
        assert solver.frame == 2

    def test_cfl_timestep_scales_with_sound_speed(self, make_solver):
        solver = make_solver(uniform, timestep={"cfl": 0.5}, **_line(20))
        dt = solver.update()
        # gas at rest: waves leave each cell through both faces at sqrt(1.4)
        assert dt == pytest.approx(0.5 * (1.0 / 20) / (2.0 * np.sqrt(1.4)), rel=1e-6)


# ====================================================
# Conservation and stationary states
# ====================================================


class TestConservation:
    """Periodic domains conserve; uniform states stay uniform."""

    @pytest.mark.parametrize("scheme", ["roe", "burgers"])
    def test_periodic_mass_conserved(self, make_solver, scheme):
        solver = make_solver(_smooth_density, scheme={"name": scheme}, **_line(32))
        mass0 = _interior(solver.read_state())[..., 0].sum()
        for _ in range(10):
            solver.update()
        state = solver.read_state()
        assert np.all(np.isfinite(state))
        assert _interior(state)[..., 0].sum() == pytest.approx(mass0, rel=1e-12)

    @pytest.mark.parametrize("scheme", ["roe", "burgers"])
    def test_uniform_state_stationary(self, make_solver, scheme):
        solver = make_solver(uniform, scheme={"name": scheme}, **_line(16, "mirror"))
        before = solver.read_state()
        for _ in range(5):
            solver.update()
        np.testing.assert_allclose(
            _interior(solver.read_state()), _interior(before), rtol=1e-12, atol=1e-14,
        )

    def test_maxwell_uniform_field_stationary(self, make_solver):
        field = lambda x, y, z: (0.1, 0.2, 0.3, 0.4, 0.5, 0.6)
        solver = make_solver(field, equation={"name": "maxwell"}, **_line(16))
        before = solver.read_state()
        for _ in range(5):
            solver.update()
        np.testing.assert_allclose(solver.read_state(), before, rtol=1e-12, atol=1e-14)

    def test_maxwell_conductivity_damps_electric_field(self, make_solver):
        field = lambda x, y, z: (0.0, 1.0, 0.0, 0.0, 0.0, 0.0)
        solver = make_solver(
            field, equation={"name": "maxwell", "conductivity": 1.0}, **_line(16),
        )
        for _ in range(5):
            solver.update()
        e_y = _interior(solver.read_state())[..., 1]
        assert np.all(e_y < 1.0)
        assert np.all(e_y > 0.0)

    def test_maxwell_pulse_finite(self, make_solver):
        solver = make_solver(gaussian_pulse, equation={"name": "maxwell"}, **_line(64))
        peak = np.abs(solver.read_state()).max()
        for _ in range(10):
            solver.update()
        state = solver.read_state()
        assert np.all(np.isfinite(state))
        assert np.abs(state).max() <= peak * (1.0 + 1e-9)

    def test_adm_flat_space_stays_flat(self, make_solver):
        solver = make_solver(
            minkowski, equation={"name": "adm3d"}, scheme={"name": "roe", "slope_limiter": "minmod"},
            **_line(16),
        )
        before = solver.read_state()
        for _ in range(3):
            solver.update()
        np.testing.assert_allclose(solver.read_state(), before, atol=1e-13)

    def test_mhd_brio_wu_steps_finite(self, make_solver):
        from hydrogpu.presets import brio_wu

        solver = make_solver(
            brio_wu, equation={"name": "mhd", "gamma": 2.0},
            scheme={"name": "roe", "slope_limiter": "minmod"}, **_line(32, "freeflow"),
        )
        for _ in range(5):
            solver.update()
        state = solver.read_state()
        assert np.all(np.isfinite(state))
        assert np.all(state[..., 0] > 0.0)
        np.testing.assert_allclose(_interior(state)[..., 5], 0.75, atol=1e-6)

    def test_mhd_burgers_steps_finite(self, make_solver):
        from hydrogpu.presets import brio_wu

        solver = make_solver(
            brio_wu, equation={"name": "mhd", "gamma": 2.0}, scheme={"name": "burgers"},
            timestep={"cfl": 0.3}, **_line(32, "freeflow"),
        )
        for _ in range(5):
            solver.update()
        assert np.all(np.isfinite(solver.read_state()))

    def test_srhd_steps_finite(self, make_solver):
        from hydrogpu.presets import srhd_sod

        solver = make_solver(
            srhd_sod, equation={"name": "srhd", "gamma": 5.0 / 3.0},
            scheme={"name": "roe", "slope_limiter": "minmod"}, **_line(32, "freeflow"),
        )
        for _ in range(5):
            solver.update()
        state = solver.read_state()
        assert np.all(np.isfinite(state))
        assert np.all(state[..., 0] > 0.0)

    def test_self_gravity_runs(self, make_solver):
        solver = make_solver(
            _smooth_density, gravity={"enabled": True, "max_iterations": 5}, **_line(32),
        )
        assert solver.self_gravity is not None
        mass0 = _interior(solver.read_state())[..., 0].sum()
        solver.update()
        state = solver.read_state()
        assert np.all(np.isfinite(state))
        assert _interior(state)[..., 0].sum() == pytest.approx(mass0, rel=1e-12)


# ====================================================
# Sod shock tube
# ====================================================


class TestSodScenario:
    """One fixed-dt update of a 100-cell Sod tube."""

    N = 100

    def _update(self, make_solver, scheme, method):
        solver = make_solver(
            sod, scheme={"name": scheme}, timestep={"use_fixed_dt": True, "fixed_dt": 1e-4},
            **_line(self.N, method),
        )
        before = solver.read_state()
        dt = solver.update()
        assert dt == pytest.approx(1e-4)
        state = solver.read_state()
        assert np.all(np.isfinite(state))
        assert np.all(state[..., 0] > 0.0)
        assert not np.array_equal(_interior(state), _interior(before))
        return before, state[0, 0]

    @pytest.mark.parametrize("scheme", ["roe", "burgers"])
    def test_freeflow_ghosts_copy_edge_cells(self, make_solver, scheme):
        _, line = self._update(make_solver, scheme, "freeflow")
        np.testing.assert_array_equal(line[0], line[2])
        np.testing.assert_array_equal(line[1], line[2])
        np.testing.assert_array_equal(line[-2], line[-3])
        np.testing.assert_array_equal(line[-1], line[-3])
        # far from the diaphragm the gas has not moved yet
        np.testing.assert_allclose(line[NUM_GHOST + 5], [1.0, 0.0, 0.0, 0.0, 2.5], atol=1e-12)

    @pytest.mark.parametrize("scheme", ["roe", "burgers"])
    def test_periodic_ghosts_copy_opposite_edge(self, make_solver, scheme):
        before, line = self._update(make_solver, scheme, "periodic")
        n = self.N
        np.testing.assert_array_equal(line[0], line[n - 4])
        np.testing.assert_array_equal(line[1], line[n - 3])
        np.testing.assert_array_equal(line[n - 2], line[2])
        np.testing.assert_array_equal(line[n - 1], line[3])
        mass0 = _interior(before)[..., 0].sum()
        assert line[NUM_GHOST:-NUM_GHOST, 0].sum() == pytest.approx(mass0, rel=1e-12)


# ====================================================
# Implicit integration
# ====================================================


def _sod_step(make_solver, scheme, integrator):
    solver = make_solver(
        sod,
        scheme={
            "name": scheme, "slope_limiter": "donor_cell",
            "integrator": integrator, "tolerance": 1e-9,
        },
        timestep={"use_fixed_dt": True, "fixed_dt": 1e-4},
        **_line(100, "freeflow"),
    )
    before = solver.read_state()
    solver.update()
    return solver, before, solver.read_state()


class TestImplicitIntegrator:
    """Backward Euler on a real problem, and rollback of a failed update."""

    @pytest.mark.parametrize("scheme", ["roe", "burgers"])
    def test_sod_close_to_forward_euler_at_small_dt(self, make_solver, scheme):
        solver, before, implicit = _sod_step(make_solver, scheme, "BackwardEulerConjugateGradient")
        _, _, explicit = _sod_step(make_solver, scheme, "ForwardEuler")
        assert solver.frame == 1
        assert np.all(np.isfinite(implicit))
        change = np.abs(explicit - before).max()
        assert change > 0.0
        # both are first order in time: they differ by O(dt^2)
        assert np.abs(implicit - explicit).max() < 0.1 * change
        assert implicit[0, 0, NUM_GHOST:-NUM_GHOST, 0].sum() == pytest.approx(
            explicit[0, 0, NUM_GHOST:-NUM_GHOST, 0].sum(), rel=1e-6,
        )

    def test_roe_sod_solve_iterates(self, make_solver):
        solver, _, _ = _sod_step(make_solver, "roe", "BackwardEulerConjugateGradient")
        assert solver.integrator.implicit
        assert solver.integrator.last_iterations > 0

    def test_failed_pass_restores_whole_step(self, make_solver, monkeypatch):
        solver = make_solver(
            sod, scheme={"name": "burgers", "integrator": "BackwardEulerConjugateGradient"},
            timestep={"use_fixed_dt": True, "fixed_dt": 1e-4}, **_line(100, "freeflow"),
        )
        before = solver.read_state()
        converging = solver.integrator.integrate
        calls = []

        def second_pass_fails(dt, derivative_fn):
            calls.append(dt)
            if len(calls) == 2:
                raise ConvergenceError(3, 1.0)
            converging(dt, derivative_fn)

        monkeypatch.setattr(solver.integrator, "integrate", second_pass_fails)
        with pytest.raises(ConvergenceError):
            solver.update()
        assert len(calls) == 2
        # the first pass converged and was committed before the failure
        np.testing.assert_array_equal(solver.read_state(), before)
        assert solver.frame == 0
        assert solver.time == 0.0

        monkeypatch.undo()
        solver.update()
        assert solver.frame == 1
        assert not np.array_equal(solver.read_state(), before)

    def test_explicit_update_propagates_other_errors(self, make_solver, monkeypatch):
        solver = make_solver(sod, **_line(16, "freeflow"))

        def broken(dt, derivative_fn):
            raise RuntimeError("kernel failed")

        monkeypatch.setattr(solver.integrator, "integrate", broken)
        with pytest.raises(RuntimeError, match="kernel failed"):
            solver.update()
        assert solver.frame == 0


# ====================================================
# Divergence cleaning and flux flags
# ====================================================


_PLANE = 24
_PERIOD = (_PLANE - 2 * NUM_GHOST) / _PLANE


def _divergent_field(x, y, z):
    """Gas at rest threaded by a field with div(B) != 0, periodic over the interior."""
    bx = 0.1 * np.sin(2.0 * np.pi * x / _PERIOD)
    by = 0.1 * np.sin(2.0 * np.pi * y / _PERIOD)
    return (1.0, 0.0, 0.0, 0.0, 1.0, bx, by, 0.0)


def _max_divergence(solver):
    cleaning = solver.divergence_cleaning
    solver.boundary()
    solver.enqueue(cleaning.calc_divergence_kernel, cleaning.divergence, solver.state_buffer)
    interior = cleaning.divergence[0, NUM_GHOST:-NUM_GHOST, NUM_GHOST:-NUM_GHOST, 0]
    return float(interior.abs().max())


def _mhd_pressure(state, gamma=2.0):
    kinetic = 0.5 * (state[..., 1:4] ** 2).sum(-1) / state[..., 0]
    magnetic = 0.5 * (state[..., 5:8] ** 2).sum(-1)
    return (gamma - 1.0) * (state[..., 4] - kinetic - magnetic)


class TestDivergenceCleaning:
    """Projection of div(B) on a periodic MHD plane."""

    def _solver(self, make_solver, max_iterations):
        return make_solver(
            _divergent_field,
            grid={"dim": 2, "size": [_PLANE, _PLANE], "xmin": [-0.5, -0.5], "xmax": [0.5, 0.5]},
            boundary={"methods": [["periodic", "periodic"]] * 2},
            equation={"name": "mhd", "gamma": 2.0},
            divergence_cleaning={"enabled": True, "max_iterations": max_iterations},
        )

    def test_cleaning_lowers_divergence(self, make_solver):
        solver = self._solver(make_solver, 20)
        initial = _max_divergence(solver)
        assert initial > 0.5
        for _ in range(8):
            solver.boundary()
            solver.divergence_cleaning.update()
        # Jacobi sweeps are not monotone per update, only the overall drop is checked
        assert _max_divergence(solver) < 0.2 * initial

    def test_converged_cleaning(self, make_solver):
        solver = self._solver(make_solver, 400)
        initial = _max_divergence(solver)
        solver.divergence_cleaning.update()
        once = _max_divergence(solver)
        assert once < 0.1 * initial
        for _ in range(3):
            solver.boundary()
            solver.divergence_cleaning.update()
        assert _max_divergence(solver) < 0.01 * initial

    def test_cleaning_keeps_thermal_pressure(self, make_solver):
        solver = self._solver(make_solver, 20)
        before = solver.read_state()
        solver.divergence_cleaning.update()
        after = solver.read_state()
        assert not np.array_equal(_interior(after, 2)[..., 5:8], _interior(before, 2)[..., 5:8])
        np.testing.assert_allclose(
            _mhd_pressure(_interior(after, 2)), _mhd_pressure(_interior(before, 2)), atol=1e-12,
        )
        np.testing.assert_array_equal(_interior(after, 2)[..., :4], _interior(before, 2)[..., :4])


class TestRoeFluxFlags:
    """Per-interface Rusanov fallback of the MHD Roe scheme."""

    def _solver(self, make_solver, monkeypatch, valid):
        from hydrogpu.presets import brio_wu

        solver = make_solver(
            brio_wu, equation={"name": "mhd", "gamma": 2.0},
            scheme={"name": "roe", "slope_limiter": "minmod"}, **_line(16, "freeflow"),
        )
        namespace = solver.program.constant("calc_eigen_basis").__globals__
        decompose = namespace["eigen_basis"]

        def forced(q_left, q_right, axis):
            lam, right, left, ok = decompose(q_left, q_right, axis)
            return lam, right, left, torch.full_like(ok, valid["value"])

        monkeypatch.setitem(namespace, "eigen_basis", forced)
        return solver, namespace

    def test_flags_reset_every_step(self, make_solver, monkeypatch):
        valid = {"value": True}
        solver, _ = self._solver(make_solver, monkeypatch, valid)
        flags = solver.scheme.flux_flags
        assert flags is not None
        flags.fill_(1)
        solver.boundary()
        solver.scheme.init_step()
        assert int(flags.abs().max()) == 0

    def test_failed_decomposition_uses_rusanov(self, make_solver, monkeypatch):
        valid = {"value": False}
        solver, namespace = self._solver(make_solver, monkeypatch, valid)
        solver.boundary()
        solver.scheme.init_step()
        flags = solver.scheme.flux_flags
        assert int(flags.min()) == 1

        state = solver.state_buffer
        expected = namespace["rusanov_flux"](namespace["shift"](state, 0, -1), state, 0)
        np.testing.assert_allclose(
            solver.scheme.flux[..., 0, :].cpu().numpy(), expected.cpu().numpy(), rtol=1e-14, atol=0.0,
        )

        valid["value"] = True
        solver.scheme.init_step()
        assert int(flags.abs().max()) == 0

    def test_all_rusanov_update_finite(self, make_solver, monkeypatch):
        solver, _ = self._solver(make_solver, monkeypatch, {"value": False})
        for _ in range(3):
            solver.update()
        state = solver.read_state()
        assert np.all(np.isfinite(state))
        assert np.all(state[..., 0] > 0.0)


# ====================================================
# Unsupported operations
# ====================================================


class TestUnsupported:
    """The explicit schemes expose no dState/dt matrix."""

    def test_create_matrix(self, make_solver):
        solver = make_solver(uniform, **_line(16))
        with pytest.raises(UnsupportedOperationError):
            solver.create_dstate_dt_matrix()

    def test_apply_matrix(self, make_solver):
        solver = make_solver(uniform, **_line(16))
        with pytest.raises(UnsupportedOperationError):
            solver.apply_dstate_dt_matrix(solver.state_buffer, solver.state_buffer)
