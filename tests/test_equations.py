"""Tests for the equation set definitions.

Test categories:
1. Primitive-to-conserved conversion per equation
2. Device-side primitive recovery (Euler pressure, SRHD Newton solve)
3. Eigen decompositions reproduce the flux Jacobian
4. ADM3D constraint channels
"""

from __future__ import annotations

import math

import numpy as np
import pytest
import torch

from hydrogpu.config import BoundaryConfig, EquationConfig
from hydrogpu.device.program import build_program, program_header
from hydrogpu.equations import EQUATIONS, make_equation
from hydrogpu.errors import ConfigError
from hydrogpu.grid import GridDescriptor
from hydrogpu.schemes.roe import ROE_SOURCE
from hydrogpu.schemes.slope_limiter import SLOPE_LIMITER_SOURCE
from hydrogpu.solver.common import COMMON_SOURCE

CPU = torch.device("cpu")
GRID = GridDescriptor(dim=1, size=(8, 1, 1), xmin=(0.0,) * 3, xmax=(1.0,) * 3)


def _equation(name, **params):
    return make_equation(EquationConfig(name=name, **params), BoundaryConfig())


def _program(equation):
    """Build the program the Roe scheme would link for ``equation``."""
    sources = [
        program_header(GRID, equation.num_states, "superbee", 1.0),
        COMMON_SOURCE,
        SLOPE_LIMITER_SOURCE,
        ROE_SOURCE,
        *equation.device_source_fragments(),
    ]
    return build_program(sources, CPU, torch.float64)


def _cell(values):
    return torch.tensor(values, dtype=torch.float64).reshape(1, 1, 1, -1)


# ====================================================
# Conversions
# ====================================================


class TestReadStateCell:
    """Primitive tuples become conserved states."""

    def test_registry(self):
        assert set(EQUATIONS) == {"euler", "mhd", "maxwell", "srhd", "adm3d"}
        with pytest.raises(ConfigError):
            make_equation(EquationConfig.model_construct(name="bogus"), BoundaryConfig())

    def test_euler(self):
        euler = _equation("euler", gamma=1.4)
        state = euler.read_state_cell((1.0, 0.5, 0.0, 0.0, 1.0))
        np.testing.assert_allclose(state, [1.0, 0.5, 0.0, 0.0, 2.625])

    def test_mhd_adds_magnetic_energy(self):
        mhd = _equation("mhd", gamma=2.0)
        state = mhd.read_state_cell((1.0, 0.0, 0.0, 0.0, 1.0, 0.75, 1.0, 0.0))
        assert state[4] == pytest.approx(1.0 + 0.5 * (0.75 ** 2 + 1.0))
        np.testing.assert_allclose(state[5:], [0.75, 1.0, 0.0])

    def test_maxwell_identity(self):
        maxwell = _equation("maxwell")
        values = (0.1, 0.2, 0.3, 0.4, 0.5, 0.6)
        np.testing.assert_allclose(maxwell.read_state_cell(values), values)

    def test_srhd_at_rest(self):
        srhd = _equation("srhd", gamma=5.0 / 3.0)
        state = srhd.read_state_cell((1.0, 0.0, 0.0, 0.0, 1.0))
        # tau = rho h - p - rho = rho eps at rest
        np.testing.assert_allclose(state, [1.0, 0.0, 0.0, 0.0, 1.5])

    def test_srhd_rejects_superluminal(self):
        srhd = _equation("srhd")
        with pytest.raises(ValueError, match="speed of light"):
            srhd.read_state_cell((1.0, 1.0, 0.0, 0.0, 1.0))

    def test_srhd_rejects_zero_density(self):
        srhd = _equation("srhd")
        with pytest.raises(ValueError, match="density must be positive"):
            srhd.read_state_cell((0.0, 0.0, 0.0, 0.0, 1.0))

    def test_wrong_arity(self):
        euler = _equation("euler")
        with pytest.raises(ValueError, match="must return 5 values"):
            euler.read_state_cell((1.0, 0.0, 1.0))


# ====================================================
# Device primitives
# ====================================================


class TestDevicePrimitives:
    """Kernel helper functions recover the primitive variables."""

    def test_euler_pressure(self):
        euler = _equation("euler", gamma=1.4)
        program = _program(euler)
        q = _cell(euler.read_state_cell((0.7, 0.3, -0.2, 0.1, 2.5)))
        assert program.constant("pressure")(q).item() == pytest.approx(2.5)

    @pytest.mark.parametrize("velocity", [(0.0, 0.0, 0.0), (0.5, 0.2, 0.0), (-0.9, 0.0, 0.3)])
    def test_srhd_recovery(self, velocity):
        srhd = _equation("srhd", gamma=5.0 / 3.0)
        program = _program(srhd)
        q = _cell(srhd.read_state_cell((1.2, *velocity, 0.8)))
        rho, v, p, w, h = program.constant("primitives")(q)
        assert rho.item() == pytest.approx(1.2, rel=1e-8)
        assert p.item() == pytest.approx(0.8, rel=1e-8)
        np.testing.assert_allclose(v.flatten().numpy(), velocity, atol=1e-9)
        v_sq = sum(c * c for c in velocity)
        assert w.item() == pytest.approx(1.0 / math.sqrt(1.0 - v_sq), rel=1e-8)


# ====================================================
# Eigen decompositions
# ====================================================


class TestEigenBasis:
    """R diag(lambda) L reproduces the flux Jacobian."""

    @pytest.mark.parametrize("axis", [0, 1, 2])
    def test_euler_roe_basis(self, axis):
        euler = _equation("euler", gamma=1.4)
        program = _program(euler)
        q = _cell(euler.read_state_cell((1.3, 0.4, -0.3, 0.2, 0.9)))
        eigenvalues, right, left, valid = program.constant("eigen_basis")(q, q, axis)
        jacobian = program.constant("flux_jacobian")(q, axis)
        rebuilt = right @ (eigenvalues.unsqueeze(-1) * left)
        assert bool(valid.all())
        np.testing.assert_allclose(rebuilt.numpy(), jacobian.numpy(), atol=1e-6)
        assert torch.all(eigenvalues[..., 1:] >= eigenvalues[..., :-1])

    def test_maxwell_basis(self):
        maxwell = _equation("maxwell", permittivity=2.0, permeability=0.5)
        program = _program(maxwell)
        q = _cell((0.1, 0.2, 0.3, 0.4, 0.5, 0.6))
        eigenvalues, right, left, valid = program.constant("eigen_basis")(q, q, 1)
        jacobian = program.constant("flux_jacobian")(q, 1)
        rebuilt = right @ (eigenvalues.unsqueeze(-1) * left)
        np.testing.assert_allclose(rebuilt.numpy(), jacobian.numpy(), atol=1e-6)
        assert eigenvalues.abs().max().item() == pytest.approx(1.0)

    def test_numeric_basis_on_euler(self):
        euler = _equation("euler", gamma=1.4)
        program = _program(euler)
        q = _cell(euler.read_state_cell((1.0, 0.2, 0.0, 0.0, 1.0)))
        eigenvalues, right, left, valid = program.constant("numeric_eigen_basis")(q, q, 0)
        analytic = program.constant("eigen_basis")(q, q, 0)[0]
        assert bool(valid.all())
        np.testing.assert_allclose(eigenvalues.numpy(), analytic.numpy(), atol=1e-5)


# ====================================================
# ADM3D
# ====================================================


class TestADM3D:
    """Constraint channels computed from the metric derivatives."""

    def _flat(self):
        values = [1.0, 1.0, 0.0, 0.0, 1.0, 0.0, 1.0] + [0.0] * 27
        return values

    def test_state_layout(self):
        adm = _equation("adm3d")
        assert adm.num_states == 37
        assert len(adm.primitive_names) == 34
        assert adm.state_names[34:] == ("v_x", "v_y", "v_z")

    def test_flat_space_has_zero_v(self):
        adm = _equation("adm3d")
        state = adm.read_state_cell(self._flat())
        np.testing.assert_array_equal(state[34:], [0.0, 0.0, 0.0])

    def test_v_from_metric_derivative(self):
        adm = _equation("adm3d")
        values = self._flat()
        values[13] = 0.1  # D_x,yy
        state = adm.read_state_cell(values)
        np.testing.assert_allclose(state[34:], [0.1, 0.0, 0.0])

    def test_device_constraint_matches_host(self):
        adm = _equation("adm3d")
        program = _program(adm)
        values = self._flat()
        values[13] = 0.1
        values[16 + 0] = 0.05  # D_y,xx
        host = adm.read_state_cell(values)
        q = _cell(host.copy())
        q[..., 34:] = 0.0
        program.constant("constrain")(q)
        np.testing.assert_allclose(q.flatten().numpy()[34:], host[34:], atol=1e-14)
