"""Tests for device program assembly, build diagnostics and the command queue."""

from __future__ import annotations

import numpy as np
import pytest
import torch

from hydrogpu.device.program import assemble_source, build_program, program_header
from hydrogpu.device.queue import CommandQueue, Kernel
from hydrogpu.errors import BuildError
from hydrogpu.grid import GridDescriptor

CPU = torch.device("cpu")


def _build(*sources):
    return build_program(list(sources), CPU, torch.float64)


# ====================================================
# Assembly
# ====================================================


class TestAssembly:
    """Header emission and deterministic source."""

    def test_header_defines_layout_constants(self):
        grid = GridDescriptor(dim=2, size=(16, 8, 1), xmin=(0.0, 0.0, 0.0), xmax=(1.0, 2.0, 1.0))
        header = program_header(grid, 5, "minmod", 1.0)
        assert "DIM = 2" in header
        assert "SIZE_X = 16" in header
        assert "SIZE_Y = 8" in header
        assert "NUM_STATES = 5" in header
        assert "NUM_GHOST = 2" in header
        assert "SLOPE_LIMITER = 'minmod'" in header
        assert "DX = 0.0625" in header
        assert "DY = 0.25" in header

    def test_fragments_joined_in_order(self):
        source = assemble_source(["A = 1\n", "\nB = 2"])
        assert source == "A = 1\n\nB = 2\n"

    def test_identical_sources_build_identical_programs(self):
        a = _build("A = 1", "@kernel\ndef kernel_a(x):\n    x += A")
        b = _build("A = 1", "@kernel\ndef kernel_a(x):\n    x += A")
        assert a.source == b.source
        assert a.filename == b.filename


# ====================================================
# Build
# ====================================================


class TestBuild:
    """Compilation and diagnostics."""

    def test_kernels_callable(self):
        program = _build(
            "A = 2.0",
            "@kernel\ndef scale(x):\n    x *= A",
            "def helper(x):\n    return x",
            "def _private():\n    pass",
        )
        assert program.kernel_names == ["scale"]
        assert program.constant("A") == 2.0

        buffer = torch.ones(4, dtype=torch.float64)
        kernel = program.kernel("scale").set_args(buffer)
        kernel()
        assert torch.all(buffer == 2.0)

    def test_helpers_are_not_kernels(self):
        program = _build("def helper(x):\n    return x")
        assert program.constant("helper")(3) == 3
        with pytest.raises(BuildError, match="not found"):
            program.kernel("helper")

    def test_solver_program_exposes_only_kernels(self, make_solver):
        names = make_solver(reset=False).program.kernel_names
        assert "calc_flux" in names
        assert "state_boundary_periodic" in names
        assert "find_min_timestep_reduce" in names
        for helper in ("slope_limiter", "limiter_ratio", "shift", "flux", "eigen_basis"):
            assert helper not in names

    def test_syntax_error_raises_build_error_with_log(self):
        with pytest.raises(BuildError) as excinfo:
            _build("A = 1", "def broken(:\n    pass")
        log = excinfo.value.log
        assert log.startswith("<program:")
        assert ": error:" in log

    def test_definition_error_reports_name(self):
        with pytest.raises(BuildError) as excinfo:
            _build("A = undefined_constant + 1")
        assert "NameError" in excinfo.value.log
        assert "undefined_constant" in str(excinfo.value)

    def test_missing_kernel(self):
        program = _build("A = 1")
        with pytest.raises(BuildError, match="not found"):
            program.kernel("calc_flux")

    def test_redefinition_warns(self):
        program = _build("def f(x):\n    pass", "def f(x):\n    pass")
        assert ": warning:" in program.log
        assert "redefines" in program.log
        assert "0 kernels" in program.log


# ====================================================
# Kernel handles and queue
# ====================================================


class TestQueue:
    """Argument binding and buffer commands."""

    def test_wrong_argument_count(self):
        kernel = Kernel("k", lambda a, b: None, 2)
        with pytest.raises(TypeError, match="takes 2 arguments"):
            kernel.set_args(1)

    def test_unset_argument(self):
        kernel = Kernel("k", lambda a, b: None, 2)
        kernel.set_arg(0, 1)
        with pytest.raises(RuntimeError, match="argument 1 is not set"):
            kernel()

    def test_none_is_a_valid_argument(self):
        calls = []
        kernel = Kernel("k", lambda a: calls.append(a), 1).set_args(None)
        kernel()
        assert calls == [None]

    def test_launch_counts(self):
        queue = CommandQueue(CPU)
        kernel = Kernel("k", lambda: None, 0)
        queue.enqueue_nd_range_kernel(kernel, (8,), (1,))
        queue.enqueue_nd_range_kernel(kernel, (8,), (1,))
        assert queue.launch_counts["k"] == 2

    def test_mismatched_local_size(self):
        queue = CommandQueue(CPU)
        kernel = Kernel("k", lambda: None, 0)
        with pytest.raises(ValueError, match="does not match"):
            queue.enqueue_nd_range_kernel(kernel, (8, 8), (1,))

    def test_write_and_read_buffer(self):
        queue = CommandQueue(CPU)
        buffer = torch.zeros((2, 3), dtype=torch.float64)
        host = np.arange(6, dtype=np.float64).reshape(2, 3)
        queue.enqueue_write_buffer(buffer, host)
        out = queue.enqueue_read_buffer(buffer)
        np.testing.assert_array_equal(out, host)
        out[0, 0] = 99.0
        assert buffer[0, 0].item() == 0.0
