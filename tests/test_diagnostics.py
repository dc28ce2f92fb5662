"""Tests for per-channel output and checkpoint/restart.

Test categories:
1. Channel files and monotonic save indices
2. Checkpoint save/load
3. Solver save, checkpoint and restart integration
"""

from __future__ import annotations

import numpy as np
import pytest

from hydrogpu.diagnostics.channel_writer import (
    channel_path,
    next_save_index,
    read_channel,
    write_channels,
)
from hydrogpu.diagnostics.checkpoint import load_checkpoint, save_checkpoint
from hydrogpu.errors import ConfigError
from hydrogpu.presets import sod

NAMES = ("density", "momentum_x", "momentum_y", "momentum_z", "energy_total")


def _state():
    return np.random.default_rng(7).uniform(size=(1, 1, 12, 5))


# ====================================================
# Channel output
# ====================================================


class TestChannelWriter:
    """One file per channel, never overwriting earlier saves."""

    def test_first_index_is_zero(self, tmp_path):
        assert next_save_index(tmp_path, NAMES) == 0

    def test_writes_one_file_per_channel(self, tmp_path):
        index = write_channels(tmp_path, _state(), NAMES, time=0.5, frame=3)
        assert index == 0
        for name in NAMES:
            assert channel_path(tmp_path, name, 0).exists()

    def test_indices_monotonic(self, tmp_path):
        indices = [write_channels(tmp_path, _state(), NAMES) for _ in range(3)]
        assert indices == [0, 1, 2]

    def test_channel_contents(self, tmp_path):
        state = _state()
        write_channels(tmp_path, state, NAMES)
        np.testing.assert_array_equal(read_channel(tmp_path, "energy_total", 0), state[..., 4])

    def test_name_count_mismatch(self, tmp_path):
        with pytest.raises(ValueError, match="channels"):
            write_channels(tmp_path, _state(), NAMES[:3])


# ====================================================
# Checkpoints
# ====================================================


class TestCheckpoint:
    """Full state save and load."""

    def test_round_trip(self, tmp_path):
        state = _state()
        filename = str(tmp_path / "ckpt.h5")
        save_checkpoint(filename, state, NAMES, 0.125, 42, '{"grid": {}}')
        data = load_checkpoint(filename)
        np.testing.assert_array_equal(data["state"], state)
        assert data["channel_names"] == list(NAMES)
        assert data["time"] == pytest.approx(0.125)
        assert data["frame"] == 42
        assert "grid" in data["config_json"]

    def test_config_optional(self, tmp_path):
        filename = str(tmp_path / "ckpt.h5")
        save_checkpoint(filename, _state(), NAMES, 0.0, 0)
        assert load_checkpoint(filename)["config_json"] is None


# ====================================================
# Solver integration
# ====================================================


class TestSolverPersistence:
    """Save, checkpoint and restart through the solver."""

    def _solver(self, make_solver, tmp_path, **extra):
        return make_solver(
            sod,
            grid={"dim": 1, "size": [16]},
            boundary={"methods": [["freeflow", "freeflow"]]},
            output={"directory": str(tmp_path / "out")},
            **extra,
        )

    def test_save_uses_channel_names(self, make_solver, tmp_path):
        solver = self._solver(make_solver, tmp_path)
        assert solver.save() == 0
        assert solver.save() == 1
        assert (tmp_path / "out" / "density1.h5").exists()

    def test_restart_reproduces_run(self, make_solver, tmp_path):
        solver = self._solver(make_solver, tmp_path)
        solver.update()
        solver.save_checkpoint()
        solver.update()
        expected = solver.read_state()

        restarted = self._solver(make_solver, tmp_path)
        restarted.load_checkpoint(tmp_path / "out" / "checkpoint.h5")
        assert restarted.frame == 1
        restarted.update()
        np.testing.assert_allclose(restarted.read_state(), expected, rtol=1e-14, atol=1e-15)
        assert restarted.time == pytest.approx(solver.time)

    def test_checkpoint_channel_mismatch(self, make_solver, tmp_path):
        filename = tmp_path / "other.h5"
        save_checkpoint(str(filename), np.zeros((1, 1, 16, 6)), [f"c{i}" for i in range(6)], 0.0, 0)
        solver = self._solver(make_solver, tmp_path)
        with pytest.raises(ConfigError, match="do not match"):
            solver.load_checkpoint(filename)
