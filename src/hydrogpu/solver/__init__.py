"""Solver orchestration, boundary dispatch, timestep reduction and the
auxiliary gravity and divergence-cleaning solvers."""
