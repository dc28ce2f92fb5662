"""Command-line interface for HydroGPU.

Usage:
    hydrogpu run config.json --frames=100
    hydrogpu sod --cells=200 --time=0.2
    hydrogpu devices
"""

from __future__ import annotations

import logging
import sys

import click


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """HydroGPU - finite-volume conservation-law solver."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _echo_summary(summary: dict) -> None:
    click.echo("\n--- Simulation Summary ---")
    for key, val in summary.items():
        if isinstance(val, float):
            click.echo(f"  {key}: {val:.6e}")
        else:
            click.echo(f"  {key}: {val}")


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
@click.option("--frames", type=int, default=100, show_default=True, help="Number of updates to run.")
@click.option("--output", "-o", type=str, default=None, help="Override the output directory.")
@click.option("--restart", type=click.Path(exists=True), default=None, help="Restart from checkpoint.")
@click.option(
    "--device",
    type=click.Choice(["auto", "cuda", "mps", "cpu"], case_sensitive=False),
    default=None,
    help="Compute device. Overrides config file setting.",
)
def run(config_file: str, frames: int, output: str | None, restart: str | None, device: str | None) -> None:
    """Run a simulation from a configuration file."""
    from hydrogpu.config import SolverConfig
    from hydrogpu.errors import HydroGPUError
    from hydrogpu.solver.solver import Solver

    click.echo(f"Loading config from {config_file}")
    try:
        config = SolverConfig.from_file(config_file)
    except (OSError, ValueError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    if device:
        config.device.device = device
    if output:
        config.output.directory = output

    try:
        solver = Solver(config)
        solver.init()
        if restart:
            click.echo(f"Restarting from checkpoint: {restart}")
            solver.load_checkpoint(restart)
        else:
            solver.reset_state()
        click.echo(repr(solver))
        summary = solver.run(frames, save_interval=config.output.save_interval)
        solver.save()
        solver.save_checkpoint()
    except HydroGPUError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    _echo_summary(summary)


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
def verify(config_file: str) -> None:
    """Verify a configuration file is valid."""
    from hydrogpu.config import SolverConfig

    try:
        config = SolverConfig.from_file(config_file)
    except (OSError, ValueError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    click.echo("Configuration is valid:")
    click.echo(f"  Grid: dim={config.grid.dim} size={config.grid.size}")
    click.echo(f"  Equation: {config.equation.name}")
    click.echo(f"  Scheme: {config.scheme.name} ({config.scheme.slope_limiter}, {config.scheme.integrator})")
    click.echo(f"  Device: {config.device.device} ({config.device.precision})")


@cli.command()
def devices() -> None:
    """Show available compute devices."""
    from hydrogpu.device.device import get_device_manager

    info = get_device_manager().device_info()
    click.echo(f"torch {info['torch_version']}")
    click.echo(f"  cuda - {'available' if info['cuda'] else 'not available'}")
    for name in info.get("cuda_devices", []):
        click.echo(f"         {name}")
    click.echo(f"  mps  - {'available' if info['mps'] else 'not available'}")
    click.echo(f"  cpu  - available ({info['cpu_threads']} threads)")


@cli.command()
def presets() -> None:
    """List the built-in configuration presets."""
    from hydrogpu.presets import list_presets

    for preset in list_presets():
        click.echo(f"  {preset['name']:<16} {preset['equation']:<8} {preset['description']}")


@cli.command()
@click.option("--cells", type=int, default=100, show_default=True, help="Cells including ghosts.")
@click.option("--time", "t_end", type=float, default=0.2, show_default=True, help="Final time.")
@click.option(
    "--scheme", type=click.Choice(["roe", "burgers"]), default="roe", show_default=True,
)
@click.option("--integrator", type=str, default="ForwardEuler", show_default=True)
@click.option("--device", type=str, default="cpu", show_default=True)
def sod(cells: int, t_end: float, scheme: str, integrator: str, device: str) -> None:
    """Run the Sod shock tube and report L1 errors against the exact solution."""
    from hydrogpu.errors import HydroGPUError
    from hydrogpu.verification.shock_tubes import run_sod

    try:
        result = run_sod(cells=cells, t_end=t_end, scheme=scheme, integrator=integrator, device=device)
    except (HydroGPUError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    _echo_summary({"time": result.time, "frames": result.frames, **{
        f"L1_{key}": val for key, val in result.errors.items()
    }})
    for name, ok in result.checks.items():
        click.echo(f"  {name}: {'PASS' if ok else 'FAIL'}")
    if not all(result.checks.values()):
        sys.exit(1)


if __name__ == "__main__":
    cli()
