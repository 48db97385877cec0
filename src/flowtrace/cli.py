"""
Command-line interface for flowtrace.

Provides commands for inspecting data sets, sampling the interpolated
field and tracing streamlines.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="flowtrace",
    help="Velocity probing and streamline tracing over meshes with cached cell location"
)
console = Console()


def _configure_logging(verbose: bool, timing: bool) -> None:
    if verbose or timing:
        logging.basicConfig(
            level=logging.INFO if not verbose else logging.DEBUG,
            format='%(name)s - %(message)s'
        )


def _parse_seed(text: str) -> tuple[float, float, float]:
    parts = [p for p in text.replace(" ", "").split(",") if p]
    if len(parts) != 3:
        raise typer.BadParameter(f"Seed must be 'x,y,z', got '{text}'")
    try:
        return tuple(float(p) for p in parts)
    except ValueError:
        raise typer.BadParameter(f"Seed must be 'x,y,z', got '{text}'") from None


def _format_point(p) -> str:
    return "(" + ", ".join(f"{c:.4g}" for c in p) + ")"


@app.command()
def info(
    mesh_path: Path = typer.Argument(..., help="Data set file (NPZ, OBJ, PLY, STL, OFF)"),
    vectors_path: Optional[Path] = typer.Option(None, "--vectors", help="Nodal vectors (.npy) for surface meshes"),
):
    """
    Show information about a data set.
    """
    from flowtrace.core.io import load_dataset

    dataset = load_dataset(mesh_path, vectors_path=vectors_path)

    table = Table(title=f"Data Set Info: {mesh_path.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Name", dataset.name)
    table.add_row("Type", type(dataset).__name__)
    table.add_row("Points", str(dataset.num_points))
    table.add_row("Cells", str(dataset.num_cells))
    table.add_row("Cell Type", dataset.cell_type.name.lower())

    min_b, max_b = dataset.bounds
    table.add_row("Bounding Box Min", _format_point(min_b))
    table.add_row("Bounding Box Max", _format_point(max_b))
    table.add_row("Diagonal", f"{dataset.length:.4f}")
    table.add_row("Tolerance", f"{dataset.tolerance:.3g}")
    table.add_row("Vector Arrays", ", ".join(dataset.vector_names) or "none")

    console.print(table)


@app.command()
def sample(
    mesh_path: Path = typer.Argument(..., help="Data set file"),
    x: float = typer.Argument(..., help="X coordinate"),
    y: float = typer.Argument(..., help="Y coordinate"),
    z: float = typer.Argument(0.0, help="Z coordinate"),
    vectors_path: Optional[Path] = typer.Option(None, "--vectors", help="Nodal vectors (.npy) for surface meshes"),
    array: Optional[str] = typer.Option(None, "-a", "--array", help="Vector array to interpolate"),
    normalize: bool = typer.Option(False, "--normalize", help="Return the unit vector"),
):
    """
    Interpolate the vector field at one point.
    """
    from flowtrace.core.io import load_dataset
    from flowtrace.errors import OutsideDomainError
    from flowtrace.evaluator import CachingVelocityEvaluator

    dataset = load_dataset(mesh_path, vectors_path=vectors_path)
    evaluator = CachingVelocityEvaluator([dataset], normalize_vector=normalize, vectors=array)

    try:
        vector = evaluator.evaluate((x, y, z))
    except OutsideDomainError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[bold]Point:[/bold] {_format_point((x, y, z))}")
    console.print(f"[bold]Cell:[/bold] {evaluator.last_cell_id}")
    console.print(f"[bold]Weights:[/bold] {_format_point(evaluator.last_weights)}")
    console.print(f"[bold green]Vector:[/bold green] {_format_point(vector)}")


@app.command()
def trace(
    mesh_path: Path = typer.Argument(..., help="Data set file"),
    seeds: List[str] = typer.Option(..., "-s", "--seed", help="Seed point 'x,y,z' (repeatable)"),
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="Config YAML"),
    vectors_path: Optional[Path] = typer.Option(None, "--vectors", help="Nodal vectors (.npy) for surface meshes"),
    integrator: Optional[str] = typer.Option(None, "-i", "--integrator", help="euler, rk2 or rk4"),
    step_size: Optional[float] = typer.Option(None, "--step", help="Integration step size"),
    max_steps: Optional[int] = typer.Option(None, "--max-steps", help="Maximum steps per direction"),
    direction: Optional[str] = typer.Option(None, "-d", "--direction", help="forward, backward or both"),
    output_path: Optional[Path] = typer.Option(None, "-o", "--output", help="Output streamlines (.npz)"),
    timing: bool = typer.Option(False, "--timing", help="Show detailed timing information"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Enable verbose logging"),
):
    """
    Trace streamlines from seed points.
    """
    from flowtrace.config import FlowTraceConfig
    from flowtrace.core.io import load_dataset, save_streamlines
    from flowtrace.evaluator import CachingVelocityEvaluator
    from flowtrace.tracing import StreamTracer
    from flowtrace.utils.timing import get_run_timings, reset_run_timings, timed_stage

    _configure_logging(verbose, timing)
    reset_run_timings()

    config = FlowTraceConfig.load(config_path) if config_path else FlowTraceConfig()
    overrides = {
        "tracer.integrator": integrator,
        "tracer.step_size": step_size,
        "tracer.max_steps": max_steps,
        "tracer.direction": direction,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        try:
            config = config.with_overrides(**overrides)
        except ValueError as e:
            raise typer.BadParameter(str(e)) from None

    seed_points = [_parse_seed(s) for s in seeds]

    console.print(f"[bold blue]Loading data set:[/bold blue] {mesh_path}")
    with timed_stage("load"):
        dataset = load_dataset(mesh_path, vectors_path=vectors_path, config=config.dataset)
        dataset.build_locator()

    evaluator = CachingVelocityEvaluator.from_config(config.evaluator, [dataset])
    tracer = StreamTracer(evaluator, config.tracer)

    with timed_stage("trace"):
        lines = tracer.trace_many(seed_points)

    table = Table(title="Streamlines")
    table.add_column("Seed", style="cyan")
    table.add_column("Points", justify="right")
    table.add_column("Length", justify="right")
    table.add_column("Termination")

    for seed, line in zip(seed_points, lines):
        reason = line.termination.value
        if line.backward_termination is not None:
            reason = f"{line.backward_termination.value} / {reason}"
        table.add_row(_format_point(seed), str(line.num_points), f"{line.length:.4f}", reason)

    console.print(table)
    progress = tracer.last_progress
    rate = "n/a" if progress.hit_rate is None else f"{100 * progress.hit_rate:.1f}%"
    console.print(f"Points: {progress.points}, cache hits: {progress.cache_hits}, "
                  f"misses: {progress.cache_misses} (hit rate {rate})")

    if timing:
        timings = get_run_timings()
        console.print(f"\n[bold cyan]Timing Summary[/bold cyan]")
        for stage in timings.stages:
            status = "[green]OK[/green]" if stage.ok else "[red]FAIL[/red]"
            console.print(f"  {stage.stage}: {stage.seconds:.3f}s {status}")
        console.print(f"  [bold]Total: {timings.elapsed():.3f}s[/bold]")

    if output_path:
        save_streamlines(lines, output_path)
        console.print(f"[green]Saved to:[/green] {output_path}")


@app.command()
def init_config(
    output_path: Path = typer.Option("flowtrace.yaml", "-o", "--output", help="Output config file"),
    name: str = typer.Option("flowtrace", "-n", "--name", help="Configuration name"),
):
    """
    Generate a default configuration file.
    """
    from flowtrace.config import create_default_config

    config = create_default_config()
    config.name = name
    config.save(output_path)

    console.print(f"[green]Config saved to:[/green] {output_path}")


if __name__ == "__main__":
    app()
