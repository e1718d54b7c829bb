"""CLI entry point for polyrecon.

Usage:
    polyrecon reconstruct 0.43 0.27 0.30 cube.vg cube.obj   # One-shot reconstruction
    polyrecon run                                           # Run full pipeline
    polyrecon run-step face_selection -i '{...}'            # Run single step
    polyrecon info                                          # Show pipeline info
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from polyrecon.core.errors import ReconstructionError
from polyrecon.core.logging import setup_logging

app = typer.Typer(name="polyrecon", help="Piecewise-planar surface reconstruction")
console = Console()

DEFAULT_CONFIG = Path("configs/pipeline.yaml")


@app.command()
def reconstruct(
    data_fitting: float = typer.Argument(..., help="Weight of the data fitting term"),
    model_coverage: float = typer.Argument(..., help="Weight of the model coverage term"),
    model_complexity: float = typer.Argument(..., help="Weight of the model complexity term"),
    input_path: Path = typer.Argument(..., help="Segmented point set (.vg, .npz, .ply)"),
    output_path: Path = typer.Argument(..., help="Output mesh (.obj, .ply)"),
    solver: str = typer.Option("highs", help="MIP backend (highs, branch_and_bound)"),
    time_limit: float = typer.Option(60.0, help="Solver time budget in seconds"),
    open_boundary: bool = typer.Option(False, help="Allow open surfaces"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Reconstruct a polygonal surface from a segmented point set."""
    setup_logging("DEBUG" if verbose else "INFO")
    from polyrecon.reconstruction import ReconstructionConfig, reconstruct_file
    from polyrecon.steps.s05_face_selection.config import FaceSelectionConfig

    if not input_path.exists():
        console.print(f"[red]Input not found: {input_path}[/red]")
        raise typer.Exit(1)

    try:
        config = ReconstructionConfig.from_weights(
            data_fitting, model_coverage, model_complexity,
            selection=FaceSelectionConfig(solver=solver, time_limit=time_limit),
            allow_open_boundary=open_boundary,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)

    try:
        mesh = reconstruct_file(input_path, output_path, config)
    except ReconstructionError as e:
        console.print(f"[red]Reconstruction failed ({e.kind}):[/red] {e}")
        raise typer.Exit(1)

    console.print(
        f"[green]Done.[/green] {mesh.num_faces} faces, {mesh.num_vertices} vertices "
        f"-> {output_path}"
    )


@app.command()
def run(config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path")) -> None:
    """Run the full pipeline."""
    setup_logging()
    from polyrecon.core.pipeline_runner import run_pipeline

    try:
        run_pipeline(config)
    except ReconstructionError as e:
        console.print(f"[red]Reconstruction failed ({e.kind}):[/red] {e}")
        raise typer.Exit(1)


@app.command()
def run_step(
    step_name: str = typer.Argument(..., help="Step name (e.g. face_selection)"),
    config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path"),
    input_json: str = typer.Option(None, "--input", "-i", help="Input as JSON string"),
) -> None:
    """Run a single pipeline step."""
    import json

    setup_logging()
    from polyrecon.core.pipeline_runner import import_step_class, load_pipeline_config, load_step_config

    pipeline_cfg = load_pipeline_config(config)
    entry = next((s for s in pipeline_cfg.steps if s.name == step_name), None)
    if entry is None:
        console.print(f"[red]Step '{step_name}' not found in pipeline config[/red]")
        raise typer.Exit(1)

    step_cls = import_step_class(entry.module)
    step_config = load_step_config(Path(entry.config_file), step_cls.config_type)
    step_instance = step_cls(config=step_config, data_root=pipeline_cfg.data_root)

    input_data = dict(entry.inputs)
    if input_json:
        input_data.update(json.loads(input_json))
    else:
        schema = step_cls.input_type.model_json_schema()
        missing = [k for k in schema.get("required", []) if k not in input_data]
        if missing:
            console.print(f"[yellow]Step '{step_name}' requires input fields: {missing}[/yellow]")
            console.print("[yellow]Use --input/-i with JSON string, e.g.:[/yellow]")
            console.print(f'  polyrecon run-step {step_name} -i \'{{"field": "value"}}\'')
            raise typer.Exit(1)

    console.print(f"[green]Running step: {step_name}[/green]")
    step_input = step_cls.input_type(**input_data)
    try:
        output = step_instance.execute(step_input)
    except ReconstructionError as e:
        console.print(f"[red]Step failed ({e.kind}):[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Done. Output:[/green] {output.model_dump_json(indent=2)}")


@app.command()
def info(config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path")) -> None:
    """Show pipeline steps and their status."""
    from polyrecon.core.pipeline_runner import load_pipeline_config

    pipeline_cfg = load_pipeline_config(config)
    table = Table(title=f"Pipeline: {pipeline_cfg.project_name}")
    table.add_column("#", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Module", style="green")
    table.add_column("Enabled", style="yellow")
    table.add_column("Depends On", style="dim")

    for i, step in enumerate(pipeline_cfg.steps, 1):
        table.add_row(
            str(i),
            step.name,
            step.module,
            "Y" if step.enabled else "N",
            ", ".join(step.depends_on) if step.depends_on else "-",
        )
    console.print(table)


if __name__ == "__main__":
    app()
