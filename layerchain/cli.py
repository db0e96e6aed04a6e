"""Thin CLI wrapper for layerchain.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from layerchain import __version__
from layerchain.config import get_settings, print_settings_json

app = typer.Typer(
    name="layerchain",
    help="Layerchain - build chained bootstraps and content-addressed blobs from image layers",
    no_args_is_help=True,
)
console = Console()


def print_json_output(text: str) -> None:
    """Print JSON without Rich markup or line wrapping."""
    console.print(text, soft_wrap=True, markup=False, highlight=False)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"layerchain version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Layerchain - build chained bootstraps and content-addressed blobs from image layers."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        timeout_display = (
            str(settings.builder_timeout) if settings.builder_timeout else "(none)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Builder:[/bold]")
        console.print(f"  Builder path:        {settings.builder_path}")
        console.print(f"  Builder timeout:     {timeout_display}")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Target directory:    {settings.target_dir}")
        console.print(f"  Chunk dictionary:    {settings.chunk_dict or '(none)'}")
        console.print()
        console.print("[bold]Image:[/bold]")
        console.print(f"  Image version:       {settings.image_version}")
        console.print(f"  Whiteout spec:       {settings.whiteout_spec}")
        console.print(f"  Aligned chunk:       {settings.aligned_chunk}")
        console.print(f"  Prefetch patterns:   {settings.prefetch_patterns!r}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")


@app.command()
def build(
    plan_path: Annotated[
        Path | None,
        typer.Argument(help="Build plan file (YAML or JSON)"),
    ] = None,
    layers: Annotated[
        list[Path] | None,
        typer.Option("--layer", "-l", help="Layer directory, bottom first (can be repeated)"),
    ] = None,
    target_dir: Annotated[
        Path | None,
        typer.Option("--target-dir", "-o", help="Output directory"),
    ] = None,
    builder_path: Annotated[
        Path | None,
        typer.Option("--builder", "-b", help="Path to the builder executable"),
    ] = None,
    parent_bootstrap: Annotated[
        Path | None,
        typer.Option("--parent-bootstrap", help="Bootstrap the bottom layer builds on"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build bootstraps and blobs for an image's layers.

    Layers come from a plan file or from repeated --layer options, never both.
    """
    from layerchain.builds.runner import Builder
    from layerchain.builds.service import LayerSpec, build_image
    from layerchain.builds.workflow import (
        LayerBuildError,
        WorkflowOption,
        WorkflowSetupError,
    )
    from layerchain.plan import PlanError, load_plan

    if (plan_path is None) == (not layers):
        console.print("[red]Error: Provide either a plan file or --layer options[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    if target_dir is not None:
        settings.target_dir = target_dir
    if builder_path is not None:
        settings.builder_path = builder_path

    if plan_path is not None:
        try:
            plan = load_plan(plan_path)
        except PlanError as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            raise typer.Exit(code=1) from None
        specs = plan.to_layer_specs(
            base_dir=plan_path.parent,
            whiteout_spec=settings.whiteout_spec,
            aligned_chunk=settings.aligned_chunk,
        )
        if parent_bootstrap is None and plan.parent_bootstrap:
            parent_bootstrap = Path(plan.parent_bootstrap)
    else:
        specs = [
            LayerSpec(
                source_dir=layer,
                whiteout_spec=settings.whiteout_spec,
                aligned_chunk=settings.aligned_chunk,
            )
            for layer in layers or []
        ]

    option = WorkflowOption.from_settings(settings)
    builder = Builder(
        option.builder_path,
        timeout=settings.builder_timeout,
        log_path=settings.target_dir / "build.log",
    )

    if not json_output:
        console.print(f"[blue]Building {len(specs)} layer(s)...[/blue]")

    try:
        result = build_image(
            specs,
            option,
            builder=builder,
            parent_bootstrap=parent_bootstrap,
        )
    except (WorkflowSetupError, LayerBuildError) as e:
        console.print(f"[red]Error ({e.code}): {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        print_json_output(result.model_dump_json(indent=2))
        return

    console.print()
    console.print("[bold]Layer Results:[/bold]")
    for layer in result.layers:
        if layer.blob_path:
            console.print(f"  [green]✓ {layer.name}[/green] -> {Path(layer.blob_path).name}")
        else:
            console.print(f"  [yellow]- {layer.name}[/yellow] ({layer.status.value})")
    console.print()
    console.print(f"  Blobs published:  {len(result.blobs)}")
    console.print(f"  Bootstrap:        {result.bootstrap_path}")
    console.print(f"  Builder version:  {result.builder_version or 'unknown'}")
    if result.manifest_path:
        console.print(f"  Manifest:         {result.manifest_path}")


@app.command()
def blobs(
    blobs_dir: Annotated[
        Path | None,
        typer.Argument(help="Blob directory (defaults to <target_dir>/blobs)"),
    ] = None,
    verify: Annotated[
        bool,
        typer.Option("--verify", help="Recompute digests and compare to names"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List published blobs."""
    from layerchain.builds.artifacts import discover_blobs, verify_blob
    from layerchain.builds.workflow import BLOBS_DIR_NAME

    if blobs_dir is None:
        blobs_dir = get_settings().target_dir / BLOBS_DIR_NAME

    found = discover_blobs(blobs_dir)
    mismatched = [b.blob_id for b in found if not verify_blob(b)] if verify else []

    if json_output:
        output = [
            {**asdict(b), **({"verified": b.blob_id not in mismatched} if verify else {})}
            for b in found
        ]
        print_json_output(json.dumps(output, indent=2))
    elif not found:
        console.print("[yellow]No blobs found[/yellow]")
    else:
        console.print(f"[bold]Found {len(found)} blob(s):[/bold]")
        for b in found:
            marker = ""
            if verify:
                marker = (
                    " [red]MISMATCH[/red]"
                    if b.blob_id in mismatched
                    else " [green]ok[/green]"
                )
            console.print(f"  {b.blob_id}  {b.size_bytes} bytes{marker}")

    if mismatched:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
