"""QReport export engine CLI."""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from qreport.config import settings
from qreport.models import (
    CheckUpAggregate,
    CompressionPolicy,
    Err,
    ExportFormat,
    ExportManifest,
    ExportOptions,
    NamingStrategy,
    PhotoQuality,
    format_file_size,
)
from qreport.pipeline import ExportOrchestrator, StorageBudgeter

app = typer.Typer(
    name="qreport",
    help="Export check-up reports as Word document, text summary and photo folder",
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _load_aggregate(path: Path) -> CheckUpAggregate:
    """Read a check-up aggregate from JSON, exiting with code 1 on failure."""
    try:
        return CheckUpAggregate.model_validate_json(path.read_text(encoding="utf-8"))
    except OSError as e:
        console.print(f"[red]Cannot read {path}:[/red] {e}")
        raise typer.Exit(code=1)
    except ValidationError as e:
        console.print(f"[red]Invalid check-up file {path}:[/red]")
        console.print(str(e))
        raise typer.Exit(code=1)


def _print_manifest(manifest: ExportManifest) -> None:
    table = Table(title="Exported files")
    table.add_column("File")
    table.add_column("Format")
    table.add_column("Size", justify="right")
    for entry in manifest.files:
        table.add_row(entry.file_name, entry.format.value, format_file_size(entry.size_bytes))
    console.print(table)

    for warning in manifest.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning.message} ({warning.resource})")

    stats = manifest.statistics
    console.print(
        f"[dim]{len(manifest.files)} files, {format_file_size(manifest.total_size_bytes)}, "
        f"{stats.photos_exported} photos exported in {stats.processing_time_formatted}[/dim]"
    )
    if manifest.export_directory:
        console.print(f"[bold green]Output:[/bold green] {manifest.export_directory}")


@app.command()
def export(
    aggregate_json: Path = typer.Argument(..., help="Check-up aggregate as JSON"),
    output: Path = typer.Option(..., "--output", "-o", help="Output directory"),
    formats: Optional[List[ExportFormat]] = typer.Option(
        None, "--format", "-f", help="Output format, repeatable (default: all)"
    ),
    no_photos: bool = typer.Option(False, "--no-photos", help="Leave photos out of every output, FOTO/ included"),
    no_notes: bool = typer.Option(False, "--no-notes", help="Leave item notes out"),
    quality: int = typer.Option(settings.photo_quality, help="JPEG quality of embedded photos (1-100)"),
    max_width: int = typer.Option(settings.photo_max_width, help="Maximum width of embedded photos"),
    naming: NamingStrategy = typer.Option(NamingStrategy.STRUCTURED, help="Photo file naming"),
    photos_per_row: int = typer.Option(settings.photos_per_row, help="Photo grid columns (1-4)"),
    folder_quality: PhotoQuality = typer.Option(PhotoQuality.ORIGINAL, help="Photo folder quality"),
    watermark: Optional[str] = typer.Option(None, help="Watermark text for embedded photos"),
    timestamped_dir: bool = typer.Option(False, "--timestamped-dir", help="Write into Export_Checkup_<timestamp>/"),
    photo_index: bool = typer.Option(False, "--photo-index", help="Write a photo index beside FOTO/"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Export a check-up."""
    _configure_logging(verbose)
    aggregate = _load_aggregate(aggregate_json)

    try:
        compression = CompressionPolicy(
            quality=quality,
            max_width=max_width,
            watermark=watermark is not None,
            watermark_text=watermark or "QReport",
        )
        options = ExportOptions(
            formats=frozenset(formats) if formats else frozenset(ExportFormat),
            include_photos=not no_photos,
            include_notes=not no_notes,
            compression=compression,
            naming_strategy=naming,
            photos_per_row=photos_per_row,
            photo_folder_quality=folder_quality,
            generate_photo_index=photo_index,
            create_timestamped_directory=timestamped_dir,
        )
    except ValidationError as e:
        console.print("[red]Invalid options:[/red]")
        console.print(str(e))
        raise typer.Exit(code=1)

    console.print(f"[bold blue]Exporting:[/bold blue] {aggregate.header.island.island_type} - {aggregate.header.client.company_name}")
    console.print(f"[dim]Output directory: {output}[/dim]")

    result = ExportOrchestrator().export(aggregate, options, output)
    if isinstance(result, Err):
        console.print(f"[red]Export failed:[/red] {result.error}")
        raise typer.Exit(code=1)

    _print_manifest(result.value)


@app.command()
def estimate(
    aggregate_json: Path = typer.Argument(..., help="Check-up aggregate as JSON"),
    output: Path = typer.Option(..., "--output", "-o", help="Output directory"),
    no_photos: bool = typer.Option(False, "--no-photos", help="Leave photos out of the estimate"),
) -> None:
    """Estimate the output size and check free space."""
    _configure_logging(False)
    aggregate = _load_aggregate(aggregate_json)
    options = ExportOptions(include_photos=not no_photos)

    budgeter = StorageBudgeter()
    size = budgeter.estimate(aggregate, options)
    console.print(f"[bold blue]Estimated size:[/bold blue] {format_file_size(size)}")

    result = budgeter.check_available(output, size)
    if isinstance(result, Err):
        console.print(f"[red]Insufficient storage:[/red] {result.error.message}")
        raise typer.Exit(code=1)

    console.print(f"[dim]Free space: {format_file_size(result.value)}[/dim]")
    console.print("[green]Enough space for the export[/green]")


if __name__ == "__main__":
    app()
