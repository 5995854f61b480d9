"""intunewin-builder CLI.

Commands:
- discover   list deployment folders matching the configured patterns
- validate   check a deployment folder for required files
- inspect    show the metadata parsed from a deployment manifest
- build      run the full pipeline and produce a .intunewin package
- fetch-tool download the wrapping utility if it is missing
"""

from __future__ import annotations

import signal
from pathlib import Path

import typer
from rich import print as rprint
from rich.console import Console
from rich.prompt import Confirm, IntPrompt
from rich.table import Table

from intunewin_builder.cancel import CancelToken
from intunewin_builder.config import BuilderSettings, load_settings
from intunewin_builder.core import BuildContext, run_pipeline
from intunewin_builder.detect.base import discover_source_trees
from intunewin_builder.errors import ToolInvocationError
from intunewin_builder.logging import open_run_log
from intunewin_builder.metadata.extract import extract_metadata
from intunewin_builder.package.builder import format_bytes
from intunewin_builder.types import SourceTree
from intunewin_builder.validator import required_layout, validate_source_tree
from intunewin_builder.wrap.tool import ensure_tool

app = typer.Typer(add_completion=False, help="Package Autodesk deployments for Intune")
console = Console()

ConfigOption = typer.Option(None, "--config", help="YAML settings file")


def _settings(config: str | None, **overrides: object) -> BuilderSettings:
    return load_settings(Path(config) if config else None, **overrides)


def _confirmer(assume_yes: bool):
    if assume_yes:
        return lambda _question: True
    return lambda question: Confirm.ask(question, console=console, default=False)


def _select(candidates: list[SourceTree]) -> SourceTree | None:
    table = Table(title="Deployments")
    table.add_column("#", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Created")
    for i, tree in enumerate(candidates, start=1):
        table.add_row(str(i), tree.name, f"{tree.created_at:%Y-%m-%d %H:%M}")
    console.print(table)
    choice = IntPrompt.ask("Select a deployment (0 to cancel)", console=console, default=0)
    if 1 <= choice <= len(candidates):
        return candidates[choice - 1]
    return None


@app.command()
def discover(
    root: str | None = typer.Argument(None, help="Folder holding deployments"),
    config: str | None = ConfigOption,
) -> None:
    settings = _settings(config, source_root=Path(root) if root else None)
    report = discover_source_trees(settings.source_root, settings.patterns)
    if report.error:
        rprint(f"[red]Cannot read {settings.source_root}:[/red] {report.error}")
        raise typer.Exit(1)
    if not report.candidates:
        rprint("[yellow]No matching deployments.[/yellow]")
        if report.unmatched:
            rprint("Other folders: " + ", ".join(report.unmatched))
        raise typer.Exit(1)

    table = Table(title=f"Deployments in {settings.source_root}")
    table.add_column("Name", style="cyan")
    table.add_column("Created")
    table.add_column("Path")
    for tree in report.candidates:
        table.add_row(tree.name, f"{tree.created_at:%Y-%m-%d %H:%M}", str(tree.path))
    console.print(table)


@app.command()
def validate(
    path: str = typer.Argument(..., help="Deployment folder"),
    config: str | None = ConfigOption,
) -> None:
    settings = _settings(config)
    if not Path(path).is_dir():
        rprint(f"[red]Not a directory:[/red] {path}")
        raise typer.Exit(1)
    result = validate_source_tree(SourceTree.from_path(Path(path)), required_layout(settings))
    for missing in result.missing_optional:
        rprint(f"[yellow]optional missing:[/yellow] {missing}")
    for missing in result.missing_critical:
        rprint(f"[red]critical missing:[/red] {missing}")
    if not result.passed:
        raise typer.Exit(1)
    rprint("[green]Deployment structure OK.[/green]")


@app.command()
def inspect(
    path: str = typer.Argument(..., help="Deployment folder"),
    config: str | None = ConfigOption,
) -> None:
    settings = _settings(config)
    tree = Path(path)
    result = extract_metadata(tree / settings.manifest_name, fallback_name=tree.name)

    table = Table(title="Package descriptor")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field_name, value in result.descriptor.model_dump().items():
        table.add_row(field_name, str(value))
    console.print(table)
    for warning in result.warnings:
        rprint(f"[yellow]warning:[/yellow] {warning}")
    if result.degraded:
        rprint("[yellow]Product code or build number missing; detection rules need review.[/yellow]")


@app.command()
def build(
    root: str | None = typer.Argument(None, help="Folder holding deployments"),
    source: str | None = typer.Option(None, "--source", help="Deployment folder name to package"),
    path: str | None = typer.Option(None, "--path", help="Package this folder directly"),
    out: str | None = typer.Option(None, "--out", help="Output directory"),
    tool: str | None = typer.Option(None, "--tool", help="Path to IntuneWinAppUtil.exe"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to every prompt"),
    config: str | None = ConfigOption,
) -> None:
    settings = _settings(
        config,
        source_root=Path(root) if root else None,
        output_dir=Path(out) if out else None,
        tool_path=Path(tool) if tool else None,
    )
    cancel = CancelToken()
    ctx = BuildContext(
        settings=settings,
        confirm=_confirmer(yes),
        select=_select,
        cancel=cancel,
        source=source,
    )
    if path and not Path(path).is_dir():
        rprint(f"[red]Not a directory:[/red] {path}")
        raise typer.Exit(1)
    tree = SourceTree.from_path(Path(path)) if path else None

    previous = signal.signal(signal.SIGINT, lambda *_: cancel.cancel())
    try:
        with open_run_log(settings.log_dir) as log:
            result = run_pipeline(ctx, log, tree=tree)
    finally:
        signal.signal(signal.SIGINT, previous)

    table = Table(title="Build Summary")
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    if result.tree:
        table.add_row("Deployment", result.tree.name)
    if result.extraction:
        d = result.extraction.descriptor
        table.add_row("Program", d.program_name)
        table.add_row("Build number", d.build_number)
        table.add_row("Product code", d.product_code)
    if result.compression:
        c = result.compression
        ratio = "n/a" if c.ratio_percent is None else f"{c.ratio_percent:.1f}%"
        table.add_row("Archive", f"{c.output_path} ({format_bytes(c.bytes_out)}, {ratio} saved)")
        table.add_row("Strategy", c.strategy.value)
    if result.descriptor:
        table.add_row("Descriptor", str(result.descriptor.report))
    if result.artifact:
        table.add_row("Package", str(result.artifact.path))
    console.print(table)

    if result.status == "success":
        rprint("[green]Package ready.[/green]")
        return
    rprint(f"[red]Stage '{result.failed_stage}' failed:[/red] {result.error}")
    raise typer.Exit(2 if result.status == "partial" else 1)


@app.command("fetch-tool")
def fetch_tool(
    tool: str | None = typer.Option(None, "--tool", help="Where to place IntuneWinAppUtil.exe"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Reuse an existing tool without asking"),
    config: str | None = ConfigOption,
) -> None:
    settings = _settings(config, tool_path=Path(tool) if tool else None)
    with open_run_log(None) as log:
        try:
            path = ensure_tool(settings, confirm=_confirmer(yes), log=log)
        except ToolInvocationError as exc:
            rprint(f"[red]{exc}[/red]")
            raise typer.Exit(1) from exc
    rprint(f"[green]Wrapping tool:[/green] {path}")


if __name__ == "__main__":
    app()
