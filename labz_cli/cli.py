"""Typer-based CLI for labz contract analysis."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__, config_manager
from .analyzer import analyze as analyze_availability
from .catalog import DEFAULT_CATALOG, Zone
from .generator import generate_contract, generate_test
from .locator import CodeLocator
from .models import CodeRef
from .parser import ContractParser
from .project import (
    ProjectState,
    add_import,
    add_state_variable,
    add_to_constructor_body,
    add_to_function_body,
    empty_project,
    new_block,
    project_from_contract,
    project_from_dict,
    project_to_dict,
)
from .validator import validate_drop, validate_project

app = typer.Typer(
    help="🔐 labz — structural analysis and block composition for FHEVM contracts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

_LINES_RE = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+))?\s*$")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"labz CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """labz CLI: parse contracts, check block availability and locate code."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_project(project_file: Path) -> ProjectState:
    try:
        data = json.loads(project_file.read_text(encoding="utf-8"))
        return project_from_dict(data)
    except (json.JSONDecodeError, ValueError, KeyError, TypeError) as exc:
        raise typer.BadParameter(f"'{project_file}' is not a valid project file: {exc}")


def _write_or_echo(text: str, output: Optional[Path]) -> None:
    if output is None:
        typer.echo(text, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    console.print(f"[green]✓[/green] Wrote {output}")


def _dump_project(state: ProjectState) -> str:
    return json.dumps(project_to_dict(state), indent=2) + "\n"


def _parse_lines(value: str) -> Tuple[int, int]:
    match = _LINES_RE.match(value)
    if not match:
        raise typer.BadParameter(f"Expected a line range like '12-18', got '{value}'.")
    start = int(match.group(1))
    end = int(match.group(2) or start)
    if start < 1 or end < start:
        raise typer.BadParameter(f"Invalid line range '{value}'.")
    return start, end


@app.command("parse")
def parse(
    contract_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Solidity source file."),
    as_json: bool = typer.Option(False, "--json", help="Print the parsed model as JSON."),
):
    """Show the structure of a Solidity contract."""
    parser = ContractParser(config_manager.get_operation_namespaces())
    parsed = parser.parse_file(contract_file)
    if parsed is None:
        console.print(f"[red]✗[/red] No contract could be parsed from {contract_file}")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps(asdict(parsed), indent=2))
        return

    header = parsed.name
    if parsed.inherits:
        header += f" is {', '.join(parsed.inherits)}"
    console.print(Panel.fit(f"[bold cyan]{header}[/bold cyan]", title="Contract"))

    if parsed.imports:
        table = Table(title="Imports", show_header=True)
        table.add_column("Line", justify="right", style="dim")
        table.add_column("Path", style="cyan")
        table.add_column("Items")
        for imp in parsed.imports:
            table.add_row(str(imp.line), imp.path, ", ".join(imp.items))
        console.print(table)

    if parsed.state_variables:
        table = Table(title="State Variables", show_header=True)
        table.add_column("Line", justify="right", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Type")
        table.add_column("Visibility")
        for var in parsed.state_variables:
            table.add_row(str(var.line), var.name, var.type, var.visibility)
        console.print(table)

    callables = list(parsed.functions)
    if parsed.constructor is not None:
        callables.insert(0, parsed.constructor)
    if callables:
        table = Table(title="Functions", show_header=True)
        table.add_column("Lines", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Visibility")
        table.add_column("Operations")
        for fn in callables:
            ops = ", ".join(f"{op.name}@{op.line}" for op in fn.fhe_operations) or "-"
            table.add_row(f"{fn.start_line}-{fn.end_line}", fn.name, fn.visibility, ops)
        console.print(table)


@app.command("analyze")
def analyze(
    project_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Project JSON file."),
    function_id: Optional[str] = typer.Option(None, "--function", "-f", help="Id of the function being edited."),
    show_all: bool = typer.Option(False, "--all", help="Include unavailable blocks with reasons."),
):
    """Report which catalog blocks can be added to a project."""
    state = _load_project(project_file)
    result = analyze_availability(state, function_id)

    table = Table(title=f"Block availability for '{state.name}'", show_header=True)
    table.add_column("Block", style="cyan")
    table.add_column("Category")
    table.add_column("Status")
    if show_all:
        table.add_column("Reason", style="dim")

    for block in DEFAULT_CATALOG:
        entry = result.blocks[block.id]
        if not entry.available and not show_all:
            continue
        status = "[green]available[/green]" if entry.available else "[red]blocked[/red]"
        row = [block.id, block.category, status]
        if show_all:
            row.append(entry.reason or "")
        table.add_row(*row)
    console.print(table)

    if result.suggested:
        console.print("\n[bold yellow]Suggested next blocks[/bold yellow]")
        for suggestion in result.suggested:
            console.print(f"  • {suggestion.block_id} — {suggestion.reason}")

    stats = result.stats
    console.print(f"\n[dim]{stats.available}/{stats.total} available, {stats.suggested} suggested[/dim]")


@app.command("validate")
def validate(
    project_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Project JSON file."),
):
    """Check a project for missing imports, bad configs and missing ACL calls."""
    state = _load_project(project_file)
    result = validate_project(state)
    for error in result.errors:
        console.print(f"[red]✗[/red] {error}")
    for warning in result.warnings:
        console.print(f"[yellow]![/yellow] {warning}")
    if not result.valid:
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Project '{state.name}' is valid.")


@app.command("add-block")
def add_block(
    project_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Project JSON file."),
    block_id: str = typer.Argument(..., help="Catalog block id, e.g. op-add."),
    function_id: Optional[str] = typer.Option(None, "--function", "-f", help="Target function id for body blocks."),
    position: Optional[int] = typer.Option(None, "--position", "-p", min=0, help="Insertion index (default: end)."),
):
    """Validate and insert a catalog block into a project file."""
    state = _load_project(project_file)
    block = DEFAULT_CATALOG.get(block_id)
    if block is None:
        raise typer.BadParameter(f"Unknown block '{block_id}'. Run 'labz blocks' to list them.")

    result = validate_drop(block_id, block.zone, position, state, function_id)
    for warning in result.warnings:
        console.print(f"[yellow]![/yellow] {warning}")
    if not result.valid:
        for error in result.errors:
            console.print(f"[red]✗[/red] {error}")
        raise typer.Exit(1)

    placed = new_block(block_id)
    if block.zone is Zone.IMPORTS:
        state = add_import(state, placed, result.position)
    elif block.zone is Zone.STATE:
        state = add_state_variable(state, placed, result.position)
    elif block.zone is Zone.CONSTRUCTOR:
        state = add_to_constructor_body(state, placed, result.position)
    elif block.zone is Zone.FUNCTION_BODY:
        state = add_to_function_body(state, function_id, placed, result.position)
    else:
        console.print(f"[red]✗[/red] Blocks in zone '{block.zone.value}' cannot be added from the CLI.")
        raise typer.Exit(1)

    project_file.write_text(_dump_project(state), encoding="utf-8")
    console.print(f"[green]✓[/green] Added {block_id} to '{state.name}' (revision {state.revision}).")
    if result.auto_add:
        console.print(f"[dim]Consider also adding: {', '.join(result.auto_add)}[/dim]")


@app.command("locate")
def locate(
    source_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Contract or test source."),
    lines: Optional[str] = typer.Option(None, "--lines", help="Explicit range, e.g. 12-18."),
    method: Optional[str] = typer.Option(None, "--method", "-m", help="Function or scenario name."),
    fhe_op: Optional[str] = typer.Option(None, "--op", help="Operation name, e.g. add or FHE.add."),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Regular expression."),
    block: Optional[str] = typer.Option(None, "--block", help="Scenario title to search within."),
    call: Optional[str] = typer.Option(None, "--call", help="Call to find inside --block."),
    namespace: Optional[str] = typer.Option(None, "--namespace", help="Qualifier for bare operation names."),
):
    """Resolve a symbolic code reference to a line range."""
    if not any((lines, method, fhe_op, pattern, block and call)):
        raise typer.BadParameter("Give --lines, --method, --op, --pattern or --block with --call.")

    ref = CodeRef(
        lines=_parse_lines(lines) if lines else None,
        method=method,
        fhe_op=fhe_op,
        pattern=pattern,
        block=block,
        call=call,
    )
    source = source_file.read_text(encoding="utf-8", errors="replace")
    locator = CodeLocator(source, namespace or config_manager.get_locator_namespace())
    resolved = locator.resolve(ref)
    if resolved is None:
        console.print(f"[red]✗[/red] Reference not found in {source_file}")
        raise typer.Exit(1)

    start, end = resolved.lines
    label = f" ({resolved.method})" if resolved.method else ""
    console.print(f"[bold cyan]Lines {start}-{end}[/bold cyan]{label}")
    source_lines = source.split("\n")
    for line_no in range(start, min(end, len(source_lines)) + 1):
        console.print(f"{line_no:>5}  {source_lines[line_no - 1]}", markup=False, highlight=False)


@app.command("blocks")
def blocks(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only blocks of this category."),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by keywords."),
):
    """List the block catalog."""
    found = DEFAULT_CATALOG.search(search) if search else list(DEFAULT_CATALOG)
    if category:
        if category not in DEFAULT_CATALOG.categories():
            raise typer.BadParameter(
                f"Unknown category '{category}'. Choose from: {', '.join(DEFAULT_CATALOG.categories())}"
            )
        found = [b for b in found if b.category == category]

    if not found:
        typer.echo("No blocks match.")
        raise typer.Exit(code=0)

    table = Table(title=f"Blocks ({len(found)})", show_header=True)
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Zone", style="dim")
    for block in found:
        table.add_row(block.id, block.name, block.category, block.zone.value)
    console.print(table)


@app.command("new")
def new(
    name: Optional[str] = typer.Argument(None, help="Contract name (default from config)."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Project JSON file to write."),
):
    """Create an empty project with the FHE library and network config imported."""
    state = empty_project(name or config_manager.get_default_project_name())
    _write_or_echo(_dump_project(state), output)


@app.command("import-contract")
def import_contract(
    contract_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Solidity source file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Project JSON file to write."),
):
    """Parse a contract and materialize it as a project file."""
    parser = ContractParser(config_manager.get_operation_namespaces())
    parsed = parser.parse_file(contract_file)
    if parsed is None:
        console.print(f"[red]✗[/red] No contract could be parsed from {contract_file}")
        raise typer.Exit(1)
    _write_or_echo(_dump_project(project_from_contract(parsed)), output)


@app.command("generate")
def generate(
    project_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Project JSON file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File to write."),
    test: bool = typer.Option(False, "--test", help="Generate a Hardhat test skeleton instead."),
):
    """Render a project as Solidity (or its test skeleton)."""
    state = _load_project(project_file)
    text = generate_test(state) if test else generate_contract(state).code
    _write_or_echo(text, output)


@app.command("show-config")
def show_config():
    """Show the effective configuration."""
    cfg = config_manager.load_config()
    table = Table(title="labz configuration", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for section in sorted(config_manager.DEFAULT_CONFIG):
        for key, value in cfg.get(section, {}).items():
            shown = ", ".join(value) if isinstance(value, list) else str(value)
            table.add_row(f"{section}.{key}", shown)
    console.print(table)
    console.print(f"[dim]Config file: {config_manager.CONFIG_FILE}[/dim]")


@app.command("set-config")
def set_config(
    key: str = typer.Argument(..., help="Setting as section.name, e.g. locator.namespace."),
    value: str = typer.Argument(..., help="New value (comma-separated for lists)."),
):
    """Change one configuration value."""
    try:
        saved = config_manager.set_value(key, value)
    except KeyError:
        known = [f"{s}.{k}" for s, keys in config_manager.DEFAULT_CONFIG.items() for k in keys]
        raise typer.BadParameter(f"Unknown setting '{key}'. Known: {', '.join(known)}")
    if not saved:
        console.print(f"[red]✗[/red] Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] {key} = {value}")


@app.command("reset-config")
def reset_config():
    """Restore every setting to its default."""
    if not config_manager.reset_config():
        console.print(f"[red]✗[/red] Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(1)
    console.print("[green]✓[/green] Configuration reset to defaults.")
