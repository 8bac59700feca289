"""Command-line interface for sheetcalc."""

from __future__ import annotations

import json
from pathlib import Path

import click

from sheetcalc import __version__


@click.group()
@click.version_option(version=__version__, prog_name="sheetcalc")
def main() -> None:
    """sheetcalc -- evaluate spreadsheet formulas over workbook files.

    Settings are read from ``sheetcalc.yaml`` next to the workbook.
    """


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _open_service(workbook_path: str):
    """Load config and workbook, wiring the event log when configured."""
    import yaml

    from sheetcalc.config import load_config
    from sheetcalc.io import load_workbook
    from sheetcalc.logging import EventType, emit_error
    from sheetcalc.logging.events import set_log_dir
    from sheetcalc.service import WorkbookService

    path = Path(workbook_path)
    try:
        config = load_config(path.parent)
    except (ValueError, OSError) as e:
        raise click.ClickException(f"Invalid config: {e}")
    set_log_dir(config.get("log_dir"), fsync=bool(config.get("logging_fsync")))
    try:
        workbook = load_workbook(path)
    except (ValueError, OSError, yaml.YAMLError) as e:
        emit_error(
            EventType.workbook_load_failed,
            f"Cannot load {path.name}: {e}",
            {"path": str(path)},
            error_code=type(e).__name__,
        )
        raise click.ClickException(f"Cannot load {path}: {e}")
    return WorkbookService(workbook, config)


def _resolve_sheet(service, sheet_name: str | None) -> str:
    if not service.workbook.sheets:
        raise click.ClickException("Workbook has no sheets")
    if sheet_name is None:
        return service.workbook.sheets[0].id
    sheet = service.workbook.sheet_by_name(sheet_name)
    if sheet is None:
        names = ", ".join(s.name for s in service.workbook.sheets)
        raise click.ClickException(f"Sheet {sheet_name!r} not found (sheets: {names})")
    return sheet.id


def _save(service, workbook_path: str) -> None:
    from sheetcalc.io import save_workbook
    from sheetcalc.logging import EventType, emit_error

    try:
        save_workbook(service.workbook, workbook_path)
    except OSError as e:
        workbook_id = service.workbook.id
        emit_error(
            EventType.workbook_save_failed,
            f"Cannot save workbook to {workbook_path}: {e}",
            {"workbook_id": workbook_id, "path": str(workbook_path)},
            error_code=type(e).__name__,
            workbook_id=workbook_id,
        )
        raise click.ClickException(str(e))


# ---------------------------------------------------------------------------
# New
# ---------------------------------------------------------------------------


@main.command()
@click.argument("workbook_path", type=click.Path())
@click.option("--name", default="Untitled", help="Workbook name.")
@click.option("--sheet", "sheet_name", default="Sheet1", help="Name of the first sheet.")
def new(workbook_path: str, name: str, sheet_name: str) -> None:
    """Create an empty workbook file at WORKBOOK_PATH."""
    from sheetcalc.service import WorkbookService
    from sheetcalc.workbook import Workbook

    if Path(workbook_path).exists():
        raise click.ClickException(f"{workbook_path} already exists")
    service = WorkbookService(Workbook(name=name))
    try:
        service.create_sheet(sheet_name)
    except ValueError as e:
        raise click.ClickException(str(e))
    _save(service, workbook_path)
    click.echo(f"Created workbook at {workbook_path}")


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


@main.command("eval")
@click.argument("workbook_path", type=click.Path(exists=True))
@click.argument("formula")
@click.option("--sheet", "sheet_name", default=None, help="Sheet to evaluate on (default: first).")
@click.option("--at", "at_cell", default=None, help="Evaluate as if the formula lived in this cell.")
@click.option("--json", "as_json", is_flag=True, help="Print the raw value as JSON.")
def eval_cmd(workbook_path: str, formula: str, sheet_name: str | None, at_cell: str | None, as_json: bool) -> None:
    """Evaluate FORMULA against the workbook at WORKBOOK_PATH."""
    from sheetcalc.formulas.errors import InvalidReference
    from sheetcalc.formulas.refs import parse_cell_ref

    service = _open_service(workbook_path)
    sheet_id = _resolve_sheet(service, sheet_name)
    if not formula.startswith("="):
        formula = "=" + formula
    row = col = None
    if at_cell:
        try:
            ref = parse_cell_ref(at_cell)
        except InvalidReference as e:
            raise click.ClickException(str(e))
        row, col = ref.row, ref.col
    value = service.evaluate(sheet_id, formula, row=row, col=col)
    if as_json:
        click.echo(json.dumps(value))
    else:
        click.echo(service.display_value(value))


@main.command()
@click.argument("workbook_path", type=click.Path(exists=True))
@click.option("--sheet", "sheet_name", default=None, help="Sheet to show (default: first).")
@click.option("--raw", is_flag=True, help="Show stored formulas instead of computed values.")
def show(workbook_path: str, sheet_name: str | None, raw: bool) -> None:
    """Print a sheet as tab-separated rows."""
    service = _open_service(workbook_path)
    sheet_id = _resolve_sheet(service, sheet_name)
    if raw:
        sheet = service.get_sheet(sheet_id)
        lines = [
            "\t".join(cell.formula or service.display_value(cell.value) for cell in cells)
            for cells in sheet.data
        ]
    else:
        lines = [
            "\t".join(service.display_value(v) for v in cells)
            for cells in service.computed_grid(sheet_id)
        ]
    # Trailing blank rows are noise in a 50-row default grid
    while lines and not lines[-1].strip():
        lines.pop()
    for line in lines:
        click.echo(line.rstrip("\t"))


@main.command()
@click.argument("workbook_path", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, help="Output report as JSON.")
def check(workbook_path: str, as_json: bool) -> None:
    """Report every formula cell that evaluates to an error.

    Exits with status 1 when any are found.
    """
    service = _open_service(workbook_path)
    problems = service.check_workbook()

    if as_json:
        click.echo(json.dumps(
            [{"sheet": s, "cell": addr, "error": err} for s, addr, err in problems],
            indent=2,
        ))
    elif not problems:
        click.echo("No formula errors.")
    else:
        for sheet_name, addr, err in problems:
            click.echo(f"  {sheet_name}.{addr}: {err}")
        click.echo(f"{len(problems)} formula error(s).")

    if problems:
        raise SystemExit(1)


@main.command()
@click.argument("formula")
def validate(formula: str) -> None:
    """Check FORMULA syntax and function names without evaluating it."""
    from sheetcalc.service import WorkbookService
    from sheetcalc.workbook import Workbook

    result = WorkbookService(Workbook()).validate_formula(formula)
    click.echo(json.dumps(result, indent=2))
    if not result["valid"]:
        raise SystemExit(1)


@main.command()
def functions() -> None:
    """List the supported function names."""
    from sheetcalc.formulas.evaluator import supported_functions

    for name in supported_functions():
        click.echo(name)


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


@main.command("import-csv")
@click.argument("workbook_path", type=click.Path(exists=True))
@click.argument("csv_file", type=click.Path(exists=True))
@click.option("--sheet", "sheet_name", default=None, help="Target sheet (default: first).")
@click.option("--at", "start_cell", default="A1", help="Top-left cell for the import.")
def import_csv_cmd(workbook_path: str, csv_file: str, sheet_name: str | None, start_cell: str) -> None:
    """Import CSV_FILE into a sheet and save the workbook."""
    from sheetcalc.io import import_csv

    service = _open_service(workbook_path)
    sheet_id = _resolve_sheet(service, sheet_name)
    try:
        written = import_csv(service, sheet_id, csv_file, start_cell)
    except (ValueError, OSError) as e:
        raise click.ClickException(str(e))
    _save(service, workbook_path)
    click.echo(f"Imported {written} cells from {csv_file}")


@main.command("export-csv")
@click.argument("workbook_path", type=click.Path(exists=True))
@click.argument("csv_file", type=click.Path())
@click.option("--sheet", "sheet_name", default=None, help="Sheet to export (default: first).")
@click.option("--raw", is_flag=True, help="Write stored formulas instead of computed values.")
def export_csv_cmd(workbook_path: str, csv_file: str, sheet_name: str | None, raw: bool) -> None:
    """Export a sheet to CSV_FILE."""
    from sheetcalc.io import export_csv

    service = _open_service(workbook_path)
    sheet_id = _resolve_sheet(service, sheet_name)
    try:
        path = export_csv(service, sheet_id, csv_file, raw=raw)
    except OSError as e:
        raise click.ClickException(str(e))
    click.echo(f"Exported to {path}")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@click.argument("log_dir", type=click.Path(exists=True))
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--sheet-id", default=None, help="Filter by sheet ID.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
def events_cmd(
    log_dir: str,
    level: str | None,
    event_type: str | None,
    sheet_id: str | None,
    limit: int,
) -> None:
    """Show structured event log stored in LOG_DIR."""
    from sheetcalc.logging.sink import EventSink

    sink = EventSink(Path(log_dir))
    events = sink.read_global(
        level=level,
        event_type=event_type,
        sheet_id=sheet_id,
        limit=limit,
    )

    if not events:
        click.echo("No events found.")
        return

    for evt in events:
        ts = evt.get("ts", "")
        lvl = evt.get("level", "").upper()
        etype = evt.get("event_type", "")
        msg = evt.get("message", "")
        err = evt.get("error_code")
        line = f"[{ts}] {lvl:7s} {etype}: {msg}"
        if err:
            line += f"  ({err})"
        click.echo(line)
