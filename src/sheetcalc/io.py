"""Workbook files and CSV interchange.

Workbooks are stored as YAML (or JSON, chosen by file suffix) with each
sheet's cells as a sparse ``address -> content`` mapping::

    name: Budget
    sheets:
      - id: sh-3f9c0a1b2c4d
        name: Sheet1
        rows: 50
        cols: 52
        cells:
          A1: 1200
          B1: "=A1*1.1"

Formula cells are stored as their ``=`` text; a literal string that happens
to start with ``=`` is written as ``{value: ...}`` so it round-trips.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import polars as pl
import yaml

from sheetcalc.formulas.coercion import try_number
from sheetcalc.formulas.errors import InvalidReference
from sheetcalc.formulas.refs import make_addr, parse_cell_ref
from sheetcalc.logging import EventType, emit_info
from sheetcalc.service import WorkbookService
from sheetcalc.workbook import Cell, Sheet, Workbook, coerce_cell

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Workbook files
# ---------------------------------------------------------------------------


def _cell_to_raw(cell: Cell) -> Any:
    if cell.formula:
        return cell.formula
    if isinstance(cell.value, str) and cell.value.startswith("="):
        return {"value": cell.value}
    return cell.value


def _sheet_to_dict(sheet: Sheet) -> dict[str, Any]:
    cells: dict[str, Any] = {}
    for r, row in enumerate(sheet.data):
        for c, cell in enumerate(row):
            if not cell.is_empty:
                cells[make_addr(r, c)] = _cell_to_raw(cell)
    return {
        "id": sheet.id,
        "name": sheet.name,
        "rows": sheet.n_rows,
        "cols": sheet.n_cols,
        "cells": cells,
    }


def _sheet_from_dict(raw: dict[str, Any]) -> Sheet:
    if "cells" not in raw:
        # Dense form: ``data`` is a list of rows
        return Sheet.model_validate(raw)
    cells = raw.get("cells") or {}
    if not isinstance(cells, dict):
        raise ValueError(f"Sheet {raw.get('name')!r}: 'cells' must be a mapping")
    fields = {k: v for k, v in raw.items() if k in ("id", "name")}
    sheet = Sheet.model_validate({**fields, "data": []})
    sheet.ensure_size(int(raw.get("rows") or 0), int(raw.get("cols") or 0))
    for address, content in cells.items():
        try:
            ref = parse_cell_ref(str(address))
        except InvalidReference as exc:
            raise ValueError(f"Sheet {sheet.name!r}: {exc}") from exc
        sheet.set_cell(ref.row, ref.col, Cell.model_validate(coerce_cell(content)))
    return sheet


def workbook_to_dict(workbook: Workbook) -> dict[str, Any]:
    """Serialize a workbook into the sparse file layout."""
    return {
        "id": workbook.id,
        "name": workbook.name,
        "sheets": [_sheet_to_dict(s) for s in workbook.sheets],
    }


def workbook_from_dict(raw: Any) -> Workbook:
    """Build a workbook from the file layout.

    Raises:
        ValueError: If the structure is malformed (pydantic validation errors
            are ``ValueError`` subclasses).
    """
    if not isinstance(raw, dict):
        raise ValueError("Workbook file must contain a mapping")
    sheets_raw = raw.get("sheets") or []
    if not isinstance(sheets_raw, list):
        raise ValueError("'sheets' must be a list")
    sheets = [_sheet_from_dict(s) for s in sheets_raw]
    names = [s.name for s in sheets]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate sheet names: {names}")
    fields = {k: v for k, v in raw.items() if k in ("id", "name")}
    return Workbook(**fields, sheets=sheets)


def _is_json(path: Path) -> bool:
    return path.suffix.lower() == ".json"


def load_workbook(path: str | Path) -> Workbook:
    """Load a workbook from a ``.yaml``/``.yml`` or ``.json`` file."""
    path = Path(path)
    text = path.read_text()
    raw = json.loads(text) if _is_json(path) else yaml.safe_load(text)
    workbook = workbook_from_dict(raw)
    logger.debug("Loaded workbook %s with %d sheets", path, len(workbook.sheets))
    emit_info(
        EventType.workbook_loaded,
        f"Loaded workbook from {path.name}",
        {"workbook_id": workbook.id, "path": str(path), "sheets": len(workbook.sheets)},
        workbook_id=workbook.id,
    )
    return workbook


def save_workbook(workbook: Workbook, path: str | Path) -> Path:
    """Write a workbook; the format follows the file suffix."""
    path = Path(path)
    data = workbook_to_dict(workbook)
    if _is_json(path):
        path.write_text(json.dumps(data, indent=2) + "\n")
    else:
        path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    emit_info(
        EventType.workbook_saved,
        f"Saved workbook to {path.name}",
        {"workbook_id": workbook.id, "path": str(path)},
        workbook_id=workbook.id,
    )
    return path


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def _csv_field(text: str | None) -> Any:
    """CSV fields become numbers when they parse as one, else text; blank clears."""
    if text is None or text == "":
        return None
    if text.startswith("="):
        return text
    number = try_number(text)
    return text if number is None else number


def import_csv(
    service: WorkbookService, sheet_id: str, path: str | Path, start_cell: str = "A1"
) -> int:
    """Read a headerless CSV file into a sheet, anchored at *start_cell*.

    Returns:
        Number of cells written.
    """
    path = Path(path)
    try:
        df = pl.read_csv(
            path, has_header=False, infer_schema_length=0, truncate_ragged_lines=True
        )
    except pl.exceptions.NoDataError:
        df = pl.DataFrame()
    rows = [[_csv_field(v) for v in row] for row in df.iter_rows()]
    result = service.set_data_grid(sheet_id, start_cell, rows)
    emit_info(
        EventType.csv_imported,
        f"Imported {len(rows)} rows from {path.name}",
        {"path": str(path), "sheet_id": sheet_id, "rows": len(rows), "start_cell": start_cell},
        workbook_id=service.workbook.id,
    )
    return result["cells_written"]


def export_csv(
    service: WorkbookService, sheet_id: str, path: str | Path, *, raw: bool = False
) -> Path:
    """Write a sheet as headerless CSV.

    By default each field is the cell's display value; with ``raw=True`` the
    stored content (formula text or literal) is written instead.
    """
    path = Path(path)
    sheet = service.get_sheet(sheet_id)
    width = sheet.n_cols
    if raw:
        rows = [
            [cell.formula or service.display_value(cell.value) for cell in cells]
            for cells in sheet.data
        ]
    else:
        rows = [[service.display_value(v) for v in cells] for cells in service.computed_grid(sheet_id)]
    rows = [row + [""] * (width - len(row)) for row in rows]

    if width == 0:
        path.write_text("")
    else:
        schema = [(f"column_{j + 1}", pl.Utf8) for j in range(width)]
        df = pl.DataFrame(rows, schema=schema, orient="row")
        df.write_csv(path, include_header=False)
    emit_info(
        EventType.csv_exported,
        f"Exported {len(rows)} rows to {path.name}",
        {"path": str(path), "sheet_id": sheet_id, "rows": len(rows), "raw": raw},
        workbook_id=service.workbook.id,
    )
    return path
