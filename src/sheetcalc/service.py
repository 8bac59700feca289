"""Spreadsheet mutation service wrapping a single in-memory workbook.

This is the surface the agent tool layer calls: write values and formulas,
fill a formula pattern over a range, insert and delete rows or columns
(rewriting every formula that points at the shifted cells), manage sheets,
and read computed values back.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sheetcalc.config import load_config
from sheetcalc.formulas.errors import FormulaParseError, InvalidReference
from sheetcalc.formulas.coercion import is_error
from sheetcalc.formulas.evaluator import evaluate_cell, evaluate_formula, is_supported
from sheetcalc.formulas.parser import parse_formula
from sheetcalc.formulas.refs import (
    col_letter_to_index,
    index_to_col_letter,
    make_addr,
    parse_cell_ref,
    parse_range,
)
from sheetcalc.formulas.splitter import iter_function_calls, split_arguments
from sheetcalc.logging import EventType, emit_info
from sheetcalc.workbook import Cell, Scalar, Sheet, Workbook, new_sheet_id

logger = logging.getLogger(__name__)

_NEW_SHEET_ROWS = 50
_NEW_SHEET_COLS = 52


# ---------------------------------------------------------------------------
# Formula reference rewriting
# ---------------------------------------------------------------------------

# Matches (in priority order):
#   1. Quoted-sheet refs:   'Sheet Name'.A1  or  'Sheet Name'.A1:B3
#   2. Unquoted-sheet refs: Data.A1          or  Data.A1:B3
#   3. Bare refs:           $A$1, A1:B3 (lookbehind/lookahead avoid identifiers)
_REF = r"\$?[A-Za-z]+\$?\d+"
_REF_TAIL = r"(?![A-Za-z0-9_(])"
_FORMULA_REF_RE = re.compile(
    rf"'(?P<qsheet>[^']+)'\.(?P<qref>{_REF}(?::{_REF})?){_REF_TAIL}"
    rf"|(?<![A-Za-z0-9_.$'])(?P<sheet>[A-Za-z_][A-Za-z0-9_]*)\.(?P<sref>{_REF}(?::{_REF})?){_REF_TAIL}"
    rf"|(?<![A-Za-z0-9_.$'])(?P<ref>{_REF}(?::{_REF})?){_REF_TAIL}"
)
_ENDPOINT_RE = re.compile(r"^(\$?)([A-Za-z]+)(\$?)(\d+)$")
# String literal ranges to skip refs inside "..."
_STRING_LIT_RE = re.compile(r'"(?:\\.|[^"\\])*"')


def _find_string_ranges(formula: str) -> list[tuple[int, int]]:
    """Return list of (start, end) index ranges for string literals in formula."""
    return [(m.start(), m.end()) for m in _STRING_LIT_RE.finditer(formula)]


def _in_string(pos: int, string_ranges: list[tuple[int, int]]) -> bool:
    """Check if position falls inside any string literal range."""
    for s, e in string_ranges:
        if s <= pos < e:
            return True
    return False


def _shift_pos(pos: int, index: int, count: int) -> int | None:
    """New 0-based position after inserting (count > 0) or deleting (count < 0).

    Returns ``None`` when the position itself was deleted.
    """
    if count > 0:
        return pos + count if pos >= index else pos
    n = -count
    if index <= pos < index + n:
        return None
    if pos >= index + n:
        return pos - n
    return pos


def _format_endpoint(m: re.Match, axis: str, pos: int) -> str:
    col_abs, letters, row_abs, digits = m.groups()
    if axis == "row":
        return f"{col_abs}{letters}{row_abs}{pos + 1}"
    return f"{col_abs}{index_to_col_letter(pos)}{row_abs}{digits}"


def _shift_ref_text(ref_text: str, axis: str, index: int, count: int) -> str:
    """Shift a single ref or an ``A1:B3`` range; deleted targets become ``#REF!``."""
    ends = [_ENDPOINT_RE.match(part) for part in ref_text.split(":")]
    if any(m is None for m in ends):
        return ref_text

    def pos_of(m: re.Match) -> int:
        return int(m.group(4)) - 1 if axis == "row" else col_letter_to_index(m.group(2))

    if len(ends) == 1:
        new = _shift_pos(pos_of(ends[0]), index, count)
        return "#REF!" if new is None else _format_endpoint(ends[0], axis, new)

    start_m, end_m = ends
    start = _shift_pos(pos_of(start_m), index, count)
    end = _shift_pos(pos_of(end_m), index, count)
    if start is None and end is None:
        return "#REF!"
    # A range losing one edge shrinks to the surviving cells
    if start is None:
        start = index
    if end is None:
        end = index - 1
    return f"{_format_endpoint(start_m, axis, start)}:{_format_endpoint(end_m, axis, end)}"


def rewrite_formula_refs(
    formula: str,
    affected_sheet: str,
    current_sheet: str,
    axis: str,
    index: int,
    count: int,
) -> str:
    """Rewrite cell references in a formula after row/col insertion or deletion.

    Args:
        formula: The formula string (with leading '=').
        affected_sheet: Name of the sheet where rows/cols were inserted/deleted.
        current_sheet: Name of the sheet this formula lives on (for bare refs).
        axis: "row" or "col".
        index: 0-based index where insertion/deletion starts.
        count: Positive for insert, negative for delete.

    Returns:
        Rewritten formula string. ``$`` markers are preserved.
    """
    if not formula or not formula.startswith("="):
        return formula

    string_ranges = _find_string_ranges(formula)
    result_parts: list[str] = []
    last_end = 0

    for m in _FORMULA_REF_RE.finditer(formula):
        if _in_string(m.start(), string_ranges):
            continue

        if m.group("qref"):
            ref_sheet, group = m.group("qsheet"), "qref"
        elif m.group("sref"):
            ref_sheet, group = m.group("sheet"), "sref"
        else:
            ref_sheet, group = current_sheet, "ref"

        # Only rewrite if ref points to the affected sheet
        if ref_sheet != affected_sheet:
            continue

        ref_text = m.group(group)
        new_ref = _shift_ref_text(ref_text, axis, index, count)
        if new_ref == ref_text:
            continue
        if new_ref == "#REF!":
            # The sheet prefix goes too; #REF! is a complete error literal
            result_parts.append(formula[last_end:m.start()])
        else:
            result_parts.append(formula[last_end:m.start(group)])
        result_parts.append(new_ref)
        last_end = m.end()

    result_parts.append(formula[last_end:])
    return "".join(result_parts)


# ---------------------------------------------------------------------------
# WorkbookService
# ---------------------------------------------------------------------------


def _literal_cell(value: Any) -> Cell:
    """Build a cell from an input value: "" clears, "=..." is a formula."""
    if value is None or value == "":
        return Cell()
    if isinstance(value, str) and value.startswith("="):
        return Cell(formula=value)
    return Cell(value=value)


class WorkbookService:
    """In-memory service that wraps one workbook.

    Every mutation bumps ``workbook.version``, which invalidates memoized
    formula results, and emits a ``sheet_mutated`` event.

    Parameters
    ----------
    workbook : Workbook
        The workbook to operate on (mutated in place).
    config : dict | None
        Engine configuration; defaults to :data:`sheetcalc.config.DEFAULT_CONFIG`.
    """

    def __init__(self, workbook: Workbook, config: dict[str, Any] | None = None) -> None:
        self.workbook = workbook
        self.config = config if config is not None else load_config(None)
        self._memo: dict = {}

    def _memo_arg(self) -> dict | None:
        return self._memo if self.config.get("memoize", True) else None

    def get_sheet(self, sheet_id: str) -> Sheet:
        """Get sheet by id, raising ValueError if missing."""
        sheet = self.workbook.sheet_by_id(sheet_id)
        if sheet is None:
            raise ValueError(f"Sheet {sheet_id!r} not found")
        return sheet

    def _mutated(self, operation: str, sheet_id: str | None = None, **details: Any) -> None:
        self.workbook.touch()
        self._memo.clear()
        context = {"workbook_id": self.workbook.id, "operation": operation, "sheet_id": sheet_id}
        context.update(details)
        emit_info(EventType.sheet_mutated, f"{operation} on {sheet_id}", context, workbook_id=self.workbook.id)

    # ------------------------------------------------------------------
    # Cell writes
    # ------------------------------------------------------------------

    def set_data(self, sheet_id: str, range_text: str, data: list[list[Any]]) -> dict[str, Any]:
        """Write a 2-D block of values into a range.

        Values beyond the range are dropped; a single-cell range acts as the
        top-left anchor and takes the whole block. ``""`` clears a cell and
        text starting with ``=`` is stored as a formula.
        """
        sheet = self.get_sheet(sheet_id)
        try:
            rng = parse_range(range_text)
        except InvalidReference as exc:
            raise ValueError(str(exc)) from exc
        n_rows, n_cols = rng.shape
        if n_rows == 1 and n_cols == 1:
            n_rows = len(data)
            n_cols = max((len(row) for row in data), default=0)
        written = 0
        for i, row_values in enumerate(data[:n_rows]):
            for j, value in enumerate(row_values[:n_cols]):
                sheet.set_cell(rng.start_row + i, rng.start_col + j, _literal_cell(value))
                written += 1
        self._mutated("set_data", sheet_id, range=range_text, cells=written)
        return {"ok": True, "cells_written": written}

    def set_data_grid(self, sheet_id: str, start_cell: str, data: list[list[Any]]) -> dict[str, Any]:
        """Write a 2-D block anchored at *start_cell*, growing the grid as needed."""
        return self.set_data(sheet_id, start_cell.split(":")[0], data)

    def _parse_cell(self, address: str) -> tuple[int, int]:
        try:
            ref = parse_cell_ref(address)
        except InvalidReference as exc:
            raise ValueError(str(exc)) from exc
        return ref.row, ref.col

    def apply_formula(self, sheet_id: str, cell: str, formula: str) -> Scalar:
        """Store a formula in a cell and return its evaluated value."""
        sheet = self.get_sheet(sheet_id)
        row, col = self._parse_cell(cell)
        if not formula.startswith("="):
            formula = "=" + formula
        sheet.set_cell(row, col, Cell(formula=formula))
        self._mutated("apply_formula", sheet_id, cell=cell.upper())
        return self.cell_value(sheet_id, cell)

    def apply_formula_to_range(
        self, sheet_id: str, start_cell: str, end_cell: str, pattern: str
    ) -> int:
        """Fill a formula pattern over a range.

        ``{ROW}`` becomes each cell's 1-based row number and ``{COL}`` its
        column letters, e.g. ``"=A{ROW}*B{ROW}"``.

        Returns:
            Number of cells written.
        """
        sheet = self.get_sheet(sheet_id)
        try:
            rng = parse_range(f"{start_cell}:{end_cell}")
        except InvalidReference as exc:
            raise ValueError(str(exc)) from exc
        if not pattern.startswith("="):
            pattern = "=" + pattern
        written = 0
        for row, col in rng.cells():
            formula = pattern.replace("{ROW}", str(row + 1)).replace("{COL}", index_to_col_letter(col))
            sheet.set_cell(row, col, Cell(formula=formula))
            written += 1
        self._mutated("apply_formula_to_range", sheet_id, range=str(rng), cells=written)
        return written

    # ------------------------------------------------------------------
    # Row/column insertion & deletion
    # ------------------------------------------------------------------

    def _shift_sheet(self, sheet: Sheet, axis: str, index: int, count: int) -> None:
        """Shift rows or columns in a sheet and update all references.

        Args:
            sheet: The sheet to modify.
            axis: "row" or "col".
            index: 0-based index where insertion/deletion starts.
            count: Positive for insert, negative for delete.
        """
        # 1. Move the grid data
        if axis == "row":
            if count > 0:
                width = sheet.n_cols
                sheet.data[index:index] = [[Cell() for _ in range(width)] for _ in range(count)]
            else:
                del sheet.data[index:index - count]
        else:
            for cells in sheet.data:
                if count > 0:
                    if len(cells) > index:
                        cells[index:index] = [Cell() for _ in range(count)]
                else:
                    del cells[index:index - count]

        # 2. Rewrite formulas in ALL sheets (cross-sheet refs may point here)
        for s in self.workbook.sheets:
            for cells in s.data:
                for cell in cells:
                    if cell.formula:
                        cell.formula = rewrite_formula_refs(
                            cell.formula, sheet.name, s.name, axis, index, count
                        )

    def insert_rows(self, sheet_id: str, index: int, count: int = 1) -> dict[str, Any]:
        """Insert rows before the given 0-based row index."""
        sheet = self.get_sheet(sheet_id)
        if index < 0 or index > sheet.n_rows:
            raise ValueError(f"row index {index} out of range [0, {sheet.n_rows}]")
        if count < 1:
            raise ValueError("count must be >= 1")
        self._shift_sheet(sheet, "row", index, count)
        self._mutated("insert_rows", sheet_id, index=index, count=count)
        return {"ok": True, "n_rows": sheet.n_rows, "n_cols": sheet.n_cols}

    def delete_rows(self, sheet_id: str, start: int, count: int = 1) -> dict[str, Any]:
        """Delete rows starting at the given 0-based row index."""
        sheet = self.get_sheet(sheet_id)
        if start < 0 or start >= sheet.n_rows:
            raise ValueError(f"row index {start} out of range [0, {sheet.n_rows})")
        if count < 1:
            raise ValueError("count must be >= 1")
        count = min(count, sheet.n_rows - start)  # clamp to available
        self._shift_sheet(sheet, "row", start, -count)
        self._mutated("delete_rows", sheet_id, index=start, count=count)
        return {"ok": True, "n_rows": sheet.n_rows, "n_cols": sheet.n_cols}

    def insert_columns(self, sheet_id: str, index: int, count: int = 1) -> dict[str, Any]:
        """Insert columns before the given 0-based column index."""
        sheet = self.get_sheet(sheet_id)
        if index < 0 or index > sheet.n_cols:
            raise ValueError(f"column index {index} out of range [0, {sheet.n_cols}]")
        if count < 1:
            raise ValueError("count must be >= 1")
        self._shift_sheet(sheet, "col", index, count)
        self._mutated("insert_columns", sheet_id, index=index, count=count)
        return {"ok": True, "n_rows": sheet.n_rows, "n_cols": sheet.n_cols}

    def delete_columns(self, sheet_id: str, start: int, count: int = 1) -> dict[str, Any]:
        """Delete columns starting at the given 0-based column index."""
        sheet = self.get_sheet(sheet_id)
        if start < 0 or start >= sheet.n_cols:
            raise ValueError(f"column index {start} out of range [0, {sheet.n_cols})")
        if count < 1:
            raise ValueError("count must be >= 1")
        count = min(count, sheet.n_cols - start)  # clamp to available
        self._shift_sheet(sheet, "col", start, -count)
        self._mutated("delete_columns", sheet_id, index=start, count=count)
        return {"ok": True, "n_rows": sheet.n_rows, "n_cols": sheet.n_cols}

    # ------------------------------------------------------------------
    # Sheet management (CRUD)
    # ------------------------------------------------------------------

    def list_sheets(self) -> list[dict[str, Any]]:
        """Return list of sheet summaries (id, name, row_count, column_count)."""
        return [
            {"id": s.id, "name": s.name, "row_count": s.n_rows, "column_count": s.n_cols}
            for s in self.workbook.sheets
        ]

    def _check_new_name(self, name: str) -> None:
        if not name or not name.strip():
            raise ValueError("Sheet name must not be empty")
        if "'" in name:
            raise ValueError(f"Sheet name must not contain quotes: {name!r}")
        if self.workbook.sheet_by_name(name) is not None:
            raise ValueError(f"Sheet {name!r} already exists")

    def create_sheet(self, name: str) -> dict[str, Any]:
        """Add a new empty sheet.  Raises ValueError on duplicate name."""
        self._check_new_name(name)
        sheet = Sheet(
            id=new_sheet_id(),
            name=name,
            data=[[Cell() for _ in range(_NEW_SHEET_COLS)] for _ in range(_NEW_SHEET_ROWS)],
        )
        self.workbook.sheets.append(sheet)
        self._mutated("create_sheet", sheet.id, name=name)
        return {"id": sheet.id, "name": sheet.name}

    def delete_sheet(self, sheet_id: str) -> dict[str, Any]:
        """Delete a sheet.  Must keep at least one sheet."""
        sheet = self.get_sheet(sheet_id)
        if len(self.workbook.sheets) <= 1:
            raise ValueError("Cannot delete the only sheet")
        self.workbook.sheets.remove(sheet)
        self._mutated("delete_sheet", sheet_id, name=sheet.name)
        return {"deleted": sheet.name, "remaining": [s.name for s in self.workbook.sheets]}

    def rename_sheet(self, sheet_id: str, new_name: str) -> dict[str, Any]:
        """Rename a sheet.  Raises ValueError on duplicate or missing."""
        sheet = self.get_sheet(sheet_id)
        self._check_new_name(new_name)
        old_name = sheet.name
        sheet.name = new_name
        self._mutated("rename_sheet", sheet_id, old_name=old_name, new_name=new_name)
        return {"old_name": old_name, "new_name": new_name}

    def copy_sheet(self, sheet_id: str, new_name: str | None = None) -> dict[str, Any]:
        """Duplicate a sheet (deep copy) right after the original."""
        sheet = self.get_sheet(sheet_id)
        name = new_name or f"{sheet.name} Copy"
        self._check_new_name(name)
        copy = sheet.model_copy(deep=True, update={"id": new_sheet_id(), "name": name})
        self.workbook.sheets.insert(self.workbook.sheets.index(sheet) + 1, copy)
        self._mutated("copy_sheet", copy.id, source=sheet_id, name=name)
        return {"id": copy.id, "name": copy.name}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def evaluate(
        self, sheet_id: str, formula: Any, row: int | None = None, col: int | None = None
    ) -> Scalar:
        """Evaluate formula text as if it lived on *sheet_id* (optionally at row/col)."""
        return evaluate_formula(
            formula, self.workbook, sheet_id, row=row, col=col,
            config=self.config, memo=self._memo_arg(),
        )

    def cell_value(self, sheet_id: str, address: str) -> Scalar:
        """Computed value of one cell (empty is ``None``)."""
        self.get_sheet(sheet_id)
        row, col = self._parse_cell(address)
        return evaluate_cell(
            self.workbook, sheet_id, row, col, config=self.config, memo=self._memo_arg()
        )

    def computed_grid(self, sheet_id: str) -> list[list[Scalar]]:
        """Every cell's computed value, in the sheet's (ragged) shape."""
        sheet = self.get_sheet(sheet_id)
        memo = self._memo_arg()
        return [
            [
                evaluate_cell(self.workbook, sheet_id, r, c, config=self.config, memo=memo)
                for c in range(len(cells))
            ]
            for r, cells in enumerate(sheet.data)
        ]

    def display_value(self, value: Any) -> str:
        """Format a computed value for display; sentinels pass through verbatim."""
        if value is None:
            return ""
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, float):
            if value.is_integer():
                return str(int(value))
            return f"{value:.{self.config.get('display_precision', 10)}g}"
        return str(value)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def validate_formula(self, text: str) -> dict[str, Any]:
        """Lightweight formula validation (no evaluation).

        Args:
            text: Formula text (must start with '=').

        Returns:
            Dict with ``valid`` bool, ``functions`` (one entry per call with
            its argument count), ``unknown_functions``, and on a syntax
            error ``message`` / ``position``.
        """
        if not text.startswith("="):
            return {"valid": False, "message": "Formula must start with '='"}
        calls = [
            {"name": call.name, "n_args": len(split_arguments(call.args_text))}
            for call in iter_function_calls(text[1:])
        ]
        unknown = sorted({c["name"] for c in calls if not is_supported(c["name"])})
        result: dict[str, Any] = {"valid": True, "functions": calls, "unknown_functions": unknown}
        try:
            parse_formula(text)
        except FormulaParseError as exc:
            result.update(valid=False, message=str(exc))
            if exc.position is not None:
                result["position"] = exc.position
            return result
        if unknown:
            result.update(valid=False, message=f"Unknown function(s): {', '.join(unknown)}")
        return result

    def check_workbook(self) -> list[tuple[str, str, str]]:
        """Every formula cell whose computed value is an error sentinel.

        Returns:
            ``(sheet name, address, sentinel)`` tuples in sheet/row/column order.
        """
        problems: list[tuple[str, str, str]] = []
        memo = self._memo_arg()
        for sheet in self.workbook.sheets:
            for r, cells in enumerate(sheet.data):
                for c, cell in enumerate(cells):
                    if not cell.formula:
                        continue
                    value = evaluate_cell(self.workbook, sheet.id, r, c, config=self.config, memo=memo)
                    if is_error(value):
                        problems.append((sheet.name, make_addr(r, c), value))
        logger.debug("check_workbook found %d error cells", len(problems))
        return problems
