"""Lookup functions: VLOOKUP, HLOOKUP, INDEX, MATCH.

Table cells are read through the evaluation context, so formula cells in a
lookup table are evaluated (and guarded against cycles) like any other
reference.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.coercion import is_error, to_bool, to_number, to_text, try_number, values_equal
from sheetcalc.formulas.errors import ErrorValue, FormulaFunctionError

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext


def _lookup_match(cell: Any, lookup: Any, exact: bool) -> bool:
    """Exact equality, or (non-exact) a case-insensitive substring match."""
    if values_equal(cell, lookup):
        return True
    if exact or cell is None:
        return False
    needle = to_text(lookup).lower()
    return needle != "" and needle in to_text(cell).lower()


def _blank(value: Any) -> Any:
    return "" if value is None else value


def _table_lookup(name: str, args: list, ctx: EvaluationContext, vertical: bool) -> Any:
    if len(args) not in (3, 4):
        raise FormulaFunctionError(name, f"{name} requires 3 or 4 arguments")
    lookup = ctx.eval(args[0])
    if is_error(lookup):
        return lookup
    sheet_id, table = ctx.range(args[1])
    index = ctx.eval(args[2])
    if is_error(index):
        return index
    offset = int(to_number(index)) - 1
    exact = False
    if len(args) == 4:
        flag = ctx.eval(args[3])
        if is_error(flag):
            return flag
        exact = to_bool(flag)

    n_rows, n_cols = table.shape
    span = n_cols if vertical else n_rows
    if offset < 0 or offset >= span:
        return ErrorValue.REF

    # VLOOKUP scans the first column top-down; HLOOKUP the first row left-right.
    scan_len = n_rows if vertical else n_cols
    for i in range(scan_len):
        if vertical:
            row, col = table.start_row + i, table.start_col
        else:
            row, col = table.start_row, table.start_col + i
        key = ctx.cell_value(sheet_id, row, col)
        if is_error(key):
            continue
        if _lookup_match(key, lookup, exact):
            if vertical:
                return _blank(ctx.cell_value(sheet_id, row, table.start_col + offset))
            return _blank(ctx.cell_value(sheet_id, table.start_row + offset, col))
    return ErrorValue.NA


def _fn_vlookup(args: list, ctx: EvaluationContext) -> Any:
    """VLOOKUP(lookup_value, table, col_index, [exact_match]).

    With ``exact_match`` TRUE only equal values match; otherwise a
    case-insensitive substring of the first-column text also matches.
    """
    return _table_lookup("VLOOKUP", args, ctx, vertical=True)


def _fn_hlookup(args: list, ctx: EvaluationContext) -> Any:
    """HLOOKUP(lookup_value, table, row_index, [exact_match])."""
    return _table_lookup("HLOOKUP", args, ctx, vertical=False)


def _fn_index(args: list, ctx: EvaluationContext) -> Any:
    """INDEX(range, row, [col]) — 1-based; out-of-range positions give #REF!."""
    if len(args) not in (2, 3):
        raise FormulaFunctionError("INDEX", "INDEX requires 2 or 3 arguments")
    sheet_id, rng = ctx.range(args[0])
    row_arg = ctx.eval(args[1])
    if is_error(row_arg):
        return row_arg
    col_arg: Any = 1
    if len(args) == 3:
        col_arg = ctx.eval(args[2])
        if is_error(col_arg):
            return col_arg
    row_off = int(to_number(row_arg)) - 1
    col_off = int(to_number(col_arg)) - 1
    n_rows, n_cols = rng.shape
    if row_off < 0 or col_off < 0 or row_off >= n_rows or col_off >= n_cols:
        return ErrorValue.REF
    return _blank(ctx.cell_value(sheet_id, rng.start_row + row_off, rng.start_col + col_off))


def _match_equal(cell: Any, lookup: Any) -> bool:
    """Numeric comparison when both sides are numeric-coercible, else text equality."""
    a, b = try_number(cell), try_number(lookup)
    if a is not None and b is not None:
        return a == b
    return to_text(cell) == to_text(lookup)


def _fn_match(args: list, ctx: EvaluationContext) -> Any:
    """MATCH(lookup_value, range, [match_type]) — 1-based position of the first match.

    A multi-column range is searched down its first column.  Only exact
    matching is supported; ``match_type`` is accepted and ignored.
    """
    if len(args) not in (2, 3):
        raise FormulaFunctionError("MATCH", "MATCH requires 2 or 3 arguments")
    lookup = ctx.eval(args[0])
    if is_error(lookup):
        return lookup
    sheet_id, rng = ctx.range(args[1])
    n_rows, n_cols = rng.shape
    if n_rows == 1 and n_cols > 1:
        positions = [(rng.start_row, rng.start_col + i) for i in range(n_cols)]
    else:
        positions = [(rng.start_row + i, rng.start_col) for i in range(n_rows)]
    for i, (row, col) in enumerate(positions):
        value = ctx.cell_value(sheet_id, row, col)
        if not is_error(value) and _match_equal(value, lookup):
            return i + 1
    return ErrorValue.NA


LOOKUP_FUNCTIONS: dict[str, Any] = {
    "VLOOKUP": _fn_vlookup,
    "HLOOKUP": _fn_hlookup,
    "INDEX": _fn_index,
    "MATCH": _fn_match,
}
