"""Reference functions: ROW, COLUMN, INDIRECT."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.errors import ErrorValue, FormulaFunctionError, FormulaRefError
from sheetcalc.formulas.refs import parse_range, parse_sheet_reference, split_sheet_prefix

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext


def _position(name: str, args: list, ctx: EvaluationContext, axis: int) -> Any:
    if len(args) > 1:
        raise FormulaFunctionError(name, f"{name} takes at most 1 argument")
    if not args:
        # Without a reference: the cell holding the formula, 1 when unknown
        return ctx.origin[axis] + 1 if ctx.origin is not None else 1
    try:
        _, rng = ctx.range(args[0])
    except FormulaRefError:
        return ErrorValue.REF
    return (rng.start_row if axis == 0 else rng.start_col) + 1


def _fn_row(args: list, ctx: EvaluationContext) -> Any:
    """ROW([ref]) — 1-based row number."""
    return _position("ROW", args, ctx, 0)


def _fn_column(args: list, ctx: EvaluationContext) -> Any:
    """COLUMN([ref]) — 1-based column number."""
    return _position("COLUMN", args, ctx, 1)


def _fn_indirect(args: list, ctx: EvaluationContext) -> Any:
    """INDIRECT(ref_text) — value of the cell named by a text reference.

    Accepts ``"B2"``, ``"Data.B2"``, ``"'Q1 Data'.B2"``; a range text gives
    its top-left cell.  Unknown sheets and malformed text give #REF!.
    """
    if len(args) != 1:
        raise FormulaFunctionError("INDIRECT", "INDIRECT requires exactly 1 argument")
    text = ctx.text(args[0]).strip()
    sheet_id = ctx.sheet_id
    if split_sheet_prefix(text) is not None:
        target = parse_sheet_reference(text, ctx.workbook)
        if target.target_sheet_id is None:
            return ErrorValue.REF
        sheet_id, text = target.target_sheet_id, target.cell_ref
    try:
        rng = parse_range(text)
    except FormulaRefError:
        return ErrorValue.REF
    return ctx.cell_value(sheet_id, rng.start_row, rng.start_col)


REFERENCE_FUNCTIONS: dict[str, Any] = {
    "ROW": _fn_row,
    "COLUMN": _fn_column,
    "INDIRECT": _fn_indirect,
}
