"""Tree-walking evaluator for parsed formula expressions.

Supports:
- In-sheet and cross-sheet cell references resolved against a workbook
- Ranges that expand to value lists in aggregate functions
- Error sentinels that propagate through every operator and function
- Circular-reference detection shared across the whole evaluation
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

from lark import Token, Tree

from sheetcalc.formulas.coercion import (
    Scalar,
    classify_literal,
    first_error,
    is_error,
    normalize_number,
    to_number,
    to_text,
    values_equal,
)
from sheetcalc.formulas.context import DEFAULT_MAX_DEPTH, EvaluationContext
from sheetcalc.formulas.errors import (
    CircularReferenceError,
    ErrorValue,
    EvaluationDepthError,
    FormulaError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaRefError,
    error_value_for,
)
from sheetcalc.formulas.fn_date import DATE_FUNCTIONS
from sheetcalc.formulas.fn_finance import FINANCE_FUNCTIONS
from sheetcalc.formulas.fn_logical import LOGICAL_FUNCTIONS
from sheetcalc.formulas.fn_lookup import LOOKUP_FUNCTIONS
from sheetcalc.formulas.fn_math import MATH_FUNCTIONS, power
from sheetcalc.formulas.fn_reference import REFERENCE_FUNCTIONS
from sheetcalc.formulas.fn_stats import STATS_FUNCTIONS
from sheetcalc.formulas.fn_text import TEXT_FUNCTIONS
from sheetcalc.formulas.parser import parse_formula, parse_sheet_ref, unescape_string
from sheetcalc.formulas.refs import CellRef, RangeRef, make_addr, parse_cell_ref
from sheetcalc.logging import EventType, emit_warning

logger = logging.getLogger(__name__)

_FUNC_TABLE: dict[str, Any] = {
    **STATS_FUNCTIONS,
    **LOGICAL_FUNCTIONS,
    **LOOKUP_FUNCTIONS,
    **FINANCE_FUNCTIONS,
    **DATE_FUNCTIONS,
    **TEXT_FUNCTIONS,
    **MATH_FUNCTIONS,
    **REFERENCE_FUNCTIONS,
}

_RANGE_RULES = ("range_ref", "sheet_range_ref")
_REF_RULES = ("cell_ref", "sheet_cell_ref") + _RANGE_RULES

# Python frames one level of cell-to-cell recursion can take, nested
# function calls included.
_FRAMES_PER_LEVEL = 60


def supported_functions() -> list[str]:
    """Sorted names of every function the evaluator knows."""
    return sorted(_FUNC_TABLE)


def is_supported(name: str) -> bool:
    return name.upper() in _FUNC_TABLE


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def evaluate_formula(
    formula: Any,
    workbook: Any,
    sheet_id: str,
    *,
    row: int | None = None,
    col: int | None = None,
    config: dict[str, Any] | None = None,
    memo: dict | None = None,
) -> Scalar:
    """Evaluate formula text against a workbook.

    Args:
        formula: Cell content. Anything that is not a string starting with
            ``=`` is returned unchanged.
        workbook: The workbook to read from.
        sheet_id: Sheet that owns the formula.
        row: 0-based row of the cell holding the formula, if any.
        col: 0-based column of the cell holding the formula, if any.
        config: Engine settings (``max_depth``); see :mod:`sheetcalc.config`.
        memo: Optional dict reused across calls to cache formula cell results.

    Returns:
        The computed scalar, or an error sentinel. Never raises.
    """
    if not isinstance(formula, str) or not formula.startswith("="):
        return formula
    if workbook.sheet_by_id(sheet_id) is None:
        return ErrorValue.REF

    max_depth = int((config or {}).get("max_depth", DEFAULT_MAX_DEPTH))
    origin = (row, col) if row is not None and col is not None else None
    ctx = EvaluationContext(workbook, sheet_id, origin=origin, max_depth=max_depth, memo=memo)

    try:
        with _recursion_headroom(max_depth):
            if origin is not None:
                with ctx.visiting(sheet_id, make_addr(*origin)):
                    result = _evaluate_text(formula, ctx)
            else:
                result = _evaluate_text(formula, ctx)
    except Exception as exc:
        logger.debug("Evaluation of %r failed: %s", formula, exc)
        result = error_value_for(exc)

    return 0 if result is None else result


def evaluate_cell(
    workbook: Any,
    sheet_id: str,
    row: int,
    col: int,
    *,
    config: dict[str, Any] | None = None,
    memo: dict | None = None,
) -> Scalar:
    """Value of a grid position: formulas evaluated, literals returned, empty is ``None``."""
    sheet = workbook.sheet_by_id(sheet_id)
    if sheet is None:
        return ErrorValue.REF
    cell = sheet.cell_at(row, col)
    if cell is None:
        return None
    if cell.formula:
        return evaluate_formula(
            cell.formula, workbook, sheet_id, row=row, col=col, config=config, memo=memo
        )
    return _literal(cell.value)


@contextmanager
def _recursion_headroom(max_depth: int) -> Iterator[None]:
    """Raise the interpreter recursion limit so the depth ceiling is what stops a chain."""
    previous = sys.getrecursionlimit()
    sys.setrecursionlimit(previous + max_depth * _FRAMES_PER_LEVEL)
    try:
        yield
    finally:
        sys.setrecursionlimit(previous)


def _literal(value: Any) -> Any:
    return None if value == "" else value


def _evaluate_text(formula: str, ctx: EvaluationContext) -> Scalar:
    try:
        tree = parse_formula(formula)
    except FormulaParseError as exc:
        logger.debug("Parse failed for %r, classifying as literal: %s", formula, exc)
        return classify_literal(formula.strip()[1:])
    return _evaluate_tree(tree, ctx)


def _evaluate_tree(tree: Tree, ctx: EvaluationContext) -> Scalar:
    """Walk a formula tree, converting any failure into a sentinel."""
    try:
        result = _eval(tree, ctx)
    except RecursionError:
        logger.debug("Python recursion limit hit in %s", ctx.origin_key())
        ctx.mark_depth_exceeded()
        return ErrorValue.ERROR
    except Exception as exc:
        sentinel = error_value_for(exc)
        if isinstance(exc, FormulaError) and not isinstance(exc, FormulaRefError):
            emit_warning(
                EventType.formula_error,
                str(exc),
                {"sheet_id": ctx.sheet_id, "cell": ctx.origin_key()},
                error_code=sentinel,
            )
        return sentinel
    if isinstance(result, float):
        return normalize_number(result)
    return result


# ---------------------------------------------------------------------------
# Cell resolution
# ---------------------------------------------------------------------------


def resolve_cell(ctx: EvaluationContext, sheet_id: str, row: int, col: int) -> Any:
    """Resolve one grid position; formula cells recurse through the guard."""
    sheet = ctx.sheet(sheet_id)
    cell = sheet.cell_at(row, col)
    if cell is None:
        return None
    if not cell.formula:
        return _literal(cell.value)

    hit, cached = ctx.memo_get(sheet_id, row, col)
    if hit:
        return cached

    address = make_addr(row, col)
    try:
        with ctx.visiting(sheet_id, address):
            result = _evaluate_text(cell.formula, ctx.at(sheet_id, row, col))
    except CircularReferenceError as exc:
        path = ctx.cycle_path(exc.key)
        logger.debug("Circular reference: %s", " -> ".join(path))
        emit_warning(
            EventType.circular_reference,
            f"Circular cell reference: {' -> '.join(path)}",
            {"sheet_id": sheet_id, "cell": address},
            error_code=ErrorValue.CIRCULAR,
        )
        return ErrorValue.CIRCULAR
    except EvaluationDepthError as exc:
        emit_warning(
            EventType.depth_exceeded,
            str(exc),
            {"sheet_id": sheet_id, "cell": address},
            error_code=ErrorValue.ERROR,
        )
        return ErrorValue.ERROR

    ctx.memo_put(sheet_id, row, col, result)
    return result


def _resolve_ref(node: Tree, ctx: EvaluationContext) -> tuple[str, CellRef]:
    """Resolve a cell_ref / sheet_cell_ref node to ``(sheet_id, CellRef)``."""
    text = str(node.children[0])
    if node.data == "cell_ref":
        return ctx.sheet_id, parse_cell_ref(text)
    sheet_name, addr = parse_sheet_ref(text)
    sheet = ctx.workbook.sheet_by_name(sheet_name)
    if sheet is None:
        raise FormulaRefError(text, f"Sheet not found: {sheet_name!r}")
    return sheet.id, parse_cell_ref(addr)


def eval_range(node: Tree | Token, ctx: EvaluationContext) -> tuple[str, RangeRef]:
    """Resolve a reference argument to ``(sheet_id, RangeRef)``.

    A single cell reference gives a 1x1 range.

    Raises:
        FormulaRefError: If *node* is not a reference.
    """
    if not isinstance(node, Tree) or node.data not in _REF_RULES:
        raise FormulaRefError(str(node), "Expected a cell or range reference")
    if node.data in _RANGE_RULES:
        start_tok, end_tok = node.children
        if node.data == "range_ref":
            sheet_id = ctx.sheet_id
            start = parse_cell_ref(str(start_tok))
        else:
            sheet_id, start = _resolve_ref(Tree("sheet_cell_ref", [start_tok]), ctx)
        return sheet_id, RangeRef.from_cells(start, parse_cell_ref(str(end_tok)))
    sheet_id, ref = _resolve_ref(node, ctx)
    return sheet_id, RangeRef.from_cells(ref, ref)


def eval_values(node: Tree | Token, ctx: EvaluationContext) -> list[Any]:
    """Evaluate an argument to a flat list: ranges expand row-major, scalars wrap."""
    if isinstance(node, Tree) and node.data in _RANGE_RULES:
        sheet_id, rng = eval_range(node, ctx)
        return [resolve_cell(ctx, sheet_id, r, c) for r, c in rng.cells()]
    return [eval_node(node, ctx)]


def eval_node(node: Tree | Token, ctx: EvaluationContext) -> Any:
    return _eval(node, ctx)


# ---------------------------------------------------------------------------
# Tree walker
# ---------------------------------------------------------------------------


def _eval(node: Tree | Token, ctx: EvaluationContext) -> Any:
    """Recursively evaluate a tree node."""
    if isinstance(node, Token):
        return _eval_token(node)

    rule = node.data

    # Start rule just wraps expr
    if rule == "start":
        return _eval(node.children[0], ctx)

    # Arithmetic
    if rule in _ARITHMETIC:
        left = _eval(node.children[0], ctx)
        right = _eval(node.children[1], ctx)
        err = first_error(left, right)
        if err:
            return err
        return _ARITHMETIC[rule](to_number(left), to_number(right))
    if rule == "neg":
        value = _eval(node.children[0], ctx)
        return value if is_error(value) else -to_number(value)
    if rule == "pos":
        value = _eval(node.children[0], ctx)
        return value if is_error(value) else to_number(value)
    if rule == "percent":
        value = _eval(node.children[0], ctx)
        return value if is_error(value) else to_number(value) / 100

    # Concatenation
    if rule == "concat":
        left = _eval(node.children[0], ctx)
        right = _eval(node.children[1], ctx)
        return first_error(left, right) or to_text(left) + to_text(right)

    # Comparison
    if rule in _COMPARISONS:
        left = _eval(node.children[0], ctx)
        right = _eval(node.children[1], ctx)
        err = first_error(left, right)
        if err:
            return err
        return _COMPARISONS[rule](left, right)

    # Literals
    if rule == "number":
        return _parse_number(node.children[0])
    if rule == "currency":
        return normalize_number(float(str(node.children[0])[1:].replace(",", "")))
    if rule == "boolean":
        return str(node.children[0]) == "TRUE"
    if rule == "string":
        return unescape_string(str(node.children[0]))
    if rule == "error_literal":
        return str(node.children[0])
    if rule == "name":
        # Bare identifiers read as their own text
        return str(node.children[0])

    # References
    if rule in ("cell_ref", "sheet_cell_ref"):
        sheet_id, ref = _resolve_ref(node, ctx)
        return resolve_cell(ctx, sheet_id, ref.row, ref.col)
    if rule in _RANGE_RULES:
        # Outside an aggregating position a range reads as its top-left cell
        sheet_id, rng = eval_range(node, ctx)
        return resolve_cell(ctx, sheet_id, rng.start_row, rng.start_col)

    # Function call
    if rule == "func_call":
        return _eval_func(node, ctx)

    raise FormulaError(f"Unknown node type: {rule}")


def _eval_token(token: Token) -> Any:
    """Evaluate a bare token (shouldn't normally happen at top level)."""
    if token.type == "NUMBER":
        return _parse_number(token)
    if token.type == "BOOL":
        return str(token) == "TRUE"
    if token.type == "ESCAPED_STRING":
        return unescape_string(str(token))
    return str(token)


def _parse_number(token: Token) -> int | float:
    """Parse a NUMBER token to int or float."""
    s = str(token)
    if "." in s or "e" in s or "E" in s:
        return normalize_number(float(s))
    return int(s)


def _div(left: float, right: float) -> Any:
    if right == 0:
        return ErrorValue.DIV0
    return left / right


_ARITHMETIC = {
    "add": lambda a, b: a + b,
    "sub": lambda a, b: a - b,
    "mul": lambda a, b: a * b,
    "div": _div,
    "pow": power,
}

_COMPARISONS = {
    "gt": lambda a, b: to_number(a) > to_number(b),
    "lt": lambda a, b: to_number(a) < to_number(b),
    "gte": lambda a, b: to_number(a) >= to_number(b),
    "lte": lambda a, b: to_number(a) <= to_number(b),
    "eq": values_equal,
    "neq": lambda a, b: not values_equal(a, b),
}


# ---------- Function dispatch ----------


def _eval_func(node: Tree, ctx: EvaluationContext) -> Any:
    """Evaluate a function call node.

    Every function receives its unevaluated argument subtrees and decides
    when (and whether) to evaluate them.
    """
    func_name = str(node.children[0]).upper()
    args_node = node.children[1]
    raw_args = list(args_node.children) if args_node.children else []

    if func_name not in _FUNC_TABLE:
        raise FormulaFunctionError(func_name)
    return _FUNC_TABLE[func_name](raw_args, ctx)
