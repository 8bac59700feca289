"""Aggregate and conditional aggregate functions.

SUM, AVERAGE, COUNT, COUNTA, MAX, MIN, STDEV(.S), VAR(.S), SUMIF,
COUNTIF, AVERAGEIF.

Range arguments contribute only their numeric-coercible cells; scalar
arguments are coerced with ``to_number``.  An error value anywhere in the
arguments is returned as the result.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.coercion import is_error, to_number, to_text, try_number, values_equal
from sheetcalc.formulas.errors import FormulaFunctionError, FormulaValueError

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext

_RANGE_RULES = ("range_ref", "sheet_range_ref")


def _is_range(node: Any) -> bool:
    return getattr(node, "data", None) in _RANGE_RULES


def _numbers(name: str, args: list, ctx: EvaluationContext) -> list[float | int]:
    """Collect the numeric values of all arguments; raise on the first error value."""
    if len(args) < 1:
        raise FormulaFunctionError(name, f"{name} requires at least 1 argument")
    out: list[float | int] = []
    for arg in args:
        if _is_range(arg):
            for v in ctx.values(arg):
                if is_error(v):
                    raise FormulaValueError(v)
                num = try_number(v)
                if num is not None:
                    out.append(num)
        else:
            v = ctx.eval(arg)
            if is_error(v):
                raise FormulaValueError(v)
            out.append(to_number(v))
    return out


def _fn_sum(args: list, ctx: EvaluationContext) -> float | int:
    return sum(_numbers("SUM", args, ctx))


def _fn_average(args: list, ctx: EvaluationContext) -> float | int:
    nums = _numbers("AVERAGE", args, ctx)
    if not nums:
        return 0
    return sum(nums) / len(nums)


def _fn_max(args: list, ctx: EvaluationContext) -> float | int:
    nums = _numbers("MAX", args, ctx)
    return max(nums) if nums else 0


def _fn_min(args: list, ctx: EvaluationContext) -> float | int:
    nums = _numbers("MIN", args, ctx)
    return min(nums) if nums else 0


def _fn_count(args: list, ctx: EvaluationContext) -> int:
    """COUNT(...) — number of numeric-coercible values. Error values are not counted."""
    if len(args) < 1:
        raise FormulaFunctionError("COUNT", "COUNT requires at least 1 argument")
    count = 0
    for arg in args:
        for v in ctx.values(arg):
            if not is_error(v) and try_number(v) is not None:
                count += 1
    return count


def _fn_counta(args: list, ctx: EvaluationContext) -> int:
    """COUNTA(...) — number of non-empty values; error values count."""
    if len(args) < 1:
        raise FormulaFunctionError("COUNTA", "COUNTA requires at least 1 argument")
    return sum(
        1 for arg in args for v in ctx.values(arg) if v is not None and v != ""
    )


def _sample_variance(nums: list[float | int]) -> float:
    mean = sum(nums) / len(nums)
    return sum((x - mean) ** 2 for x in nums) / (len(nums) - 1)


def _fn_stdev(args: list, ctx: EvaluationContext) -> float | int:
    """STDEV(...) — sample standard deviation; 0 with fewer than 2 values."""
    nums = _numbers("STDEV", args, ctx)
    if len(nums) < 2:
        return 0
    return math.sqrt(_sample_variance(nums))


def _fn_var(args: list, ctx: EvaluationContext) -> float | int:
    """VAR(...) — sample variance; 0 with fewer than 2 values."""
    nums = _numbers("VAR", args, ctx)
    if len(nums) < 2:
        return 0
    return _sample_variance(nums)


# ---------------------------------------------------------------------------
# Conditional aggregates
# ---------------------------------------------------------------------------


def meets_criteria(value: Any, criteria: Any) -> bool:
    """Test a cell value against a SUMIF-style criterion.

    Text criteria may start with ``>=``, ``<=``, ``<>``, ``>``, ``<`` (numeric
    comparison) or ``=`` (exact match), or use a leading/trailing ``*``
    wildcard (case-insensitive ends-with/starts-with).  Anything else is an
    exact match.
    """
    if not isinstance(criteria, str):
        return _criteria_equal(value, criteria)
    for op in (">=", "<=", "<>"):
        if criteria.startswith(op):
            target = criteria[len(op):]
            if op == "<>":
                return not _criteria_equal(value, target)
            if op == ">=":
                return to_number(value) >= to_number(target)
            return to_number(value) <= to_number(target)
    if criteria.startswith(">"):
        return to_number(value) > to_number(criteria[1:])
    if criteria.startswith("<"):
        return to_number(value) < to_number(criteria[1:])
    if criteria.startswith("="):
        return _criteria_equal(value, criteria[1:])
    if len(criteria) > 1 and criteria.startswith("*"):
        return to_text(value).lower().endswith(criteria[1:].lower())
    if len(criteria) > 1 and criteria.endswith("*"):
        return to_text(value).lower().startswith(criteria[:-1].lower())
    return _criteria_equal(value, criteria)


def _criteria_equal(value: Any, target: Any) -> bool:
    """Exact match; numeric text in the criterion matches the same number."""
    if isinstance(target, str) and not isinstance(value, str):
        num = try_number(target)
        if num is not None:
            return values_equal(value, num)
    return values_equal(value, target)


def _conditional(name: str, args: list, ctx: EvaluationContext) -> tuple[list[Any], int]:
    """Return the aligned values that meet the criterion, and their count."""
    if len(args) not in (2, 3):
        raise FormulaFunctionError(name, f"{name} requires 2 or 3 arguments")
    sheet_id, rng = ctx.range(args[0])
    criteria = ctx.eval(args[1])
    if is_error(criteria):
        raise FormulaValueError(criteria)
    if len(args) == 3:
        target_sheet, target = ctx.range(args[2])
    else:
        target_sheet, target = sheet_id, rng

    matched: list[Any] = []
    for row, col in rng.cells():
        value = ctx.cell_value(sheet_id, row, col)
        if is_error(value) or not meets_criteria(value, criteria):
            continue
        # Offset-aligned: same position relative to the top-left corner
        aligned = ctx.cell_value(
            target_sheet,
            target.start_row + (row - rng.start_row),
            target.start_col + (col - rng.start_col),
        )
        matched.append(aligned)
    return matched, len(matched)


def _fn_sumif(args: list, ctx: EvaluationContext) -> float | int:
    """SUMIF(range, criteria, [sum_range])."""
    matched, _ = _conditional("SUMIF", args, ctx)
    total: float | int = 0
    for v in matched:
        if is_error(v):
            raise FormulaValueError(v)
        total += to_number(v)
    return total


def _fn_countif(args: list, ctx: EvaluationContext) -> int:
    """COUNTIF(range, criteria)."""
    if len(args) != 2:
        raise FormulaFunctionError("COUNTIF", "COUNTIF requires exactly 2 arguments")
    _, count = _conditional("COUNTIF", args, ctx)
    return count


def _fn_averageif(args: list, ctx: EvaluationContext) -> float | int:
    """AVERAGEIF(range, criteria, [average_range]) — 0 when nothing matches."""
    matched, count = _conditional("AVERAGEIF", args, ctx)
    if count == 0:
        return 0
    total: float | int = 0
    for v in matched:
        if is_error(v):
            raise FormulaValueError(v)
        total += to_number(v)
    return total / count


STATS_FUNCTIONS: dict[str, Any] = {
    "SUM": _fn_sum,
    "AVERAGE": _fn_average,
    "COUNT": _fn_count,
    "COUNTA": _fn_counta,
    "MAX": _fn_max,
    "MIN": _fn_min,
    "STDEV": _fn_stdev,
    "STDEV.S": _fn_stdev,
    "VAR": _fn_var,
    "VAR.S": _fn_var,
    "SUMIF": _fn_sumif,
    "COUNTIF": _fn_countif,
    "AVERAGEIF": _fn_averageif,
}
