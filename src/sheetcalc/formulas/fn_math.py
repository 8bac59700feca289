"""Math functions: ROUND, ROUNDUP, ROUNDDOWN, ABS, SQRT, POWER."""

from __future__ import annotations

import math
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.coercion import normalize_number
from sheetcalc.formulas.errors import ErrorValue, FormulaFunctionError, FormulaValueError

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext


def _round(name: str, args: list, ctx: EvaluationContext, mode: str) -> Any:
    if len(args) not in (1, 2):
        raise FormulaFunctionError(name, f"{name} requires 1 or 2 arguments")
    value = ctx.number(args[0])
    digits = int(ctx.number(args[1])) if len(args) == 2 else 0
    if not math.isfinite(value):
        raise FormulaValueError(ErrorValue.NUM)
    # Decimal on the shortest repr avoids 2.675 -> 2.67 style float artefacts.
    try:
        quantum = Decimal(1).scaleb(-digits)
        result = Decimal(repr(float(value))).quantize(quantum, rounding=mode)
    except InvalidOperation as exc:
        raise FormulaValueError(ErrorValue.NUM, str(exc)) from exc
    return normalize_number(float(result))


def _fn_round(args: list, ctx: EvaluationContext) -> Any:
    """ROUND(value, [digits]) — half away from zero."""
    return _round("ROUND", args, ctx, ROUND_HALF_UP)


def _fn_roundup(args: list, ctx: EvaluationContext) -> Any:
    """ROUNDUP(value, [digits]) — toward positive infinity."""
    return _round("ROUNDUP", args, ctx, ROUND_CEILING)


def _fn_rounddown(args: list, ctx: EvaluationContext) -> Any:
    """ROUNDDOWN(value, [digits]) — toward negative infinity."""
    return _round("ROUNDDOWN", args, ctx, ROUND_FLOOR)


def _fn_abs(args: list, ctx: EvaluationContext) -> Any:
    if len(args) != 1:
        raise FormulaFunctionError("ABS", "ABS requires exactly 1 argument")
    return abs(ctx.number(args[0]))


def _fn_sqrt(args: list, ctx: EvaluationContext) -> Any:
    if len(args) != 1:
        raise FormulaFunctionError("SQRT", "SQRT requires exactly 1 argument")
    value = ctx.number(args[0])
    if value < 0:
        return ErrorValue.NUM
    return math.sqrt(value)


def power(base: float, exp: float) -> Any:
    """Shared by POWER and the ``^`` operator.

    Computed in floats so huge integer exponents cannot stall.  Overflow is
    #DIV/0! like any other infinite result; a complex result is #NUM!.
    """
    try:
        result = float(base) ** float(exp)
    except (ZeroDivisionError, OverflowError):
        return ErrorValue.DIV0
    if isinstance(result, complex):
        return ErrorValue.NUM
    return normalize_number(result)


def _fn_power(args: list, ctx: EvaluationContext) -> Any:
    """POWER(base, exponent) — same results as the ``^`` operator."""
    if len(args) != 2:
        raise FormulaFunctionError("POWER", "POWER requires exactly 2 arguments")
    return power(ctx.number(args[0]), ctx.number(args[1]))


MATH_FUNCTIONS: dict[str, Any] = {
    "ROUND": _fn_round,
    "ROUNDUP": _fn_roundup,
    "ROUNDDOWN": _fn_rounddown,
    "ABS": _fn_abs,
    "SQRT": _fn_sqrt,
    "POWER": _fn_power,
}
