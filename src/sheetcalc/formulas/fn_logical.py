"""Logical and error-handling functions: IF, AND, OR, NOT, IFERROR, ISERROR.

IF, AND, OR and IFERROR only evaluate the arguments they need.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.coercion import is_error, to_bool
from sheetcalc.formulas.errors import ENGINE_ERRORS, FormulaFunctionError, error_value_for

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext


def _fn_if(args: list, ctx: EvaluationContext) -> Any:
    """IF(condition, if_true, [if_false]) — a missing else branch gives FALSE."""
    if len(args) not in (2, 3):
        raise FormulaFunctionError("IF", "IF requires 2 or 3 arguments")
    cond = ctx.eval(args[0])
    if is_error(cond):
        return cond
    if to_bool(cond):
        return ctx.eval(args[1])
    if len(args) == 3:
        return ctx.eval(args[2])
    return False


def _fn_and(args: list, ctx: EvaluationContext) -> Any:
    """AND(val1, val2, ...) — FALSE at the first falsy value."""
    if len(args) < 1:
        raise FormulaFunctionError("AND", "AND requires at least 1 argument")
    for arg in args:
        for v in ctx.values(arg):
            if is_error(v):
                return v
            if not to_bool(v):
                return False
    return True


def _fn_or(args: list, ctx: EvaluationContext) -> Any:
    """OR(val1, val2, ...) — TRUE at the first truthy value."""
    if len(args) < 1:
        raise FormulaFunctionError("OR", "OR requires at least 1 argument")
    for arg in args:
        for v in ctx.values(arg):
            if is_error(v):
                return v
            if to_bool(v):
                return True
    return False


def _fn_not(args: list, ctx: EvaluationContext) -> Any:
    if len(args) != 1:
        raise FormulaFunctionError("NOT", "NOT requires exactly 1 argument")
    v = ctx.eval(args[0])
    if is_error(v):
        return v
    return not to_bool(v)


def _eval_trapped(node: Any, ctx: EvaluationContext) -> Any:
    """Evaluate *node*, turning a raised engine error into its sentinel."""
    try:
        return ctx.eval(node)
    except ENGINE_ERRORS as exc:
        return error_value_for(exc)


def _fn_iferror(args: list, ctx: EvaluationContext) -> Any:
    """IFERROR(value, fallback) — fallback is evaluated only when value is an error."""
    if len(args) != 2:
        raise FormulaFunctionError("IFERROR", "IFERROR requires exactly 2 arguments")
    v = _eval_trapped(args[0], ctx)
    if is_error(v):
        return ctx.eval(args[1])
    return v


def _fn_iserror(args: list, ctx: EvaluationContext) -> bool:
    if len(args) != 1:
        raise FormulaFunctionError("ISERROR", "ISERROR requires exactly 1 argument")
    return is_error(_eval_trapped(args[0], ctx))


LOGICAL_FUNCTIONS: dict[str, Any] = {
    "IF": _fn_if,
    "AND": _fn_and,
    "OR": _fn_or,
    "NOT": _fn_not,
    "IFERROR": _fn_iferror,
    "ISERROR": _fn_iserror,
}
