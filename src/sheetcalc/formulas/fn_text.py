"""Text functions: CONCATENATE, LEFT, RIGHT, MID, LEN, UPPER, LOWER, TRIM."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.coercion import is_error, to_text
from sheetcalc.formulas.errors import FormulaFunctionError, FormulaValueError

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext


def _fn_concatenate(args: list, ctx: EvaluationContext) -> str:
    """CONCATENATE(text1, ...) — ranges contribute every cell, row-major."""
    if len(args) < 1:
        raise FormulaFunctionError("CONCATENATE", "CONCATENATE requires at least 1 argument")
    parts: list[str] = []
    for arg in args:
        for v in ctx.values(arg):
            if is_error(v):
                raise FormulaValueError(v)
            parts.append(to_text(v))
    return "".join(parts)


def _count_arg(args: list, idx: int, ctx: EvaluationContext, default: int) -> int:
    if len(args) <= idx:
        return default
    return max(0, int(ctx.number(args[idx])))


def _fn_left(args: list, ctx: EvaluationContext) -> str:
    """LEFT(text, [n]) — first n characters (default 1)."""
    if len(args) not in (1, 2):
        raise FormulaFunctionError("LEFT", "LEFT requires 1 or 2 arguments")
    text = ctx.text(args[0])
    return text[:_count_arg(args, 1, ctx, 1)]


def _fn_right(args: list, ctx: EvaluationContext) -> str:
    """RIGHT(text, [n]) — last n characters (default 1)."""
    if len(args) not in (1, 2):
        raise FormulaFunctionError("RIGHT", "RIGHT requires 1 or 2 arguments")
    text = ctx.text(args[0])
    n = _count_arg(args, 1, ctx, 1)
    return text[max(0, len(text) - n):]


def _fn_mid(args: list, ctx: EvaluationContext) -> str:
    """MID(text, start, [n]) — n characters from 1-based start (default: to the end)."""
    if len(args) not in (2, 3):
        raise FormulaFunctionError("MID", "MID requires 2 or 3 arguments")
    text = ctx.text(args[0])
    start = max(0, int(ctx.number(args[1])) - 1)
    n = _count_arg(args, 2, ctx, len(text))
    return text[start:start + n]


def _one_text(name: str, args: list, ctx: EvaluationContext) -> str:
    if len(args) != 1:
        raise FormulaFunctionError(name, f"{name} requires exactly 1 argument")
    return ctx.text(args[0])


def _fn_len(args: list, ctx: EvaluationContext) -> int:
    return len(_one_text("LEN", args, ctx))


def _fn_upper(args: list, ctx: EvaluationContext) -> str:
    return _one_text("UPPER", args, ctx).upper()


def _fn_lower(args: list, ctx: EvaluationContext) -> str:
    return _one_text("LOWER", args, ctx).lower()


def _fn_trim(args: list, ctx: EvaluationContext) -> str:
    """TRIM(text) — strip the ends and collapse inner whitespace runs to one space."""
    return " ".join(_one_text("TRIM", args, ctx).split())


TEXT_FUNCTIONS: dict[str, Any] = {
    "CONCATENATE": _fn_concatenate,
    "LEFT": _fn_left,
    "RIGHT": _fn_right,
    "MID": _fn_mid,
    "LEN": _fn_len,
    "UPPER": _fn_upper,
    "LOWER": _fn_lower,
    "TRIM": _fn_trim,
}
