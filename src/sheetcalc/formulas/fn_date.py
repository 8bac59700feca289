"""Date formula functions: TODAY, NOW, DATE, YEAR, MONTH, DAY.

Dates are serial numbers: whole days since 1899-12-30, so 1900-01-01 is
serial 2.  NOW adds the elapsed fraction of the current day.
"""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.coercion import to_number
from sheetcalc.formulas.errors import ErrorValue, FormulaFunctionError, FormulaValueError

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext

_EPOCH = datetime.date(1899, 12, 30)


def date_to_serial(d: datetime.date) -> int:
    return (d - _EPOCH).days


def serial_to_date(serial: float) -> datetime.date:
    try:
        return _EPOCH + datetime.timedelta(days=int(serial))
    except OverflowError as exc:
        raise FormulaValueError(ErrorValue.NUM, f"Serial out of range: {serial}") from exc


def _coerce_date(val: Any) -> datetime.date:
    """Convert a value to a datetime.date.

    Accepts:
    - ISO format strings ("YYYY-MM-DD")
    - serial numbers (int, float or numeric text)
    """
    if isinstance(val, str):
        try:
            return datetime.date.fromisoformat(val.strip())
        except ValueError:
            pass
    return serial_to_date(to_number(val))


def _fn_today(args: list, ctx: EvaluationContext) -> int:
    if args:
        raise FormulaFunctionError("TODAY", "TODAY takes no arguments")
    return date_to_serial(datetime.date.today())


def _fn_now(args: list, ctx: EvaluationContext) -> float:
    """NOW() — serial of today plus the elapsed fraction of the day (local time)."""
    if args:
        raise FormulaFunctionError("NOW", "NOW takes no arguments")
    now = datetime.datetime.now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    fraction = (now - midnight).total_seconds() / 86400
    return date_to_serial(now.date()) + fraction


def _fn_date(args: list, ctx: EvaluationContext) -> int:
    """DATE(year, month, day) — serial of a date.

    Months and days outside their normal range roll over, so
    DATE(2024, 13, 1) is 2025-01-01 and DATE(2024, 3, 0) is 2024-02-29.
    """
    if len(args) != 3:
        raise FormulaFunctionError("DATE", "DATE requires exactly 3 arguments (year, month, day)")
    year, month, day = (int(ctx.number(a)) for a in args)
    total_months = year * 12 + (month - 1)
    try:
        first = datetime.date(total_months // 12, total_months % 12 + 1, 1)
        return date_to_serial(first + datetime.timedelta(days=day - 1))
    except (ValueError, OverflowError) as exc:
        raise FormulaValueError(ErrorValue.NUM, f"Invalid date: {exc}") from exc


def _fn_year(args: list, ctx: EvaluationContext) -> int:
    """YEAR(date) — extract year from a date."""
    if len(args) != 1:
        raise FormulaFunctionError("YEAR", "YEAR requires exactly 1 argument")
    return _coerce_date(ctx.scalar(args[0])).year


def _fn_month(args: list, ctx: EvaluationContext) -> int:
    """MONTH(date) — extract month from a date."""
    if len(args) != 1:
        raise FormulaFunctionError("MONTH", "MONTH requires exactly 1 argument")
    return _coerce_date(ctx.scalar(args[0])).month


def _fn_day(args: list, ctx: EvaluationContext) -> int:
    """DAY(date) — extract day from a date."""
    if len(args) != 1:
        raise FormulaFunctionError("DAY", "DAY requires exactly 1 argument")
    return _coerce_date(ctx.scalar(args[0])).day


DATE_FUNCTIONS: dict[str, Any] = {
    "TODAY": _fn_today,
    "NOW": _fn_now,
    "DATE": _fn_date,
    "YEAR": _fn_year,
    "MONTH": _fn_month,
    "DAY": _fn_day,
}
