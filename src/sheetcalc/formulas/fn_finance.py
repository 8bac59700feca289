"""Financial formula functions: NPV, IRR, PMT, PV, FV."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sheetcalc.formulas.coercion import is_error, try_number
from sheetcalc.formulas.errors import ErrorValue, FormulaFunctionError, FormulaValueError

if TYPE_CHECKING:
    from sheetcalc.formulas.context import EvaluationContext

_RANGE_RULES = ("range_ref", "sheet_range_ref")


def _cashflows(args: list, ctx: EvaluationContext) -> list[float]:
    """Flatten cash-flow arguments; ranges contribute their numeric cells."""
    flows: list[float] = []
    for arg in args:
        if getattr(arg, "data", None) in _RANGE_RULES:
            for v in ctx.values(arg):
                if is_error(v):
                    raise FormulaValueError(v)
                num = try_number(v)
                if num is not None:
                    flows.append(float(num))
        else:
            flows.append(float(ctx.number(arg)))
    return flows


def _fn_npv(args: list, ctx: EvaluationContext) -> float:
    """NPV(rate, cf1, cf2, ...) — net present value.

    Discounts from t=1: NPV = sum(cf_i / (1+rate)^i).
    Does NOT include an initial investment at t=0.
    """
    if len(args) < 2:
        raise FormulaFunctionError("NPV", "NPV requires at least 2 arguments (rate, cf1, ...)")
    rate = float(ctx.number(args[0]))
    total = 0.0
    for i, cf in enumerate(_cashflows(args[1:], ctx), start=1):
        total += cf / (1 + rate) ** i
    return total


def _irr_newton(cashflows: list[float], guess: float = 0.1, max_iter: int = 100, tol: float = 1e-6) -> float | None:
    """Newton-Raphson method for IRR; converged once |NPV| < tol."""
    rate = guess
    for _ in range(max_iter):
        if rate <= -1:
            return None
        npv = sum(cf / (1 + rate) ** i for i, cf in enumerate(cashflows))
        if abs(npv) < tol:
            return rate
        dnpv = sum(-i * cf / (1 + rate) ** (i + 1) for i, cf in enumerate(cashflows))
        if dnpv == 0:
            return None
        rate = rate - npv / dnpv
    return None


def _fn_irr(args: list, ctx: EvaluationContext) -> Any:
    """IRR(cf0, cf1, ...) — internal rate of return over equal periods.

    Cash flows may be given as ranges. #NUM! when Newton-Raphson does not
    converge within 100 iterations.
    """
    if len(args) < 1:
        raise FormulaFunctionError("IRR", "IRR requires at least 1 argument")
    cashflows = _cashflows(args, ctx)
    if len(cashflows) < 2:
        return ErrorValue.NUM
    try:
        result = _irr_newton(cashflows)
    except (OverflowError, ZeroDivisionError):
        result = None
    return ErrorValue.NUM if result is None else result


def _optional(args: list, idx: int, ctx: EvaluationContext) -> float:
    return float(ctx.number(args[idx])) if len(args) > idx else 0.0


def _fn_pmt(args: list, ctx: EvaluationContext) -> float:
    """PMT(rate, nper, pv, [fv], [type]) — payment per period."""
    if len(args) < 3 or len(args) > 5:
        raise FormulaFunctionError("PMT", "PMT requires 3 to 5 arguments")
    rate, nper, pv = (float(ctx.number(a)) for a in args[:3])
    fv = _optional(args, 3, ctx)
    when = _optional(args, 4, ctx)
    if rate == 0:
        return -(pv + fv) / nper
    pvif = (1 + rate) ** nper
    return (-pv * pvif - fv) / (((pvif - 1) / rate) * (1 + rate * when))


def _fn_pv(args: list, ctx: EvaluationContext) -> float:
    """PV(rate, nper, pmt, [fv], [type]) — present value."""
    if len(args) < 3 or len(args) > 5:
        raise FormulaFunctionError("PV", "PV requires 3 to 5 arguments")
    rate, nper, pmt = (float(ctx.number(a)) for a in args[:3])
    fv = _optional(args, 3, ctx)
    when = _optional(args, 4, ctx)
    if rate == 0:
        return -pmt * nper - fv
    pvif = (1 + rate) ** nper
    return (-pmt * ((pvif - 1) / rate) * (1 + rate * when) - fv) / pvif


def _fn_fv(args: list, ctx: EvaluationContext) -> float:
    """FV(rate, nper, pmt, [pv], [type]) — future value."""
    if len(args) < 3 or len(args) > 5:
        raise FormulaFunctionError("FV", "FV requires 3 to 5 arguments")
    rate, nper, pmt = (float(ctx.number(a)) for a in args[:3])
    pv = _optional(args, 3, ctx)
    when = _optional(args, 4, ctx)
    if rate == 0:
        return -pv - pmt * nper
    fvif = (1 + rate) ** nper
    return -pv * fvif - pmt * ((fvif - 1) / rate) * (1 + rate * when)


FINANCE_FUNCTIONS: dict[str, Any] = {
    "NPV": _fn_npv,
    "IRR": _fn_irr,
    "PMT": _fn_pmt,
    "PV": _fn_pv,
    "FV": _fn_fv,
}
