"""Value coercion shared by the evaluator and the function library."""

from __future__ import annotations

import math
import re
from typing import Any, Union

from sheetcalc.formulas.errors import ErrorValue

Scalar = Union[float, int, str, bool, None]

_STRIP_RE = re.compile(r"[$,\s]")
_FLOAT_PREFIX_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_STRICT_FLOAT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_OPERATOR_RE = re.compile(r"[+\-*/()^]")
_LITERAL_CURRENCY_RE = re.compile(r"^\$\d[\d,]*(?:\.\d+)?$")
_LITERAL_PERCENT_RE = re.compile(r"^\d+(?:\.\d+)?%$")
_LITERAL_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")


def is_error(value: Any) -> bool:
    """True for error sentinels (any string starting with ``#``)."""
    return isinstance(value, str) and value.startswith("#")


def first_error(*values: Any) -> str | None:
    """Return the first error sentinel among *values*, or ``None``."""
    for v in values:
        if is_error(v):
            return v
    return None


def normalize_number(x: float | int) -> float | int | str:
    """Collapse integral floats to ``int``; map non-finite results to sentinels."""
    if isinstance(x, bool) or isinstance(x, int):
        return x
    if math.isnan(x):
        return ErrorValue.NUM
    if math.isinf(x):
        return ErrorValue.DIV0
    if x.is_integer() and abs(x) < 2**53:
        return int(x)
    return x


def _parse_text_number(text: str, strict: bool) -> float | int | None:
    s = _STRIP_RE.sub("", text)
    scale = 1
    if s.endswith("%"):
        s = s[:-1]
        scale = 100
    if strict:
        if not _STRICT_FLOAT_RE.match(s):
            return None
        num = s
    else:
        m = _FLOAT_PREFIX_RE.match(s)
        if not m:
            return None
        num = m.group(0)
    value = float(num) / scale
    return normalize_number(value) if math.isfinite(value) else value


def to_number(value: Any) -> float | int:
    """Coerce a scalar to a number the way arithmetic operands are coerced.

    ``"$1,200"`` → 1200, ``"15%"`` → 0.15, ``None`` → 0, ``True`` → 1,
    unparseable text → 0.
    """
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        parsed = _parse_text_number(value, strict=False)
        return 0 if parsed is None else parsed
    return 0


def try_number(value: Any) -> float | int | None:
    """Return the numeric value of *value* if it is numeric-coercible, else ``None``.

    Booleans, empty cells and text that is not entirely a number are not
    numeric-coercible.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return _parse_text_number(value, strict=True)
    return None


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        upper = value.strip().upper()
        if upper in ("TRUE", "FALSE"):
            return upper == "TRUE"
        return value != ""
    if value is None:
        return False
    return bool(value)


def to_text(value: Any) -> str:
    """Render a scalar the way it appears inside concatenation."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def values_equal(left: Any, right: Any) -> bool:
    """Strict equality: numbers numerically, strings exactly, mixed types unequal."""
    left_num = isinstance(left, (int, float)) and not isinstance(left, bool)
    right_num = isinstance(right, (int, float)) and not isinstance(right, bool)
    if left_num and right_num:
        return left == right
    if left_num or right_num:
        return False
    return type(left) is type(right) and left == right


def classify_literal(text: str) -> Scalar:
    """Interpret formula text the grammar could not parse.

    A double-quoted string yields its contents; bare currency, percentages
    and numbers yield numbers; text with no arithmetic operator is returned
    as a literal string; anything else is ``#ERROR!``.
    """
    t = text.strip()
    if len(t) >= 2 and t.startswith('"') and t.endswith('"'):
        return t[1:-1]
    if _LITERAL_CURRENCY_RE.match(t):
        return normalize_number(float(t[1:].replace(",", "")))
    if _LITERAL_PERCENT_RE.match(t):
        return normalize_number(float(t[:-1]) / 100)
    if _LITERAL_NUMBER_RE.match(t):
        return normalize_number(float(t))
    if not _OPERATOR_RE.search(t):
        return t
    return ErrorValue.ERROR
