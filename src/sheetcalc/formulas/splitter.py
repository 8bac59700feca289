"""Paren- and quote-aware scanning of raw formula text.

The grammar in :mod:`sheetcalc.formulas.parser` does the real parsing; these
helpers work on the text before (or instead of) a full parse: splitting an
argument list on top-level commas, locating ``NAME(...)`` calls and their
matching ``)``, and pinpointing unbalanced parentheses for diagnostics.
"""

from __future__ import annotations

import re
from typing import Iterator, NamedTuple

from sheetcalc.formulas.errors import FormulaParseError

_CALL_RE = re.compile(r"[A-Z][A-Z0-9_]*(?:\.[A-Z0-9_]+)*\s*\(")


class FunctionCall(NamedTuple):
    """A ``NAME(args)`` occurrence; ``end`` is the index of the closing paren."""

    name: str
    args_text: str
    start: int
    end: int


def _scan(text: str) -> Iterator[tuple[int, str, int]]:
    """Yield ``(index, char, depth)`` for every character outside string literals.

    ``depth`` is the parenthesis depth before the character is applied.
    """
    depth = 0
    in_string = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            i += 1
            continue
        yield i, ch, depth
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        i += 1


def smart_split(expr: str, delimiter: str) -> list[str]:
    """Split *expr* on *delimiter* where it appears at paren depth 0.

    Delimiters inside parentheses or string literals are ignored. Parts are
    returned unstripped.
    """
    parts: list[str] = []
    last = 0
    for i, ch, depth in _scan(expr):
        if ch == delimiter and depth == 0:
            parts.append(expr[last:i])
            last = i + 1
    parts.append(expr[last:])
    return parts


def split_arguments(args_text: str) -> list[str]:
    """Split a function's argument text on top-level commas.

    ``'A1, IF(B1>0, "a,b", 2)'`` → ``['A1', 'IF(B1>0, "a,b", 2)']``
    """
    if not args_text.strip():
        return []
    return [part.strip() for part in smart_split(args_text, ",")]


def _matching_paren(expr: str, open_idx: int) -> int:
    """Index of the ``)`` matching the ``(`` at *expr[open_idx]*, or -1."""
    for i, ch, depth in _scan(expr[open_idx:]):
        if ch == ")" and depth == 1:
            return open_idx + i
    return -1


def find_function_call(expr: str, start: int = 0) -> FunctionCall | None:
    """Detect a ``NAME(`` call beginning exactly at *start*.

    Returns ``None`` when there is no call there or its parenthesis is
    never closed.
    """
    m = _CALL_RE.match(expr, start)
    if not m:
        return None
    open_idx = m.end() - 1
    close_idx = _matching_paren(expr, open_idx)
    if close_idx < 0:
        return None
    name = expr[start:open_idx].strip()
    return FunctionCall(name, expr[open_idx + 1:close_idx], start, close_idx)


def is_single_call(expr: str) -> bool:
    """True when the whole (trimmed) expression is one function call."""
    stripped = expr.strip()
    call = find_function_call(stripped)
    return call is not None and call.end == len(stripped) - 1


def iter_function_calls(expr: str) -> Iterator[FunctionCall]:
    """Yield every function call in *expr*, outermost first.

    Positions are relative to *expr*. Calls nested in an argument list are
    yielded after the call that contains them.
    """
    i = 0
    in_string = False
    while i < len(expr):
        ch = expr[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            i += 1
            continue
        # Only a name boundary can start a call (avoids matching "UM(" in "SUM(").
        if i == 0 or not (expr[i - 1].isalnum() or expr[i - 1] in "_.$"):
            call = find_function_call(expr, i)
            if call is not None:
                yield call
                offset = call.end - len(call.args_text)
                for inner in iter_function_calls(call.args_text):
                    yield inner._replace(start=inner.start + offset, end=inner.end + offset)
                i = call.end + 1
                continue
        i += 1


def check_balanced(expr: str) -> None:
    """Raise :class:`FormulaParseError` on unbalanced parens or an open string."""
    opened: list[int] = []
    in_string_at = -1
    i = 0
    while i < len(expr):
        ch = expr[i]
        if in_string_at >= 0:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string_at = -1
        elif ch == '"':
            in_string_at = i
        elif ch == "(":
            opened.append(i)
        elif ch == ")":
            if not opened:
                raise FormulaParseError("Unmatched ')'", position=i)
            opened.pop()
        i += 1
    if in_string_at >= 0:
        raise FormulaParseError("Unterminated string literal", position=in_string_at)
    if opened:
        raise FormulaParseError("Unclosed '('", position=opened[-1])
