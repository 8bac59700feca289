"""Error types and error sentinels for formula parsing and evaluation.

Exceptions are internal control flow only.  Everything that crosses the
public ``evaluate()`` boundary is a plain scalar, with failures encoded as
the sentinel strings in :class:`ErrorValue`.
"""

from __future__ import annotations


class ErrorValue:
    """Sentinel strings returned in place of a value (stable contract)."""

    ERROR = "#ERROR!"
    DIV0 = "#DIV/0!"
    REF = "#REF!"
    NA = "#N/A"
    NUM = "#NUM!"
    CIRCULAR = "#CIRCULAR!"

    ALL = (ERROR, DIV0, REF, NA, NUM, CIRCULAR)


class FormulaError(Exception):
    """Base class for all formula-related errors."""

    sentinel = ErrorValue.ERROR


class FormulaParseError(FormulaError):
    """Syntax error in a formula expression.

    Attributes:
        position: Character position where the error was detected.
        message: Human-readable description.
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        full = f"Formula parse error: {message}"
        if position is not None:
            full += f" (at position {position})"
        super().__init__(full)


class FormulaRefError(FormulaError):
    """Reference to an unknown sheet or a cell outside the addressable grid.

    Attributes:
        ref_name: The unresolved reference text.
    """

    sentinel = ErrorValue.REF

    def __init__(self, ref_name: str, message: str | None = None) -> None:
        self.ref_name = ref_name
        super().__init__(message or f"Invalid reference: {ref_name!r}")


class InvalidReference(FormulaRefError):
    """Text that does not match the ``[$]COL[$]ROW`` cell address grammar."""


class FormulaFunctionError(FormulaError):
    """Unknown function or wrong number of arguments.

    Attributes:
        func_name: The function that caused the error.
    """

    def __init__(self, func_name: str, message: str | None = None) -> None:
        self.func_name = func_name
        msg = message or f"Unknown function: {func_name!r}"
        super().__init__(msg)


class FormulaValueError(FormulaError):
    """A helper decided the result is a specific sentinel (``#N/A``, ``#NUM!``...)."""

    def __init__(self, sentinel: str, message: str | None = None) -> None:
        self.sentinel = sentinel
        super().__init__(message or sentinel)


class CircularReferenceError(FormulaError):
    """A cell was reached again while it was still being evaluated.

    Attributes:
        key: The ``"{sheet_id}:{address}"`` key that closed the cycle.
    """

    sentinel = ErrorValue.CIRCULAR

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Circular cell reference at {key}")


class EvaluationDepthError(FormulaError):
    """The chain of nested cell references exceeded the configured ceiling."""

    def __init__(self, depth: int) -> None:
        self.depth = depth
        super().__init__(f"Reference chain deeper than {depth} cells")


def error_value_for(exc: BaseException) -> str:
    """Map an exception raised during evaluation to the closest sentinel."""
    if isinstance(exc, FormulaError):
        return exc.sentinel
    if isinstance(exc, ZeroDivisionError):
        return ErrorValue.DIV0
    if isinstance(exc, (OverflowError, ValueError)):
        return ErrorValue.NUM
    return ErrorValue.ERROR


# Exceptions that mean "this expression produced an error value" rather than
# a bug; IFERROR/ISERROR treat them like an error sentinel.
ENGINE_ERRORS = (FormulaError, ArithmeticError, ValueError)
