"""Per-evaluation state: the circular-reference guard, depth ceiling and memo.

One :class:`EvaluationContext` is created per top-level ``evaluate()`` call.
Nested cell evaluations get a child context via :meth:`EvaluationContext.at`
that shares the same :class:`_GuardState`, so a cell reached again while it
is still on the stack is detected no matter which sheet it lives on.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

from sheetcalc.formulas.coercion import is_error, to_number, to_text
from sheetcalc.formulas.errors import (
    CircularReferenceError,
    EvaluationDepthError,
    FormulaRefError,
    FormulaValueError,
)
from sheetcalc.formulas.refs import RangeRef, make_addr

if TYPE_CHECKING:
    from lark import Token, Tree

    from sheetcalc.workbook import Sheet, Workbook

DEFAULT_MAX_DEPTH = 100

MemoKey = tuple[str, int, int, int]


class _GuardState:
    """State shared by reference across one top-level evaluation."""

    def __init__(self, max_depth: int, memo: dict[MemoKey, Any] | None) -> None:
        self.max_depth = max_depth
        self.memo = memo
        self.evaluating: set[str] = set()
        self.stack: list[str] = []
        self.cycle_seen = False
        self.depth_exceeded = False


class EvaluationContext:
    """Everything a function or the tree walker needs to resolve values.

    Parameters
    ----------
    workbook : Workbook
        The workbook being read. Never modified.
    sheet_id : str
        Sheet that owns the formula; bare cell references resolve here.
    origin : tuple[int, int] | None
        0-based ``(row, col)`` of the cell being computed, when known.
    max_depth : int
        Ceiling on the number of nested formula cells.
    memo : dict | None
        Optional cache of formula cell results keyed by
        ``(sheet_id, row, col, workbook.version)``.
    """

    def __init__(
        self,
        workbook: Workbook,
        sheet_id: str,
        origin: tuple[int, int] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        memo: dict[MemoKey, Any] | None = None,
        _state: _GuardState | None = None,
    ) -> None:
        self.workbook = workbook
        self.sheet_id = sheet_id
        self.origin = origin
        self._state = _state or _GuardState(max_depth, memo)

    # ------------------------------------------------------------------
    # Guard
    # ------------------------------------------------------------------

    @property
    def evaluating(self) -> set[str]:
        return self._state.evaluating

    @property
    def depth(self) -> int:
        return len(self._state.stack)

    @property
    def cycle_seen(self) -> bool:
        return self._state.cycle_seen

    @property
    def depth_exceeded(self) -> bool:
        return self._state.depth_exceeded

    def mark_depth_exceeded(self) -> None:
        self._state.depth_exceeded = True

    @contextmanager
    def visiting(self, sheet_id: str, address: str) -> Iterator[None]:
        """Mark ``sheet_id:address`` as being evaluated for the duration of the block.

        Raises:
            CircularReferenceError: If the cell is already being evaluated.
            EvaluationDepthError: If the chain is longer than ``max_depth``.
        """
        state = self._state
        key = f"{sheet_id}:{address.upper()}"
        if key in state.evaluating:
            state.cycle_seen = True
            raise CircularReferenceError(key)
        if len(state.stack) >= state.max_depth:
            state.depth_exceeded = True
            raise EvaluationDepthError(state.max_depth)
        state.evaluating.add(key)
        state.stack.append(key)
        try:
            yield
        finally:
            state.evaluating.discard(key)
            if state.stack and state.stack[-1] == key:
                state.stack.pop()

    def cycle_path(self, key: str) -> list[str]:
        """The chain of cell keys from the first visit of *key* back to *key*."""
        stack = self._state.stack
        if key not in stack:
            return [key]
        return stack[stack.index(key):] + [key]

    # ------------------------------------------------------------------
    # Memo
    # ------------------------------------------------------------------

    def memo_get(self, sheet_id: str, row: int, col: int) -> tuple[bool, Any]:
        memo = self._state.memo
        if memo is None:
            return False, None
        key = (sheet_id, row, col, self.workbook.version)
        if key in memo:
            return True, memo[key]
        return False, None

    def memo_put(self, sheet_id: str, row: int, col: int, value: Any) -> None:
        # After a cycle or the depth ceiling, results depend on where the pass started.
        state = self._state
        if state.memo is None or state.cycle_seen or state.depth_exceeded:
            return
        state.memo[(sheet_id, row, col, self.workbook.version)] = value

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def at(self, sheet_id: str, row: int, col: int) -> EvaluationContext:
        """Child context for evaluating the formula stored at another cell."""
        return EvaluationContext(
            self.workbook, sheet_id, origin=(row, col), _state=self._state
        )

    def sheet(self, sheet_id: str | None = None) -> Sheet:
        sid = sheet_id or self.sheet_id
        sheet = self.workbook.sheet_by_id(sid)
        if sheet is None:
            raise FormulaRefError(sid, f"Sheet not found: {sid!r}")
        return sheet

    def origin_key(self) -> str | None:
        if self.origin is None:
            return None
        return f"{self.sheet_id}:{make_addr(*self.origin)}"

    # ------------------------------------------------------------------
    # Value access for the function library
    # ------------------------------------------------------------------

    def eval(self, node: Tree | Token) -> Any:
        """Evaluate an argument subtree to a scalar (a range gives its top-left value)."""
        # Local import to avoid circular dependency
        from sheetcalc.formulas.evaluator import eval_node

        return eval_node(node, self)

    def scalar(self, node: Tree | Token) -> Any:
        """Like :meth:`eval`, but an error value aborts the calling function with that error."""
        value = self.eval(node)
        if is_error(value):
            raise FormulaValueError(value)
        return value

    def number(self, node: Tree | Token) -> float | int:
        return to_number(self.scalar(node))

    def text(self, node: Tree | Token) -> str:
        return to_text(self.scalar(node))

    def values(self, node: Tree | Token) -> list[Any]:
        """Evaluate an argument to a flat row-major list (ranges expand)."""
        from sheetcalc.formulas.evaluator import eval_values

        return eval_values(node, self)

    def range(self, node: Tree | Token) -> tuple[str, RangeRef]:
        """Resolve a reference argument to ``(sheet_id, RangeRef)`` without evaluating it."""
        from sheetcalc.formulas.evaluator import eval_range

        return eval_range(node, self)

    def cell_value(self, sheet_id: str, row: int, col: int) -> Any:
        """Value at a grid position; formulas are evaluated through the guard."""
        from sheetcalc.formulas.evaluator import resolve_cell

        return resolve_cell(self, sheet_id, row, col)
