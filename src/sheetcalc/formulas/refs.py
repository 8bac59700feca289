"""A1-style cell addresses, ranges and cross-sheet references.

Rows and columns are 0-based internally; the text form is 1-based for rows
and bijective base-26 letters for columns (``A``..``Z``, ``AA``...).
``$`` markers are parsed and preserved but do not change resolution.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, NamedTuple

from sheetcalc.formulas.errors import InvalidReference

if TYPE_CHECKING:
    from sheetcalc.workbook import Workbook

_CELL_RE = re.compile(r"^(\$?)([A-Z]+)(\$?)([0-9]+)$")
_QUOTED_SHEET_RE = re.compile(r"^'([^']+)'\.(.+)$")
_BARE_SHEET_RE = re.compile(r"^([^.']+)\.(.+)$")


def col_letter_to_index(letters: str) -> int:
    """Convert column letter(s) to 0-based index.  A=0, B=1, ..., Z=25, AA=26."""
    idx = 0
    for ch in letters.upper():
        idx = idx * 26 + (ord(ch) - ord("A") + 1)
    return idx - 1


def index_to_col_letter(idx: int) -> str:
    """Convert 0-based column index to letter(s).  0=A, 25=Z, 26=AA."""
    if idx < 0:
        raise ValueError(f"Column index must be >= 0, got {idx}")
    result = ""
    n = idx + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        result = chr(65 + rem) + result
    return result


def make_addr(row: int, col: int) -> str:
    """Build cell address from 0-based row/col."""
    return f"{index_to_col_letter(col)}{row + 1}"


@dataclass(frozen=True)
class CellRef:
    """A parsed cell address."""

    row: int
    col: int
    absolute_row: bool = False
    absolute_col: bool = False

    @property
    def address(self) -> str:
        return make_addr(self.row, self.col)

    def __str__(self) -> str:
        col_mark = "$" if self.absolute_col else ""
        row_mark = "$" if self.absolute_row else ""
        return f"{col_mark}{index_to_col_letter(self.col)}{row_mark}{self.row + 1}"


@dataclass(frozen=True)
class RangeRef:
    """A rectangular block of cells, inclusive on both ends."""

    start_row: int
    start_col: int
    end_row: int
    end_col: int

    def __post_init__(self) -> None:
        # Normalise reversed corners (B3:A1 is the same block as A1:B3).
        if self.start_row > self.end_row:
            r0, r1 = self.end_row, self.start_row
            object.__setattr__(self, "start_row", r0)
            object.__setattr__(self, "end_row", r1)
        if self.start_col > self.end_col:
            c0, c1 = self.end_col, self.start_col
            object.__setattr__(self, "start_col", c0)
            object.__setattr__(self, "end_col", c1)

    @classmethod
    def from_cells(cls, start: CellRef, end: CellRef) -> RangeRef:
        return cls(start.row, start.col, end.row, end.col)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.end_row - self.start_row + 1, self.end_col - self.start_col + 1)

    def cells(self) -> Iterator[tuple[int, int]]:
        """Yield ``(row, col)`` pairs in row-major order."""
        for row in range(self.start_row, self.end_row + 1):
            for col in range(self.start_col, self.end_col + 1):
                yield row, col

    def __str__(self) -> str:
        return f"{make_addr(self.start_row, self.start_col)}:{make_addr(self.end_row, self.end_col)}"


class SheetReference(NamedTuple):
    """Result of splitting ``'Sheet'.A1`` / ``Sheet.A1`` text."""

    target_sheet_id: str | None
    cell_ref: str


def parse_cell_ref(text: str) -> CellRef:
    """Parse ``A1``, ``$B$6``, ``AA10`` into a :class:`CellRef`.

    Raises:
        InvalidReference: If the text is not a cell address.
    """
    m = _CELL_RE.match(text.strip().upper())
    if not m:
        raise InvalidReference(text)
    row = int(m.group(4)) - 1
    if row < 0:
        raise InvalidReference(text, f"Row numbers start at 1: {text!r}")
    return CellRef(
        row=row,
        col=col_letter_to_index(m.group(2)),
        absolute_row=bool(m.group(3)),
        absolute_col=bool(m.group(1)),
    )


def parse_range(text: str) -> RangeRef:
    """Parse ``A1:B3`` (or a single cell) into a :class:`RangeRef`."""
    parts = text.split(":")
    if len(parts) == 1:
        cell = parse_cell_ref(parts[0])
        return RangeRef.from_cells(cell, cell)
    if len(parts) != 2:
        raise InvalidReference(text)
    return RangeRef.from_cells(parse_cell_ref(parts[0]), parse_cell_ref(parts[1]))


def split_sheet_prefix(text: str) -> tuple[str, str] | None:
    """Split ``'My Sheet'.B6`` or ``Data.B6`` into ``(sheet_name, rest)``."""
    s = text.strip()
    m = _QUOTED_SHEET_RE.match(s) or _BARE_SHEET_RE.match(s)
    if not m:
        return None
    return m.group(1), m.group(2)


def parse_sheet_reference(text: str, workbook: Workbook) -> SheetReference:
    """Resolve the sheet part of a cross-sheet reference.

    Examples:
        ``"'Q1 Data'.B6"`` → ``SheetReference("<id of Q1 Data>", "B6")``
        ``"Missing.A1"`` → ``SheetReference(None, "A1")``
        ``"garbage"`` → ``SheetReference(None, "")``
    """
    parts = split_sheet_prefix(text)
    if parts is None:
        return SheetReference(None, "")
    sheet_name, cell_text = parts
    sheet = workbook.sheet_by_name(sheet_name)
    return SheetReference(sheet.id if sheet is not None else None, cell_text.upper())
