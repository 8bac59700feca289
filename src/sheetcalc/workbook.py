"""Workbook data model: sheets of ragged 2-D cell grids.

A cell holds either a literal ``value`` or a ``formula`` (text starting with
``=``).  Formula results are never stored; they are recomputed on demand by
:mod:`sheetcalc.formulas.evaluator`.
"""

from __future__ import annotations

import uuid
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator

Scalar = Union[float, int, str, bool, None]


def new_sheet_id() -> str:
    """Generate a fresh sheet identifier (``sh-<hex>``)."""
    return f"sh-{uuid.uuid4().hex[:12]}"


def new_workbook_id() -> str:
    return f"wb-{uuid.uuid4().hex[:12]}"


# ────────────────────────────────────────────────────────────────
# Cell
# ────────────────────────────────────────────────────────────────


class Cell(BaseModel):
    value: bool | int | float | str | None = None
    formula: str | None = None

    @field_validator("formula")
    @classmethod
    def _formula_starts_with_equals(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if not v.startswith("="):
            raise ValueError(f"Formula must start with '=': {v!r}")
        return v

    @property
    def is_empty(self) -> bool:
        return self.formula is None and (self.value is None or self.value == "")


def coerce_cell(raw: Any) -> Any:
    """Accept ``None`` and bare scalars (``5``, ``"=A1*2"``) wherever a cell is expected."""
    if raw is None:
        return {}
    if isinstance(raw, (Cell, dict)):
        return raw
    if isinstance(raw, str) and raw.startswith("="):
        return {"formula": raw}
    return {"value": raw}


# ────────────────────────────────────────────────────────────────
# Sheet
# ────────────────────────────────────────────────────────────────


class Sheet(BaseModel):
    id: str = Field(default_factory=new_sheet_id)
    name: str
    data: list[list[Cell]] = []

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_rows(cls, v: Any) -> Any:
        if v is None:
            return []
        return [[coerce_cell(c) for c in (row or [])] for row in v]

    @property
    def n_rows(self) -> int:
        return len(self.data)

    @property
    def n_cols(self) -> int:
        return max((len(row) for row in self.data), default=0)

    def cell_at(self, row: int, col: int) -> Cell | None:
        """Return the cell at a 0-based position, or ``None`` outside the grid."""
        if row < 0 or col < 0 or row >= len(self.data):
            return None
        cells = self.data[row]
        if col >= len(cells):
            return None
        return cells[col]

    def ensure_size(self, rows: int, cols: int) -> None:
        """Grow the grid (never shrink) so that ``rows x cols`` positions exist."""
        while len(self.data) < rows:
            self.data.append([])
        for cells in self.data[:rows]:
            while len(cells) < cols:
                cells.append(Cell())

    def set_cell(self, row: int, col: int, cell: Cell) -> None:
        self.ensure_size(row + 1, col + 1)
        self.data[row][col] = cell


# ────────────────────────────────────────────────────────────────
# Workbook
# ────────────────────────────────────────────────────────────────


class Workbook(BaseModel):
    id: str = Field(default_factory=new_workbook_id)
    name: str = "Untitled"
    sheets: list[Sheet] = []
    version: int = 0

    def sheet_by_id(self, sheet_id: str) -> Sheet | None:
        for sheet in self.sheets:
            if sheet.id == sheet_id:
                return sheet
        return None

    def sheet_by_name(self, name: str) -> Sheet | None:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    def touch(self) -> int:
        """Record a mutation; invalidates memoized results keyed on ``version``."""
        self.version += 1
        return self.version
