"""Tests for WorkbookService: cell writes, row/column insertion and deletion
with formula reference rewriting, sheet CRUD, and diagnostics."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from sheetcalc.formulas.errors import ErrorValue
from sheetcalc.logging import EventSink, set_log_dir
from sheetcalc.service import WorkbookService, rewrite_formula_refs
from sheetcalc.workbook import Sheet, Workbook


def _service(*sheets: tuple[str, list[list[Any]]]) -> WorkbookService:
    """Service over a workbook whose sheet ids are s1, s2, ... in order."""
    wb = Workbook(sheets=[
        Sheet(id=f"s{i}", name=name, data=data)
        for i, (name, data) in enumerate(sheets, start=1)
    ])
    return WorkbookService(wb)


def _formula(svc: WorkbookService, sheet_id: str, row: int, col: int) -> str | None:
    cell = svc.get_sheet(sheet_id).cell_at(row, col)
    return cell.formula if cell is not None else None


# ────────────────────────────────────────────────────────────────
# rewrite_formula_refs
# ────────────────────────────────────────────────────────────────


class TestRewriteFormulaRefs:
    # -- Row insertion --

    def test_insert_row_shifts_refs_at_or_past(self) -> None:
        assert rewrite_formula_refs("=A5+A10", "Sheet1", "Sheet1", "row", 4, 2) == "=A7+A12"

    def test_insert_row_leaves_refs_before(self) -> None:
        assert rewrite_formula_refs("=A1+A3", "Sheet1", "Sheet1", "row", 4, 1) == "=A1+A3"

    def test_insert_preserves_dollar_markers(self) -> None:
        assert rewrite_formula_refs("=$A$5*B$5", "Sheet1", "Sheet1", "row", 0, 1) == "=$A$6*B$6"

    def test_insert_shifts_range(self) -> None:
        assert rewrite_formula_refs("=SUM(A2:B6)", "Sheet1", "Sheet1", "row", 3, 1) == "=SUM(A2:B7)"

    def test_lowercase_refs_shift(self) -> None:
        assert rewrite_formula_refs("=a5+sum(b2:b6)", "Sheet1", "Sheet1", "row", 3, 1) == "=a6+sum(b2:b7)"
        assert rewrite_formula_refs("=LOG10(a5)", "Sheet1", "Sheet1", "row", 0, 1) == "=LOG10(a6)"

    # -- Row deletion --

    def test_delete_row_ref_in_deleted_span(self) -> None:
        assert rewrite_formula_refs("=A5", "Sheet1", "Sheet1", "row", 4, -1) == "=#REF!"

    def test_delete_row_ref_past_span_shifts(self) -> None:
        assert rewrite_formula_refs("=A10", "Sheet1", "Sheet1", "row", 4, -2) == "=A8"

    def test_delete_range_start_shrinks(self) -> None:
        assert rewrite_formula_refs("=SUM(A2:A6)", "Sheet1", "Sheet1", "row", 1, -1) == "=SUM(A2:A5)"

    def test_delete_range_end_shrinks(self) -> None:
        assert rewrite_formula_refs("=SUM(A1:A3)", "Sheet1", "Sheet1", "row", 2, -2) == "=SUM(A1:A2)"

    def test_delete_whole_range(self) -> None:
        assert rewrite_formula_refs("=SUM(A2:A3)", "Sheet1", "Sheet1", "row", 1, -2) == "=SUM(#REF!)"

    # -- Columns --

    def test_insert_column(self) -> None:
        assert rewrite_formula_refs("=B1+D1", "Sheet1", "Sheet1", "col", 2, 1) == "=B1+E1"

    def test_delete_column(self) -> None:
        assert rewrite_formula_refs("=B1+D1", "Sheet1", "Sheet1", "col", 1, -1) == "=#REF!+C1"

    def test_insert_column_multi_letter(self) -> None:
        assert rewrite_formula_refs("=Z1", "Sheet1", "Sheet1", "col", 0, 1) == "=AA1"

    # -- Sheet scoping --

    def test_only_refs_to_affected_sheet(self) -> None:
        formula = "=Data.A5+'Q1 Data'.A5+A5"
        assert rewrite_formula_refs(formula, "Data", "Sheet1", "row", 0, 1) == "=Data.A6+'Q1 Data'.A5+A5"
        assert rewrite_formula_refs(formula, "Q1 Data", "Sheet1", "row", 0, 1) == "=Data.A5+'Q1 Data'.A6+A5"
        assert rewrite_formula_refs(formula, "Sheet1", "Sheet1", "row", 0, 1) == "=Data.A5+'Q1 Data'.A5+A6"

    def test_bare_refs_on_other_sheet_untouched(self) -> None:
        assert rewrite_formula_refs("=A5", "Sheet1", "Other", "row", 0, 1) == "=A5"

    def test_cross_sheet_deleted_drops_prefix(self) -> None:
        assert rewrite_formula_refs("=Data.A5+1", "Data", "Sheet1", "row", 4, -1) == "=#REF!+1"

    def test_cross_sheet_range(self) -> None:
        assert rewrite_formula_refs("=SUM(Data.A1:A4)", "Data", "Sheet1", "row", 1, 1) == "=SUM(Data.A1:A5)"

    # -- Things that are not references --

    def test_string_literals_untouched(self) -> None:
        assert rewrite_formula_refs('="A5"&A5', "Sheet1", "Sheet1", "row", 0, 1) == '="A5"&A6'

    def test_function_names_untouched(self) -> None:
        assert rewrite_formula_refs("=LOG10(A5)+STDEV.S(A5)", "Sheet1", "Sheet1", "row", 0, 1) == "=LOG10(A6)+STDEV.S(A6)"

    def test_non_formula_passthrough(self) -> None:
        assert rewrite_formula_refs("A5", "Sheet1", "Sheet1", "row", 0, 1) == "A5"


# ────────────────────────────────────────────────────────────────
# Cell writes
# ────────────────────────────────────────────────────────────────


class TestCellWrites:
    def test_set_data_clipped_to_range(self) -> None:
        svc = _service(("Sheet1", []))
        result = svc.set_data("s1", "A1:B2", [[1, 2, 3], [4, 5, 6], [7, 8, 9]])
        assert result == {"ok": True, "cells_written": 4}
        assert svc.computed_grid("s1") == [[1, 2], [4, 5]]

    def test_set_data_single_cell_anchor(self) -> None:
        svc = _service(("Sheet1", []))
        svc.set_data("s1", "B2", [[1, 2], [3, 4]])
        assert svc.cell_value("s1", "C3") == 4

    def test_set_data_blank_and_formula(self) -> None:
        svc = _service(("Sheet1", [[9, 9]]))
        svc.set_data("s1", "A1:B1", [["", "=2*3"]])
        assert svc.cell_value("s1", "A1") is None
        assert svc.cell_value("s1", "B1") == 6

    def test_set_data_grid(self) -> None:
        svc = _service(("Sheet1", []))
        svc.set_data_grid("s1", "C1", [["x"], ["y"]])
        assert svc.cell_value("s1", "C2") == "y"

    def test_bad_range(self) -> None:
        svc = _service(("Sheet1", []))
        with pytest.raises(ValueError):
            svc.set_data("s1", "nope", [[1]])

    def test_unknown_sheet(self) -> None:
        svc = _service(("Sheet1", []))
        with pytest.raises(ValueError, match="not found"):
            svc.set_data("zz", "A1", [[1]])

    def test_apply_formula(self) -> None:
        svc = _service(("Sheet1", [[4]]))
        assert svc.apply_formula("s1", "B1", "A1*10") == 40
        assert _formula(svc, "s1", 0, 1) == "=A1*10"
        assert svc.get_sheet("s1").cell_at(0, 1).value is None

    def test_apply_formula_to_range(self) -> None:
        svc = _service(("Sheet1", [[1, 10], [2, 20], [3, 30]]))
        written = svc.apply_formula_to_range("s1", "C1", "C3", "=A{ROW}*B{ROW}")
        assert written == 3
        assert _formula(svc, "s1", 2, 2) == "=A3*B3"
        assert [svc.cell_value("s1", f"C{i}") for i in (1, 2, 3)] == [10, 40, 90]

    def test_apply_formula_to_range_col_placeholder(self) -> None:
        svc = _service(("Sheet1", [[1, 2, 3]]))
        svc.apply_formula_to_range("s1", "A2", "C2", "={COL}1*2")
        assert svc.computed_grid("s1")[1] == [2, 4, 6]

    def test_mutation_bumps_version_and_invalidates(self) -> None:
        svc = _service(("Sheet1", [[1, "=A1+1"]]))
        assert svc.cell_value("s1", "B1") == 2
        version = svc.workbook.version
        svc.set_data("s1", "A1", [[41]])
        assert svc.workbook.version == version + 1
        assert svc.cell_value("s1", "B1") == 42


# ────────────────────────────────────────────────────────────────
# Row/column insertion and deletion
# ────────────────────────────────────────────────────────────────


class TestShiftRowsColumns:
    def test_insert_rows(self) -> None:
        svc = _service(("Sheet1", [[1], [2], ["=SUM(A1:A2)"]]))
        result = svc.insert_rows("s1", 1, 2)
        assert result["ok"] and result["n_rows"] == 5
        assert svc.computed_grid("s1") == [[1], [None], [None], [2], [3]]
        assert _formula(svc, "s1", 4, 0) == "=SUM(A1:A4)"

    def test_insert_rows_at_end(self) -> None:
        svc = _service(("Sheet1", [[1]]))
        svc.insert_rows("s1", 1)
        assert svc.get_sheet("s1").n_rows == 2

    def test_delete_rows(self) -> None:
        svc = _service(("Sheet1", [[1], [2], [3], ["=A2*10"], ["=SUM(A1:A3)"]]))
        svc.delete_rows("s1", 1)
        assert _formula(svc, "s1", 2, 0) == "=#REF!*10"
        assert _formula(svc, "s1", 3, 0) == "=SUM(A1:A2)"
        assert svc.cell_value("s1", "A3") == ErrorValue.REF
        assert svc.cell_value("s1", "A4") == 4

    def test_delete_rows_clamps_count(self) -> None:
        svc = _service(("Sheet1", [[1], [2], [3]]))
        result = svc.delete_rows("s1", 1, 10)
        assert result["n_rows"] == 1

    def test_insert_columns(self) -> None:
        svc = _service(("Sheet1", [[1, 2, "=A1+B1"]]))
        svc.insert_columns("s1", 1)
        assert _formula(svc, "s1", 0, 3) == "=A1+C1"
        assert svc.cell_value("s1", "D1") == 3

    def test_delete_columns(self) -> None:
        svc = _service(("Sheet1", [[1, 2, 3, "=A1+C1"]]))
        svc.delete_columns("s1", 1)
        assert _formula(svc, "s1", 0, 2) == "=A1+B1"
        assert svc.cell_value("s1", "C1") == 4

    def test_other_sheets_rewritten(self) -> None:
        svc = _service(("Sheet1", [[None], [5]]), ("Summary", [["=Sheet1.A2*2", "=A2"]]))
        svc.insert_rows("s1", 0)
        assert _formula(svc, "s2", 0, 0) == "=Sheet1.A3*2"
        # Bare refs on Summary point at Summary itself
        assert _formula(svc, "s2", 0, 1) == "=A2"
        assert svc.cell_value("s2", "A1") == 10

    def test_bounds(self) -> None:
        svc = _service(("Sheet1", [[1], [2]]))
        with pytest.raises(ValueError):
            svc.insert_rows("s1", 5)
        with pytest.raises(ValueError):
            svc.insert_rows("s1", 0, 0)
        with pytest.raises(ValueError):
            svc.delete_rows("s1", 2)
        with pytest.raises(ValueError):
            svc.delete_columns("s1", 1)


# ────────────────────────────────────────────────────────────────
# Sheet CRUD
# ────────────────────────────────────────────────────────────────


class TestSheetCrud:
    def test_create_sheet(self) -> None:
        svc = _service(("Sheet1", []))
        info = svc.create_sheet("Data")
        assert info["name"] == "Data"
        sheet = svc.get_sheet(info["id"])
        assert (sheet.n_rows, sheet.n_cols) == (50, 52)

    def test_create_duplicate(self) -> None:
        svc = _service(("Sheet1", []))
        with pytest.raises(ValueError, match="already exists"):
            svc.create_sheet("Sheet1")

    def test_create_invalid_names(self) -> None:
        svc = _service(("Sheet1", []))
        with pytest.raises(ValueError):
            svc.create_sheet("  ")
        with pytest.raises(ValueError):
            svc.create_sheet("Bob's")

    def test_delete_sheet(self) -> None:
        svc = _service(("Sheet1", []), ("Data", []))
        result = svc.delete_sheet("s2")
        assert result == {"deleted": "Data", "remaining": ["Sheet1"]}

    def test_delete_only_sheet(self) -> None:
        svc = _service(("Sheet1", []))
        with pytest.raises(ValueError, match="only sheet"):
            svc.delete_sheet("s1")

    def test_deleted_sheet_refs_become_ref_errors(self) -> None:
        svc = _service(("Sheet1", [["=Data.A1"]]), ("Data", [[3]]))
        assert svc.cell_value("s1", "A1") == 3
        svc.delete_sheet("s2")
        assert svc.cell_value("s1", "A1") == ErrorValue.REF

    def test_rename_sheet(self) -> None:
        svc = _service(("Sheet1", []), ("Data", []))
        assert svc.rename_sheet("s2", "Inputs") == {"old_name": "Data", "new_name": "Inputs"}
        assert svc.workbook.sheet_by_name("Inputs").id == "s2"
        with pytest.raises(ValueError):
            svc.rename_sheet("s2", "Sheet1")

    def test_copy_sheet(self) -> None:
        svc = _service(("Sheet1", [[1, "=A1*2"]]), ("Other", []))
        info = svc.copy_sheet("s1")
        assert info["name"] == "Sheet1 Copy"
        assert [s["name"] for s in svc.list_sheets()] == ["Sheet1", "Sheet1 Copy", "Other"]
        assert svc.cell_value(info["id"], "B1") == 2
        # Deep copy: editing the copy leaves the source alone
        svc.set_data(info["id"], "A1", [[10]])
        assert svc.cell_value(info["id"], "B1") == 20
        assert svc.cell_value("s1", "B1") == 2

    def test_list_sheets(self) -> None:
        svc = _service(("Sheet1", [[1, 2], [3]]))
        assert svc.list_sheets() == [
            {"id": "s1", "name": "Sheet1", "row_count": 2, "column_count": 2},
        ]


# ────────────────────────────────────────────────────────────────
# Reads and diagnostics
# ────────────────────────────────────────────────────────────────


class TestReads:
    def test_evaluate_at_cell(self) -> None:
        svc = _service(("Sheet1", []))
        assert svc.evaluate("s1", "=ROW()+COLUMN()", row=2, col=1) == 5

    def test_computed_grid(self) -> None:
        svc = _service(("Sheet1", [[1, "=A1/0"], ["x"]]))
        assert svc.computed_grid("s1") == [[1, ErrorValue.DIV0], ["x"]]

    def test_memo_disabled(self) -> None:
        wb = Workbook(sheets=[Sheet(id="s1", name="Sheet1", data=[[1, "=A1+1"]])])
        svc = WorkbookService(wb, {"max_depth": 100, "memoize": False, "display_precision": 10})
        assert svc.cell_value("s1", "B1") == 2
        assert svc._memo == {}

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (True, "TRUE"),
        (False, "FALSE"),
        (3.0, "3"),
        (1 / 3, "0.3333333333"),
        (42, "42"),
        ("#DIV/0!", "#DIV/0!"),
        ("text", "text"),
    ])
    def test_display_value(self, value: Any, expected: str) -> None:
        svc = _service(("Sheet1", []))
        assert svc.display_value(value) == expected

    def test_display_precision(self) -> None:
        wb = Workbook(sheets=[Sheet(id="s1", name="Sheet1")])
        svc = WorkbookService(wb, {"max_depth": 100, "memoize": True, "display_precision": 3})
        assert svc.display_value(2 / 3) == "0.667"


class TestDiagnostics:
    def test_validate_ok(self) -> None:
        svc = _service(("Sheet1", []))
        result = svc.validate_formula("=ROUND(SUM(A1:A3), 2)")
        assert result["valid"] is True
        assert result["functions"] == [
            {"name": "ROUND", "n_args": 2},
            {"name": "SUM", "n_args": 1},
        ]
        assert result["unknown_functions"] == []

    def test_validate_unknown_function(self) -> None:
        svc = _service(("Sheet1", []))
        result = svc.validate_formula("=XLOOKUP(1, A1:A3, B1:B3)")
        assert result["valid"] is False
        assert result["unknown_functions"] == ["XLOOKUP"]

    def test_validate_syntax_error(self) -> None:
        svc = _service(("Sheet1", []))
        result = svc.validate_formula("=SUM(A1")
        assert result["valid"] is False
        assert result["position"] == 4

    def test_validate_missing_equals(self) -> None:
        svc = _service(("Sheet1", []))
        assert svc.validate_formula("SUM(A1)")["valid"] is False

    def test_check_workbook(self) -> None:
        svc = _service(
            ("Sheet1", [[1, "=A1/0", "=A1"]]),
            ("Data", [["=Missing.A1", "=B1"]]),
        )
        assert svc.check_workbook() == [
            ("Sheet1", "B1", ErrorValue.DIV0),
            ("Data", "A1", ErrorValue.REF),
            ("Data", "B1", ErrorValue.CIRCULAR),
        ]


class TestMutationEvents:
    def test_sheet_mutated_logged(self, tmp_path: Path) -> None:
        set_log_dir(tmp_path)
        try:
            svc = _service(("Sheet1", []))
            svc.set_data("s1", "A1", [[1]])
            svc.insert_rows("s1", 0)
        finally:
            set_log_dir(None)
        events = EventSink(tmp_path).read_global(event_type="sheet_mutated")
        assert [e["context"]["operation"] for e in events] == ["insert_rows", "set_data"]
        assert all(e["level"] == "info" for e in events)
        per_workbook = EventSink(tmp_path).read_workbook_log(svc.workbook.id)
        assert len(per_workbook) == 2
