"""Tests for workbook files (YAML/JSON) and CSV import/export."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from sheetcalc.io import (
    export_csv,
    import_csv,
    load_workbook,
    save_workbook,
    workbook_from_dict,
    workbook_to_dict,
)
from sheetcalc.service import WorkbookService
from sheetcalc.workbook import Cell, Sheet, Workbook


def _workbook() -> Workbook:
    return Workbook(
        id="wb-test",
        name="Budget",
        sheets=[
            Sheet(id="s1", name="Sheet1", data=[[1200, "=A1*1.1"], [None, "=Data.A1"]]),
            Sheet(id="s2", name="Data", data=[[5]]),
        ],
    )


# ────────────────────────────────────────────────────────────────
# Workbook files
# ────────────────────────────────────────────────────────────────


class TestWorkbookDict:
    def test_sparse_layout(self) -> None:
        data = workbook_to_dict(_workbook())
        assert data["id"] == "wb-test"
        assert data["name"] == "Budget"
        sheet = data["sheets"][0]
        assert sheet == {
            "id": "s1",
            "name": "Sheet1",
            "rows": 2,
            "cols": 2,
            "cells": {"A1": 1200, "B1": "=A1*1.1", "B2": "=Data.A1"},
        }

    def test_literal_equals_text_kept_as_value(self) -> None:
        wb = Workbook(sheets=[Sheet(id="s1", name="S", data=[[Cell(value="=not a formula")]])])
        data = workbook_to_dict(wb)
        assert data["sheets"][0]["cells"]["A1"] == {"value": "=not a formula"}
        back = workbook_from_dict(data)
        cell = back.sheets[0].cell_at(0, 0)
        assert cell.value == "=not a formula"
        assert cell.formula is None

    def test_dimensions_preserved(self) -> None:
        raw = {"sheets": [{"id": "s1", "name": "S", "rows": 10, "cols": 4, "cells": {"B2": 7}}]}
        sheet = workbook_from_dict(raw).sheets[0]
        assert (sheet.n_rows, sheet.n_cols) == (10, 4)
        assert sheet.cell_at(1, 1).value == 7

    def test_dense_form(self) -> None:
        raw = {"sheets": [{"id": "s1", "name": "S", "data": [[1, "=A1+1"]]}]}
        sheet = workbook_from_dict(raw).sheets[0]
        assert sheet.cell_at(0, 1).formula == "=A1+1"

    def test_duplicate_sheet_names(self) -> None:
        raw = {"sheets": [{"name": "S", "cells": {}}, {"name": "S", "cells": {}}]}
        with pytest.raises(ValueError, match="Duplicate"):
            workbook_from_dict(raw)

    def test_bad_address(self) -> None:
        raw = {"sheets": [{"name": "S", "cells": {"1A": 5}}]}
        with pytest.raises(ValueError):
            workbook_from_dict(raw)

    def test_not_a_mapping(self) -> None:
        with pytest.raises(ValueError):
            workbook_from_dict(["nope"])
        with pytest.raises(ValueError):
            workbook_from_dict({"sheets": {"a": 1}})


class TestWorkbookFiles:
    def test_yaml_round_trip(self, tmp_path: Path) -> None:
        path = save_workbook(_workbook(), tmp_path / "book.yaml")
        raw = yaml.safe_load(path.read_text())
        assert raw["sheets"][0]["cells"]["B1"] == "=A1*1.1"

        loaded = load_workbook(path)
        assert loaded.id == "wb-test"
        assert [s.name for s in loaded.sheets] == ["Sheet1", "Data"]
        svc = WorkbookService(loaded)
        assert svc.cell_value("s1", "B1") == pytest.approx(1320)
        assert svc.cell_value("s1", "B2") == 5

    def test_json_round_trip(self, tmp_path: Path) -> None:
        path = save_workbook(_workbook(), tmp_path / "book.json")
        assert json.loads(path.read_text())["name"] == "Budget"
        loaded = load_workbook(path)
        assert loaded.sheets[1].cell_at(0, 0).value == 5

    def test_hand_written_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "book.yml"
        path.write_text(
            "name: Hand\n"
            "sheets:\n"
            "  - name: Sheet1\n"
            "    cells:\n"
            "      A1: 2\n"
            "      A2: '=A1^10'\n"
        )
        wb = load_workbook(path)
        assert WorkbookService(wb).cell_value(wb.sheets[0].id, "A2") == 1024

    def test_load_emits_event(self, tmp_path: Path) -> None:
        from sheetcalc.logging import EventSink, set_log_dir

        path = save_workbook(_workbook(), tmp_path / "book.yaml")
        set_log_dir(tmp_path / "logs")
        try:
            load_workbook(path)
        finally:
            set_log_dir(None)
        events = EventSink(tmp_path / "logs").read_global(event_type="workbook_loaded")
        assert len(events) == 1
        assert events[0]["context"]["workbook_id"] == "wb-test"


# ────────────────────────────────────────────────────────────────
# CSV
# ────────────────────────────────────────────────────────────────


class TestCsvImport:
    def test_import_values_and_formulas(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "in.csv"
        csv_path.write_text("1,2\nhello,=A1+B1\n")
        svc = WorkbookService(Workbook(sheets=[Sheet(id="s1", name="Sheet1")]))

        assert import_csv(svc, "s1", csv_path) == 4
        assert svc.computed_grid("s1") == [[1, 2], ["hello", 3]]

    def test_import_at_anchor(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "in.csv"
        csv_path.write_text("7\n")
        svc = WorkbookService(Workbook(sheets=[Sheet(id="s1", name="Sheet1")]))

        import_csv(svc, "s1", csv_path, start_cell="C3")
        assert svc.cell_value("s1", "C3") == 7

    def test_blank_fields_clear(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "in.csv"
        csv_path.write_text("1,,3\n")
        svc = WorkbookService(Workbook(sheets=[Sheet(id="s1", name="Sheet1", data=[[9, 9, 9]])]))

        import_csv(svc, "s1", csv_path)
        assert svc.computed_grid("s1") == [[1, None, 3]]

    def test_empty_file(self, tmp_path: Path) -> None:
        csv_path = tmp_path / "empty.csv"
        csv_path.write_text("")
        svc = WorkbookService(Workbook(sheets=[Sheet(id="s1", name="Sheet1")]))

        assert import_csv(svc, "s1", csv_path) == 0


class TestCsvExport:
    def _service(self) -> WorkbookService:
        return WorkbookService(Workbook(sheets=[
            Sheet(id="s1", name="Sheet1", data=[[1, "=A1*2"], ["x", "=1/3"]]),
        ]))

    def test_export_computed(self, tmp_path: Path) -> None:
        path = export_csv(self._service(), "s1", tmp_path / "out.csv")
        assert path.read_text().splitlines() == ["1,2", "x,0.3333333333"]

    def test_export_raw(self, tmp_path: Path) -> None:
        path = export_csv(self._service(), "s1", tmp_path / "out.csv", raw=True)
        assert path.read_text().splitlines() == ["1,=A1*2", "x,=1/3"]

    def test_export_empty_sheet(self, tmp_path: Path) -> None:
        svc = WorkbookService(Workbook(sheets=[Sheet(id="s1", name="Sheet1")]))
        path = export_csv(svc, "s1", tmp_path / "out.csv")
        assert path.read_text() == ""

    def test_export_then_import(self, tmp_path: Path) -> None:
        source = WorkbookService(Workbook(sheets=[
            Sheet(id="s1", name="Sheet1", data=[[1, 2, 3], [4]]),
        ]))
        path = export_csv(source, "s1", tmp_path / "out.csv")

        target = WorkbookService(Workbook(sheets=[Sheet(id="s1", name="Sheet1")]))
        import_csv(target, "s1", path)
        assert target.cell_value("s1", "C1") == 3
        assert target.cell_value("s1", "A2") == 4
        assert target.cell_value("s1", "B2") is None

    def test_unknown_sheet(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            export_csv(self._service(), "nope", tmp_path / "out.csv")
