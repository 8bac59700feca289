"""Tests for A1 address parsing, ranges, and cross-sheet reference splitting."""

from __future__ import annotations

import pytest

from sheetcalc.formulas.errors import FormulaRefError, InvalidReference
from sheetcalc.formulas.refs import (
    CellRef,
    RangeRef,
    col_letter_to_index,
    index_to_col_letter,
    make_addr,
    parse_cell_ref,
    parse_range,
    parse_sheet_reference,
    split_sheet_prefix,
)
from sheetcalc.workbook import Sheet, Workbook


# ────────────────────────────────────────────────────────────────
# Column letters
# ────────────────────────────────────────────────────────────────


class TestColumnLetters:
    def test_single_letters(self) -> None:
        assert col_letter_to_index("A") == 0
        assert col_letter_to_index("Z") == 25

    def test_double_letters(self) -> None:
        assert col_letter_to_index("AA") == 26
        assert col_letter_to_index("AZ") == 51
        assert col_letter_to_index("BA") == 52

    def test_lowercase_accepted(self) -> None:
        assert col_letter_to_index("ab") == 27

    def test_index_to_letter(self) -> None:
        assert index_to_col_letter(0) == "A"
        assert index_to_col_letter(25) == "Z"
        assert index_to_col_letter(26) == "AA"
        assert index_to_col_letter(701) == "ZZ"
        assert index_to_col_letter(702) == "AAA"

    def test_letter_index_inverse(self) -> None:
        for idx in (0, 1, 25, 26, 51, 52, 675, 702, 16383):
            assert col_letter_to_index(index_to_col_letter(idx)) == idx

    def test_negative_index_rejected(self) -> None:
        with pytest.raises(ValueError):
            index_to_col_letter(-1)

    def test_make_addr(self) -> None:
        assert make_addr(0, 0) == "A1"
        assert make_addr(9, 27) == "AB10"


# ────────────────────────────────────────────────────────────────
# Cell references
# ────────────────────────────────────────────────────────────────


class TestParseCellRef:
    def test_plain(self) -> None:
        ref = parse_cell_ref("B6")
        assert (ref.row, ref.col) == (5, 1)
        assert not ref.absolute_row and not ref.absolute_col

    def test_absolute_markers(self) -> None:
        ref = parse_cell_ref("$B$6")
        assert (ref.row, ref.col) == (5, 1)
        assert ref.absolute_row and ref.absolute_col

    def test_mixed_markers(self) -> None:
        ref = parse_cell_ref("B$6")
        assert ref.absolute_row and not ref.absolute_col
        ref = parse_cell_ref("$B6")
        assert ref.absolute_col and not ref.absolute_row

    def test_lowercase_is_uppercased(self) -> None:
        assert parse_cell_ref("aa10") == CellRef(9, 26)

    def test_address_drops_markers_str_keeps_them(self) -> None:
        ref = parse_cell_ref("$C$3")
        assert ref.address == "C3"
        assert str(ref) == "$C$3"

    @pytest.mark.parametrize("text", ["", "A", "1", "A0", "1A", "A1B", "A-1", "#REF!"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(InvalidReference):
            parse_cell_ref(text)

    def test_invalid_reference_is_ref_error(self) -> None:
        with pytest.raises(FormulaRefError):
            parse_cell_ref("nope")


# ────────────────────────────────────────────────────────────────
# Ranges
# ────────────────────────────────────────────────────────────────


class TestParseRange:
    def test_range(self) -> None:
        rng = parse_range("A1:C2")
        assert (rng.start_row, rng.start_col, rng.end_row, rng.end_col) == (0, 0, 1, 2)
        assert rng.shape == (2, 3)

    def test_single_cell_is_degenerate_range(self) -> None:
        rng = parse_range("B2")
        assert rng.shape == (1, 1)
        assert list(rng.cells()) == [(1, 1)]

    def test_reversed_corners_normalised(self) -> None:
        assert parse_range("C3:A1") == parse_range("A1:C3")

    def test_cells_row_major(self) -> None:
        assert list(parse_range("A1:B2").cells()) == [(0, 0), (0, 1), (1, 0), (1, 1)]

    def test_str(self) -> None:
        assert str(RangeRef(0, 0, 2, 1)) == "A1:B3"

    def test_too_many_parts(self) -> None:
        with pytest.raises(InvalidReference):
            parse_range("A1:B2:C3")


# ────────────────────────────────────────────────────────────────
# Cross-sheet references
# ────────────────────────────────────────────────────────────────


def _workbook() -> Workbook:
    return Workbook(sheets=[
        Sheet(id="s1", name="Sheet1"),
        Sheet(id="s2", name="Q1 Data"),
        Sheet(id="s3", name="Data"),
    ])


class TestSheetReference:
    def test_split_quoted(self) -> None:
        assert split_sheet_prefix("'Q1 Data'.B6") == ("Q1 Data", "B6")

    def test_split_bare(self) -> None:
        assert split_sheet_prefix("Data.$B$6") == ("Data", "$B$6")

    def test_split_no_prefix(self) -> None:
        assert split_sheet_prefix("B6") is None

    def test_quoted_sheet_resolves(self) -> None:
        ref = parse_sheet_reference("'Q1 Data'.b6", _workbook())
        assert ref.target_sheet_id == "s2"
        assert ref.cell_ref == "B6"

    def test_bare_sheet_resolves(self) -> None:
        ref = parse_sheet_reference("Data.A1", _workbook())
        assert ref.target_sheet_id == "s3"
        assert ref.cell_ref == "A1"

    def test_unknown_sheet(self) -> None:
        ref = parse_sheet_reference("Missing.A1", _workbook())
        assert ref.target_sheet_id is None
        assert ref.cell_ref == "A1"

    def test_malformed(self) -> None:
        ref = parse_sheet_reference("garbage", _workbook())
        assert ref == (None, "")

    def test_sheet_names_are_case_sensitive(self) -> None:
        assert parse_sheet_reference("data.A1", _workbook()).target_sheet_id is None
