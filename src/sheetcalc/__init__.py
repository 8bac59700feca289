"""sheetcalc: formula evaluation engine for multi-sheet spreadsheet workbooks."""

from sheetcalc.formulas.evaluator import evaluate_cell, evaluate_formula
from sheetcalc.workbook import Cell, Sheet, Workbook

__version__ = "0.1.0"

evaluate = evaluate_formula

__all__ = ["Cell", "Sheet", "Workbook", "evaluate", "evaluate_cell", "evaluate_formula"]
