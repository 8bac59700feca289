"""Formula parsing and evaluation for spreadsheet workbooks.

Provides a Lark-based parser for spreadsheet formulas, a tree-walking
evaluator with circular-reference detection, and the built-in function
library.
"""

from sheetcalc.formulas.errors import (
    ENGINE_ERRORS,
    CircularReferenceError,
    ErrorValue,
    EvaluationDepthError,
    FormulaError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaRefError,
    FormulaValueError,
    InvalidReference,
    error_value_for,
)
from sheetcalc.formulas.evaluator import (
    evaluate_cell,
    evaluate_formula,
    is_supported,
    supported_functions,
)
from sheetcalc.formulas.parser import extract_functions, extract_refs, parse_formula

__all__ = [
    "ENGINE_ERRORS",
    "CircularReferenceError",
    "ErrorValue",
    "EvaluationDepthError",
    "FormulaError",
    "FormulaFunctionError",
    "FormulaParseError",
    "FormulaRefError",
    "FormulaValueError",
    "InvalidReference",
    "error_value_for",
    "evaluate_cell",
    "evaluate_formula",
    "extract_functions",
    "extract_refs",
    "is_supported",
    "parse_formula",
    "supported_functions",
]
