"""Lark-based parser for spreadsheet formulas.

Supports:
- In-sheet cell references: ``B6``, ``$B$6``, ``AA10``
- Cross-sheet references: ``Data.B6`` or ``'Q1 Data'.B6``
- Ranges: ``A1:B3``, ``'Q1 Data'.A1:A10``
- Currency (``$1,234.56``) and postfix percent (``20%``) literals
- String concatenation with ``&``, comparisons, nested function calls
- Error literals (``#REF!`` left behind by row/column deletion)
"""

from __future__ import annotations

import functools

from lark import Lark, Token, Tree, Visitor
from lark.exceptions import LarkError

from sheetcalc.formulas.errors import FormulaParseError
from sheetcalc.formulas.splitter import check_balanced

# LALR(1) grammar.
# Operator precedence (lowest to highest):
#   1. Comparison: = <> != > < >= <=
#   2. Concatenation: &
#   3. Addition/subtraction: + -
#   4. Multiplication/division: * /
#   5. Unary plus/minus: + -
#   6. Exponentiation: ^ (right-associative)
#   7. Postfix percent: %  (3% = 0.03)
#   8. Atoms: literal, function call, reference, range, parenthesized expr
GRAMMAR = r"""
start: "=" expr

?expr: comparison

?comparison: concatenation
    | comparison ">" concatenation   -> gt
    | comparison "<" concatenation   -> lt
    | comparison ">=" concatenation  -> gte
    | comparison "<=" concatenation  -> lte
    | comparison "=" concatenation   -> eq
    | comparison "<>" concatenation  -> neq
    | comparison "!=" concatenation  -> neq

?concatenation: addition
    | concatenation "&" addition  -> concat

?addition: multiplication
    | addition "+" multiplication  -> add
    | addition "-" multiplication  -> sub

?multiplication: unary
    | multiplication "*" unary  -> mul
    | multiplication "/" unary  -> div

?unary: exponentiation
    | "-" unary  -> neg
    | "+" unary  -> pos

?exponentiation: postfix
    | postfix "^" unary  -> pow

?postfix: atom
    | postfix "%"  -> percent

?atom: NUMBER                           -> number
    | CURRENCY                          -> currency
    | BOOL                              -> boolean
    | ESCAPED_STRING                    -> string
    | ERROR_LITERAL                     -> error_literal
    | NAME "(" args ")"                 -> func_call
    | QUOTED_SHEET_REF ":" CELL_REF     -> sheet_range_ref
    | SHEET_REF ":" CELL_REF            -> sheet_range_ref
    | QUOTED_SHEET_REF                  -> sheet_cell_ref
    | SHEET_REF                         -> sheet_cell_ref
    | CELL_REF ":" CELL_REF             -> range_ref
    | CELL_REF                          -> cell_ref
    | NAME                              -> name
    | "(" expr ")"

args: expr ("," expr)*
    |

// Cross-sheet cell ref: Data.B6 (no spaces or dots in the unquoted name)
SHEET_REF.4: /[A-Za-z_][A-Za-z0-9_]*\.\$?[A-Za-z]+\$?[0-9]+(?![A-Za-z0-9_(])/

// Quoted cross-sheet cell ref: 'Q1 Data'.B6
QUOTED_SHEET_REF.4: /'[^']+'\.\$?[A-Za-z]+\$?[0-9]+(?![A-Za-z0-9_(])/

ERROR_LITERAL.4: /#(REF!|DIV\/0!|N\/A|NUM!|ERROR!|CIRCULAR!)/

BOOL.3: /(TRUE|FALSE)(?![A-Za-z0-9_.(])/

// In-sheet cell ref with optional $ markers, either case (a1 is A1). LOG10( is a name.
CELL_REF.2: /\$?[A-Za-z]+\$?[0-9]+(?![A-Za-z0-9_(])/

CURRENCY.2: /\$[0-9]{1,3}(,[0-9]{3})+(\.[0-9]+)?|\$[0-9]+(\.[0-9]+)?/

// Function names may be dotted (STDEV.S)
NAME.1: /[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z0-9_]+)*/

%import common.NUMBER
%import common.ESCAPED_STRING
%import common.WS
%ignore WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start")


def parse_formula(text: str) -> Tree:
    """Parse a formula string (must start with ``=``) into a Lark Tree.

    Trees are cached per formula text; callers must not mutate them.

    Args:
        text: The formula text, e.g. ``"=SUM(A1:A3)*(1+'Q1 Data'.B2)"``.

    Returns:
        A Lark parse tree.

    Raises:
        FormulaParseError: If the formula has invalid syntax.
    """
    text = text.strip()
    if not text.startswith("="):
        raise FormulaParseError("Formula must start with '='", position=0)
    return _parse_cached(text)


@functools.lru_cache(maxsize=2048)
def _parse_cached(text: str) -> Tree:
    check_balanced(text)
    try:
        return _parser.parse(text)
    except LarkError as exc:
        # Extract position info from Lark exception if available
        pos = getattr(exc, "column", None)
        raise FormulaParseError(str(exc), position=pos) from exc


def parse_sheet_ref(token_str: str) -> tuple[str, str]:
    """Parse a SHEET_REF or QUOTED_SHEET_REF token into (sheet_name, cell_addr).

    Examples:
        ``"Data.A1"`` → ``("Data", "A1")``
        ``"'Q1 Data'.$B$2"`` → ``("Q1 Data", "$B$2")``
    """
    s = token_str.strip()
    if s.startswith("'"):
        close_quote = s.index("'", 1)
        return s[1:close_quote], s[close_quote + 2:]
    dot = s.index(".")
    return s[:dot], s[dot + 1:]


def unescape_string(raw: str) -> str:
    """Strip the quotes of an ESCAPED_STRING token and resolve escapes."""
    return raw[1:-1].replace('\\"', '"').replace("\\\\", "\\")


class _RefCollector(Visitor):
    """Visitor that collects all cell references from a parse tree."""

    def __init__(self) -> None:
        self.cell_refs: set[tuple[str | None, str]] = set()  # (sheet|None, ref)
        self.functions: set[str] = set()

    def cell_ref(self, tree: Tree) -> None:
        self.cell_refs.add((None, str(tree.children[0])))

    def range_ref(self, tree: Tree) -> None:
        self.cell_refs.add((None, f"{tree.children[0]}:{tree.children[1]}"))

    def sheet_cell_ref(self, tree: Tree) -> None:
        self.cell_refs.add(parse_sheet_ref(str(tree.children[0])))

    def sheet_range_ref(self, tree: Tree) -> None:
        sheet, start = parse_sheet_ref(str(tree.children[0]))
        self.cell_refs.add((sheet, f"{start}:{tree.children[1]}"))

    def func_call(self, tree: Tree) -> None:
        token = tree.children[0]
        if isinstance(token, Token):
            self.functions.add(str(token).upper())


def extract_refs(tree: Tree) -> set[tuple[str | None, str]]:
    """Extract ``(sheet_name | None, ref_text)`` pairs from a parse tree."""
    collector = _RefCollector()
    collector.visit(tree)
    return collector.cell_refs


def extract_functions(tree: Tree) -> set[str]:
    """Extract the upper-cased names of every function called in a parse tree."""
    collector = _RefCollector()
    collector.visit(tree)
    return collector.functions
