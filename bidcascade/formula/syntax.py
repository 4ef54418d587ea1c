"""
formula/syntax.py - Formula normalisation and restricted parsing

User formulas are written in spreadsheet-flavoured syntax. They are
normalised to Python expression syntax and parsed with `ast`; the tree is
then checked against a fixed node set so evaluation never touches anything
beyond arithmetic, comparison, logic and a handful of math functions.

Allowed:
  - Numbers, quoted strings (opaque symbols), names
  - Arithmetic: + - * / % ^
  - Unary: + - not
  - Comparisons: < <= > >= = == != (chains allowed)
  - Logical: and, or, &&, ||
  - Functions: ceil floor round abs min max sqrt if
  - Constants: pi, e, true, false

Rejected:
  - attribute access, subscripts, lambdas, comprehensions, keyword
    arguments, Python conditionals, membership tests, floor division
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Tuple
import ast
import re

from bidcascade.errors import FormulaError


# Functions callable from formulas (`if` is renamed, it is a Python keyword)
FORMULA_FUNCTIONS: frozenset = frozenset({
    "ceil", "floor", "round", "abs", "min", "max", "sqrt", "if_",
})

FORMULA_CONSTANTS: frozenset = frozenset({"pi", "e", "true", "false"})

POUND_SIGN = "pound_sign"

_ALLOWED_BINOPS = (ast.Add, ast.Sub, ast.Mult, ast.Div, ast.Mod, ast.Pow)
_ALLOWED_UNARYOPS = (ast.UAdd, ast.USub, ast.Not)
_ALLOWED_CMPOPS = (ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE)

_BARE_EQUALS = re.compile(r"(?<![<>=!])=(?!=)")
_IF_CALL = re.compile(r"\bif(\s*\()")


def clean_formula(formula: str) -> str:
    """
    Normalise a user formula to Python expression syntax.

    Brackets are stripped, everything is lowercased, roundup/rounddown map
    to ceil/floor, `#` becomes a safe token, `<>` and `=` become comparisons
    and the logical/power operators are translated.
    """
    text = formula.replace("[", "").replace("]", "").lower()
    text = text.replace("roundup", "ceil").replace("rounddown", "floor")
    text = text.replace("#", POUND_SIGN)
    text = text.replace("&&", " and ").replace("||", " or ")
    text = text.replace("<>", "!=")
    text = _BARE_EQUALS.sub("==", text)
    text = text.replace("^", "**")
    text = _IF_CALL.sub(r"if_\1", text)
    return text.strip()


def _check(node: ast.AST, formula: str) -> None:
    if isinstance(node, ast.Expression):
        _check(node.body, formula)

    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float, str)):
            raise FormulaError(f"Unsupported literal {node.value!r}", formula)

    elif isinstance(node, ast.Name):
        pass

    elif isinstance(node, ast.BinOp):
        if not isinstance(node.op, _ALLOWED_BINOPS):
            raise FormulaError(f"Unsupported operator {type(node.op).__name__}", formula)
        _check(node.left, formula)
        _check(node.right, formula)

    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, _ALLOWED_UNARYOPS):
            raise FormulaError(f"Unsupported operator {type(node.op).__name__}", formula)
        _check(node.operand, formula)

    elif isinstance(node, ast.BoolOp):
        for value in node.values:
            _check(value, formula)

    elif isinstance(node, ast.Compare):
        for op in node.ops:
            if not isinstance(op, _ALLOWED_CMPOPS):
                raise FormulaError(f"Unsupported comparison {type(op).__name__}", formula)
        _check(node.left, formula)
        for comparator in node.comparators:
            _check(comparator, formula)

    elif isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in FORMULA_FUNCTIONS:
            raise FormulaError(f"Unsupported function {ast.dump(node.func)}", formula)
        if node.keywords:
            raise FormulaError("Keyword arguments are not supported", formula)
        for arg in node.args:
            _check(arg, formula)

    else:
        raise FormulaError(f"Unsupported syntax {type(node).__name__}", formula)


@lru_cache(maxsize=1024)
def compile_formula(formula: str) -> ast.Expression:
    """
    Normalise, parse and check a formula.

    Args:
        formula: Raw user formula

    Returns:
        Checked expression tree

    Raises:
        FormulaError: On syntax errors or disallowed constructs
    """
    source = clean_formula(formula)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise FormulaError(f"Syntax error: {e.msg}", formula) from e
    _check(tree, formula)
    return tree


def _names(tree: ast.AST) -> List[Tuple[int, int, str]]:
    callees = {
        id(node.func) for node in ast.walk(tree) if isinstance(node, ast.Call)
    }
    found = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and id(node) not in callees:
            found.append((node.lineno, node.col_offset, node.id))
    return sorted(found)


def parse_formula_arguments(formula: str) -> List[str]:
    """
    List the variable names a formula references.

    Args:
        formula: Raw user formula

    Returns:
        Lowercased names in order of appearance, constants excluded;
        empty for empty or unparseable formulas
    """
    if not formula:
        return []
    try:
        tree = compile_formula(formula)
    except FormulaError:
        return []
    names: List[str] = []
    for _, _, name in _names(tree):
        if name not in FORMULA_CONSTANTS and name not in names:
            names.append(name)
    return names
