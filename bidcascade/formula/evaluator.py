"""
formula/evaluator.py - Formula evaluation

evaluate() is the only entry point the cascade uses. Formulas are user
authored, so every parse or evaluation failure is logged and returned as
None; nothing raised here reaches the recompute cascade.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, MutableMapping, Optional, Union
import ast
import logging
import math
import re

from bidcascade.core.values import round_to
from bidcascade.errors import FormulaError
from bidcascade.formula.syntax import POUND_SIGN, compile_formula

logger = logging.getLogger(__name__)


class _NoFormula:
    """Sentinel for "no formula configured" (distinct from 0 and None)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_FORMULA"


NO_FORMULA = _NoFormula()

FormulaResult = Union[float, None, _NoFormula]


@dataclass(frozen=True)
class Symbol:
    """Opaque non-numeric variable value. Supports equality only."""
    text: str


Value = Union[float, bool, Symbol]

_NUMERIC_PREFIX = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")

_CONSTANTS: Dict[str, Value] = {
    "pi": math.pi,
    "e": math.e,
    "true": True,
    "false": False,
}


# =============================================================================
# VARIABLE TRANSLATION
# =============================================================================

def translate_value(value: Any) -> Value:
    """
    Translate a raw variable value for evaluation.

    None counts as 1, booleans and "true"/"false" as 1/0, numeric-looking
    strings as their leading numeric prefix, anything else as a symbol.
    """
    if value is None:
        return 1.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, Symbol):
        return value
    text = str(value)
    if text.lower() in ("true", "false"):
        return 1.0 if text.lower() == "true" else 0.0
    match = _NUMERIC_PREFIX.match(text)
    if match:
        return float(match.group(0))
    return Symbol(text.replace("#", POUND_SIGN))


def prepare_variables(variables: MutableMapping[str, Any]) -> Dict[str, Value]:
    """
    Lowercase variable keys and translate values.

    The input mapping gains a lowercased key for every entry (original keys
    are kept), matching how formulas are lowercased before evaluation.
    """
    scope: Dict[str, Value] = {}
    for key in list(variables.keys()):
        lowered = str(key).lower()
        translated = translate_value(variables[key])
        variables[lowered] = variables[key]
        scope[lowered] = translated
    return scope


# =============================================================================
# TREE EVALUATION
# =============================================================================

def _number(value: Value, formula: str) -> float:
    if isinstance(value, Symbol):
        raise FormulaError(f"Symbol '{value.text}' used as a number", formula)
    return float(value)


def _truth(value: Value, formula: str) -> bool:
    return _number(value, formula) != 0


def _round(value: float, places: float = 0) -> float:
    return round_to(value, int(places))


_FUNCTIONS: Dict[str, Callable[..., float]] = {
    "ceil": lambda x: float(math.ceil(x)),
    "floor": lambda x: float(math.floor(x)),
    "round": _round,
    "abs": abs,
    "min": lambda *args: min(args),
    "max": lambda *args: max(args),
    "sqrt": math.sqrt,
}


class _TreeEvaluator:
    """Walks a checked formula tree against a variable scope."""

    def __init__(self, formula: str, scope: Dict[str, Value]):
        self.formula = formula
        self.scope = scope

    def visit(self, node: ast.AST) -> Value:
        if isinstance(node, ast.Expression):
            return self.visit(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, str):
                return Symbol(node.value)
            return float(node.value)

        if isinstance(node, ast.Name):
            if node.id in self.scope:
                return self.scope[node.id]
            if node.id in _CONSTANTS:
                return _CONSTANTS[node.id]
            raise FormulaError(f"Undefined symbol '{node.id}'", self.formula)

        if isinstance(node, ast.UnaryOp):
            operand = self.visit(node.operand)
            if isinstance(node.op, ast.Not):
                return not _truth(operand, self.formula)
            number = _number(operand, self.formula)
            return -number if isinstance(node.op, ast.USub) else number

        if isinstance(node, ast.BinOp):
            return self._binary(node)

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                return all(_truth(self.visit(v), self.formula) for v in node.values)
            return any(_truth(self.visit(v), self.formula) for v in node.values)

        if isinstance(node, ast.Compare):
            return self._compare(node)

        if isinstance(node, ast.Call):
            return self._call(node)

        raise FormulaError(f"Unsupported syntax {type(node).__name__}", self.formula)

    def _binary(self, node: ast.BinOp) -> float:
        left = _number(self.visit(node.left), self.formula)
        right = _number(self.visit(node.right), self.formula)
        op = node.op
        if isinstance(op, ast.Add):
            return left + right
        elif isinstance(op, ast.Sub):
            return left - right
        elif isinstance(op, ast.Mult):
            return left * right
        elif isinstance(op, ast.Div):
            return left / right
        elif isinstance(op, ast.Mod):
            return left % right
        elif isinstance(op, ast.Pow):
            result = left ** right
            if isinstance(result, complex):
                raise FormulaError("Power has no real result", self.formula)
            return result
        raise FormulaError(f"Unsupported operator {type(op).__name__}", self.formula)

    def _compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if isinstance(op, (ast.Eq, ast.NotEq)):
                if isinstance(left, Symbol) or isinstance(right, Symbol):
                    equal = left == right
                else:
                    equal = float(left) == float(right)
                result = equal if isinstance(op, ast.Eq) else not equal
            else:
                a = _number(left, self.formula)
                b = _number(right, self.formula)
                if isinstance(op, ast.Lt):
                    result = a < b
                elif isinstance(op, ast.LtE):
                    result = a <= b
                elif isinstance(op, ast.Gt):
                    result = a > b
                else:
                    result = a >= b
            if not result:
                return False
            left = right
        return True

    def _call(self, node: ast.Call) -> Value:
        name = node.func.id
        if name == "if_":
            if len(node.args) != 3:
                raise FormulaError("if() takes exactly three arguments", self.formula)
            condition = _truth(self.visit(node.args[0]), self.formula)
            return self.visit(node.args[1] if condition else node.args[2])
        args = [_number(self.visit(arg), self.formula) for arg in node.args]
        if not args:
            raise FormulaError(f"{name}() needs at least one argument", self.formula)
        return _FUNCTIONS[name](*args)


# =============================================================================
# PUBLIC API
# =============================================================================

def evaluate(formula: Optional[str], variables: Optional[MutableMapping[str, Any]] = None) -> FormulaResult:
    """
    Evaluate a user formula.

    Args:
        formula: Formula text; empty or None means no formula configured
        variables: Variable map (keys are lowercased in place)

    Returns:
        NO_FORMULA for an empty formula, None on any failure or non-finite
        result, otherwise the numeric result (booleans as 1.0/0.0)
    """
    if formula is None or formula == "":
        return NO_FORMULA

    try:
        scope = prepare_variables(variables if variables is not None else {})
        tree = compile_formula(str(formula))
        result = _TreeEvaluator(str(formula), scope).visit(tree)
    except (FormulaError, ArithmeticError, ValueError, TypeError) as e:
        logger.debug(f"Formula evaluation failed: {e} (formula={formula!r})")
        return None

    if isinstance(result, bool):
        return 1.0 if result else 0.0
    if isinstance(result, Symbol):
        return None
    if not math.isfinite(result):
        return None
    return float(result)


def evaluate_boolean(formula: Optional[str], variables: Optional[MutableMapping[str, Any]] = None) -> bool:
    """True iff the formula evaluates to exactly 1."""
    result = evaluate(formula, variables)
    return isinstance(result, float) and result == 1


def validate(formula: Optional[str], variables: Optional[MutableMapping[str, Any]] = None) -> bool:
    """Lightweight sanity check: does the formula yield a numeric value."""
    result = evaluate(formula, variables)
    return isinstance(result, float)
