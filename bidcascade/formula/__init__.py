"""
formula/__init__.py - User formula evaluation.

Provides:
- evaluate / evaluate_boolean / validate
- parse_formula_arguments: variables a formula references
- NO_FORMULA: result of an empty formula
"""

from .syntax import (
    FORMULA_CONSTANTS,
    FORMULA_FUNCTIONS,
    clean_formula,
    compile_formula,
    parse_formula_arguments,
)
from .evaluator import (
    NO_FORMULA,
    Symbol,
    evaluate,
    evaluate_boolean,
    prepare_variables,
    translate_value,
    validate,
)

__all__ = [
    "FORMULA_CONSTANTS",
    "FORMULA_FUNCTIONS",
    "clean_formula",
    "compile_formula",
    "parse_formula_arguments",
    "NO_FORMULA",
    "Symbol",
    "evaluate",
    "evaluate_boolean",
    "prepare_variables",
    "translate_value",
    "validate",
]
