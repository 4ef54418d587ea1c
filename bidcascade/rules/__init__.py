"""
rules/__init__.py - Line item inclusion rules and field auto-population.
"""

from .service import LineItemRuleService
from .auto_populate import FieldAutoPopulateService, SelectExpression

__all__ = [
    "LineItemRuleService",
    "FieldAutoPopulateService",
    "SelectExpression",
]
