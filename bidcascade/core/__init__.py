"""
core/__init__.py - Shared types for the recomputation engine.

Provides:
- Entity/event enumerations
- Dependency contract and rule models (pydantic)
- Numeric coercion helpers
"""

from .enums import (
    EntityType,
    RuleType,
    RuleInclusion,
    AssessmentState,
    EntityEvent,
    FieldType,
    ENTITY_LEVELS,
)
from .contracts import (
    DatatableCell,
    DependencyContract,
    LineItemRule,
    contracts_from_mapping,
    rules_from_config,
)
from .values import (
    confirm_number,
    is_number,
    round_to,
)

__all__ = [
    "EntityType",
    "RuleType",
    "RuleInclusion",
    "AssessmentState",
    "EntityEvent",
    "FieldType",
    "ENTITY_LEVELS",
    "DatatableCell",
    "DependencyContract",
    "LineItemRule",
    "contracts_from_mapping",
    "rules_from_config",
    "confirm_number",
    "is_number",
    "round_to",
]
