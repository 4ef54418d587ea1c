"""
core/enums.py - Entity and event enumerations.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class EntityType(str, Enum):
    """Discriminant of every entity a dependency contract can address."""
    LINE_ITEM = "line_item"
    FIELD = "field"
    METRIC = "metric"
    COMPONENT = "component"
    ASSEMBLY = "assembly"
    COMPONENT_GROUP = "component_group"
    DATATABLE = "datatable"
    BID = "bid"
    BID_VARIABLE = "bid_variable"
    PROJECT = "project"

    @property
    def collection_name(self) -> str:
        """Name of the bid collection holding entities of this type."""
        if self is EntityType.ASSEMBLY:
            return "assemblies"
        if self is EntityType.BID_VARIABLE:
            return "variables"
        return f"{self.value}s"

    @classmethod
    def parse(cls, value: Any) -> Optional["EntityType"]:
        """Return the member for a raw type string, or None when unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class RuleType(str, Enum):
    """Line item inclusion rule kinds."""
    ALWAYS_INCLUDE = "always_include"
    VALUE_EXPRESSION = "value_expression"
    TOGGLE_FIELD = "toggle_field"
    LIST_FIELD = "list_field"


class RuleInclusion(str, Enum):
    """How multiple rule results combine."""
    ALL = "all"
    ANY = "any"


class AssessmentState(Enum):
    """Where an entity is in its recompute cycle."""
    IDLE = "idle"
    ASSESSING = "assessing"
    ASSESSED = "assessed"


class EntityEvent(str, Enum):
    """Notifications published on entity buses."""
    PROPERTY_UPDATED = "property.updated"
    UPDATED = "updated"
    ASSESSING = "assessing"
    ASSESSED = "assessed"
    CHANGED = "changed"
    ASSESSMENTS_COMPLETED = "bid.assessments.completed"
    SAVING = "saving"
    SAVED = "saved"


class FieldType(str, Enum):
    """Field value kinds."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"


# Scheduler tie-break level per entity type: leaves drain before parents.
ENTITY_LEVELS = {
    EntityType.FIELD: 0,
    EntityType.METRIC: 0,
    EntityType.DATATABLE: 0,
    EntityType.ASSEMBLY: 0,
    EntityType.COMPONENT_GROUP: 0,
    EntityType.BID_VARIABLE: 0,
    EntityType.LINE_ITEM: 1,
    EntityType.COMPONENT: 2,
    EntityType.BID: 3,
    EntityType.PROJECT: 4,
}
