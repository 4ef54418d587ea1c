"""
rules/auto_populate.py - Field auto-population

A field left empty (or last filled automatically) can derive its value from
other entities:

    number fields  copy the value of the `auto_a` dependency
    list fields    select the datatable row whose column value matches the
                   `auto_a` (and, for `between`, `auto_b`) dependency under
                   config.auto_populate = {"expression_type", "column_id"}

A value typed by the user clears `is_auto_selected` and stops further
auto-population. `has_null_dependency` records whether any input was unset.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from bidcascade.core.contracts import DependencyContract
from bidcascade.core.enums import EntityType, FieldType
from bidcascade.core.values import confirm_number

if TYPE_CHECKING:
    from bidcascade.domain.field import Field

logger = logging.getLogger(__name__)


Row = Dict[str, Any]


def _value(row: Row) -> float:
    return row["value"]


class SelectExpression(str, Enum):
    """How list fields match datatable rows against their inputs."""
    BETWEEN = "between"
    EQUAL = "equal"
    LESS_THAN_EQUAL = "less_than_equal"
    GREATER_THAN_EQUAL = "greater_than_equal"
    CLOSEST = "closest"


def _filter_less_than_equal(rows: List[Row], a: float, b: float) -> List[Row]:
    return [row for row in sorted(rows, key=_value, reverse=True) if row["value"] <= a]


def _filter_greater_than_equal(rows: List[Row], a: float, b: float) -> List[Row]:
    return [row for row in sorted(rows, key=_value) if row["value"] >= a]


def _filter_between(rows: List[Row], a: float, b: float) -> List[Row]:
    # Only an unambiguous match counts
    results = [row for row in sorted(rows, key=_value) if a <= row["value"] <= b]
    return results if len(results) == 1 else []


def _filter_equal(rows: List[Row], a: float, b: float) -> List[Row]:
    return [row for row in sorted(rows, key=_value, reverse=True) if row["value"] == a]


def _filter_closest(rows: List[Row], a: float, b: float) -> List[Row]:
    """Closest row first; on equal distance the later (smaller) row wins."""
    results: List[Row] = []
    for row in sorted(rows, key=_value, reverse=True):
        if not results or abs(results[0]["value"] - a) >= abs(row["value"] - a):
            results.insert(0, row)
    return results


_FILTERS: Dict[SelectExpression, Callable[[List[Row], float, float], List[Row]]] = {
    SelectExpression.BETWEEN: _filter_between,
    SelectExpression.EQUAL: _filter_equal,
    SelectExpression.LESS_THAN_EQUAL: _filter_less_than_equal,
    SelectExpression.GREATER_THAN_EQUAL: _filter_greater_than_equal,
    SelectExpression.CLOSEST: _filter_closest,
}


class FieldAutoPopulateService:
    """
    Fills one field from its `auto_a`/`auto_b` dependencies.

    Usage:
        service = FieldAutoPopulateService(field)
        if service.should_auto_populate():
            changed = service.auto_populate()
    """

    def __init__(self, field: "Field"):
        self._field = field
        self._null_dependencies = 0

    def should_auto_populate(self) -> bool:
        return self._should_auto_fill() or self._should_auto_select()

    def auto_populate(self) -> bool:
        """
        Populate the field's record in place.

        Returns:
            True if the value or the null-dependency flag changed
        """
        if self._should_auto_fill():
            return self._auto_fill()
        if self._should_auto_select():
            return self._auto_select()
        return False

    # -------------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------------

    def _is_open(self) -> bool:
        value = self._field.value
        return value is None or value == "" or self._field.is_auto_selected

    def _should_auto_fill(self) -> bool:
        if self._field.field_type != FieldType.NUMBER.value or not self._is_open():
            return False
        return self._dependencies().get("auto_a") is not None

    def _should_auto_select(self) -> bool:
        if self._field.field_type != FieldType.LIST.value or not self._is_open():
            return False
        return bool(self._settings().get("expression_type"))

    def _dependencies(self) -> Dict[str, Any]:
        return self._field.config.get("dependencies") or {}

    def _settings(self) -> Dict[str, Any]:
        return self._field.config.get("auto_populate") or {}

    # -------------------------------------------------------------------------
    # Population
    # -------------------------------------------------------------------------

    def _auto_fill(self) -> bool:
        self._null_dependencies = 0
        data = self._field._data
        changed = False

        value = self._evaluate_dependency("auto_a")
        if value is not None and data.get("value") != value:
            data["value"] = value
            self._field.config["is_auto_selected"] = True
            changed = True

        return self._record_null_dependencies() or changed

    def _auto_select(self) -> bool:
        datatable = self._field.get_datatable()
        if datatable is None:
            return False

        settings = self._settings()
        try:
            expression = SelectExpression(settings.get("expression_type"))
        except ValueError:
            logger.debug(f"Field {self._field.id}: unknown auto-select expression {settings.get('expression_type')!r}")
            return False

        self._null_dependencies = 0
        rows = [
            {"id": row["id"], "value": confirm_number(row["value"])}
            for row in datatable.get_column_rows(settings.get("column_id"))
        ]
        a = confirm_number(self._evaluate_dependency("auto_a"))
        b = confirm_number(self._evaluate_dependency("auto_b")) if expression is SelectExpression.BETWEEN else 0
        results = _FILTERS[expression](rows, a, b)

        # Two best rows sharing a value are ambiguous
        if len(results) == 1 or (len(results) > 1 and results[0]["value"] != results[1]["value"]):
            selected = results[0]["id"]
        else:
            selected = ""

        data = self._field._data
        changed = False
        if data.get("value") != selected:
            data["value"] = selected
            changed = True

        changed = self._record_null_dependencies() or changed
        if changed:
            self._field.config["is_auto_selected"] = True
        return changed

    def _evaluate_dependency(self, name: str) -> Optional[Any]:
        """Resolve one input, counting it when it (or its own inputs) is unset."""
        contract = DependencyContract.coerce(self._dependencies().get(name))
        resolver = self._field.entities
        value = resolver.resolve_value(contract)

        dependency = resolver.resolve_entity(contract)
        upstream_null = (
            dependency is not None
            and getattr(dependency, "entity_type", None) is EntityType.FIELD
            and dependency.config.get("has_null_dependency") is True
        )
        if value is None or upstream_null:
            self._null_dependencies += 1
        return value

    def _record_null_dependencies(self) -> bool:
        has_null = self._null_dependencies > 0
        if self._field.config.get("has_null_dependency", False) == has_null:
            return False
        self._field.config["has_null_dependency"] = has_null
        return True
