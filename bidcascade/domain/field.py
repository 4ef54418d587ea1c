"""
domain/field.py - Field entity

Fields hold user input: free text, numbers, booleans, or a selection from a
datatable (list fields, whose value is a row id).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from bidcascade.core.contracts import DependencyContract
from bidcascade.core.enums import EntityEvent, EntityType, FieldType
from bidcascade.domain.entity import BidEntity
from bidcascade.rules.auto_populate import FieldAutoPopulateService

if TYPE_CHECKING:
    from bidcascade.domain.datatable import Datatable

logger = logging.getLogger(__name__)


class Field(BidEntity):
    """
    User input value.

    Setting `value` (when it changes and the bid is writable) clears the
    auto-selection flag, marks the field dirty, assesses it and publishes
    `updated` to dependants. Assessment auto-populates an empty field from
    its `auto_a`/`auto_b` dependencies.
    """

    entity_type = EntityType.FIELD

    def __init__(self, data: Dict[str, Any], bid=None, **kwargs):
        super().__init__(data, bid=bid, **kwargs)
        self._auto_populate = FieldAutoPopulateService(self)

    @property
    def value(self) -> Any:
        return self._data.get("value")

    @value.setter
    def value(self, value: Any) -> None:
        bid = self.bid
        if value == self._data.get("value"):
            return
        if bid is not None and bid.is_read_only():
            logger.debug(f"Field {self.id}: ignoring value change on read-only bid {bid.id}")
            return
        self.config["is_auto_selected"] = False
        self._data["value"] = value
        self.dirty()
        self.assess()
        self.events.publish(EntityEvent.UPDATED, self)

    @property
    def actual_value(self) -> Any:
        return self._data.get("actual_value")

    @actual_value.setter
    def actual_value(self, value: Any) -> None:
        self._data["actual_value"] = value
        self.dirty()

    @property
    def field_type(self) -> Optional[str]:
        return self.config.get("type")

    @property
    def is_auto_selected(self) -> bool:
        return bool(self.config.get("is_auto_selected", False))

    # -------------------------------------------------------------------------
    # List fields
    # -------------------------------------------------------------------------

    def get_datatable(self) -> Optional["Datatable"]:
        """Datatable backing a list field, or None for other field types."""
        if self.field_type != FieldType.LIST.value:
            return None
        contract = DependencyContract.coerce((self.config.get("dependencies") or {}).get("datatable"))
        if contract is None or contract.entity_key is None:
            return None
        return self.entities.get_bid_entity(EntityType.DATATABLE, contract.entity_key)

    def get_list_options(self) -> List[Dict[str, Any]]:
        datatable = self.get_datatable()
        return datatable.get_options() if datatable is not None else []

    def get_selected_option(self) -> Optional[Dict[str, Any]]:
        if self.value is None:
            return None
        for option in self.get_list_options():
            if str(option["row_id"]) == str(self.value):
                return option
        return None

    # -------------------------------------------------------------------------
    # Cascade
    # -------------------------------------------------------------------------

    def assess(self, force: bool = False) -> None:
        if not self.is_assessable():
            return
        self._begin_assessment()
        changed = self._auto_populate.should_auto_populate() and self._auto_populate.auto_populate()
        self._finish_assessment(changed, force)

    def bind(self) -> None:
        super().bind()
        if not self.is_assessable():
            return
        for dependency in self.dependencies():
            self.listen(dependency, EntityEvent.UPDATED, lambda *_: self.assess())

    def is_dirty(self) -> bool:
        return self._is_dirty or self._config_changed()

    def export_data(self) -> Dict[str, Any]:
        data = super().export_data()
        if not self._config_changed():
            data.pop("config", None)
        return data
