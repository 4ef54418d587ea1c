"""
domain/bid_variable.py - Bid variable entity

Named scalar of a bid (wage, tax rate, escalator...). Variables are keyed by
their name rather than a numeric id and have no config.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from bidcascade.core.enums import EntityEvent, EntityType
from bidcascade.domain.entity import BidEntity
from bidcascade.errors import ReadOnlyPropertyError

logger = logging.getLogger(__name__)


class BidVariable(BidEntity):
    """Named value holder; publishes `updated` when its value is set."""

    entity_type = EntityType.BID_VARIABLE

    def __init__(self, key: str, data: Dict[str, Any], bid=None, **kwargs):
        self._key = str(key)
        super().__init__(data, bid=bid, **kwargs)

    @property
    def id(self) -> str:
        return self._key

    @property
    def value_type(self) -> Optional[str]:
        return self._data.get("type")

    @value_type.setter
    def value_type(self, value: str) -> None:
        self._data["type"] = value
        self.dirty()

    @property
    def value(self) -> Any:
        return self._data.get("value")

    @value.setter
    def value(self, value: Any) -> None:
        self._data["value"] = value
        self.dirty()
        self.events.publish(EntityEvent.UPDATED, self)

    @property
    def config(self) -> Dict[str, Any]:
        raise ReadOnlyPropertyError("config", entity_type=self.entity_type.value)

    @config.setter
    def config(self, value: Any) -> None:
        raise ReadOnlyPropertyError("config", entity_type=self.entity_type.value)

    def dependency_contracts(self):
        return []

    def assess(self, force: bool = False) -> None:
        self._begin_assessment()
        self._finish_assessment(False, force)
