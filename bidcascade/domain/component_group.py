"""
domain/component_group.py - Component group entity

A component group partitions a bid's components (each component names its
group in `config.component_group_id`). It computes nothing; the project
component summary can be scoped to one group.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict

from bidcascade.core.enums import EntityType
from bidcascade.domain.entity import BidEntity

if TYPE_CHECKING:
    from bidcascade.domain.component import Component


class ComponentGroup(BidEntity):
    entity_type = EntityType.COMPONENT_GROUP

    def get_components(self, top_level_only: bool = False) -> Dict[str, "Component"]:
        """
        Components of the bid that belong to this group.

        Args:
            top_level_only: Skip components nested under a parent component

        Returns:
            Components keyed by id
        """
        components = {}
        for key, component in self.bid.components().items():
            if str(component.component_group_id) != str(self.id):
                continue
            if top_level_only and component.parent_component_id:
                continue
            components[key] = component
        return components

    def dirty(self) -> None:
        super().dirty()
        self.bid.dirty()

    def assess(self, force: bool = False) -> None:
        self._begin_assessment()
        self._finish_assessment(False, force)
