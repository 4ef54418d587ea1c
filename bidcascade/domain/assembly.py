"""
domain/assembly.py - Assembly entity

Assemblies group entities created together from one template. They carry
no computed values of their own.
"""

from __future__ import annotations

from bidcascade.core.enums import EntityType
from bidcascade.domain.entity import BidEntity


class Assembly(BidEntity):
    entity_type = EntityType.ASSEMBLY

    def assess(self, force: bool = False) -> None:
        self._begin_assessment()
        self._finish_assessment(False, force)
