"""
dependencies/resolver.py - Dependency contract resolution

Looks up entities and values of a bid from dependency contracts. Absent
entities and unset values resolve to None (or 0 where a number is
expected); only structurally invalid contracts raise.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Union

from bidcascade.core.contracts import DependencyContract
from bidcascade.core.enums import EntityType, FieldType
from bidcascade.core.values import confirm_number
from bidcascade.errors import EntityCollectionError

if TYPE_CHECKING:
    from bidcascade.domain.bid import Bid
    from bidcascade.domain.component import Component
    from bidcascade.domain.entity import BidEntity
    from bidcascade.domain.field import Field

logger = logging.getLogger(__name__)


ContractLike = Union[DependencyContract, Mapping[str, Any], None]
TypeLike = Union[EntityType, str]


class DependencyResolver:
    """
    Contract lookup over one bid's in-memory collections.

    Usage:
        resolver = DependencyResolver(bid)
        wage = resolver.resolve_value({"type": "bid_variable", "field": "wage"})
        field = resolver.get_bid_entity("field", 12)
    """

    def __init__(self, bid: "Bid"):
        self._bid = bid

    @property
    def bid(self) -> "Bid":
        return self._bid

    # =========================================================================
    # Collections
    # =========================================================================

    def get_collection(self, name: str) -> Dict[str, "BidEntity"]:
        """
        Get a bid collection by name.

        Raises:
            EntityCollectionError: If the bid has no such collection
        """
        if name in ("variables", "bid_variables"):
            return self._bid.variables
        collection = self._bid.collections.get(name)
        if collection is None:
            raise EntityCollectionError(name)
        return collection

    def get_bid_entity(self, entity_type: TypeLike, entity_id: Any = None) -> Any:
        """
        Get an entity by type and id, or the whole collection when id is None.

        Returns:
            The entity, the collection mapping, or None when absent
        """
        kind = EntityType.parse(entity_type)
        if kind is None:
            return None
        if kind is EntityType.BID:
            return self._bid
        try:
            collection = self.get_collection(kind.collection_name)
        except EntityCollectionError:
            return None
        if entity_id is None:
            return collection
        return collection.get(str(entity_id))

    def bid_entity_exists(self, entity_type: TypeLike, entity_id: Any) -> bool:
        return self.get_bid_entity(entity_type, entity_id) is not None

    # =========================================================================
    # Contracts
    # =========================================================================

    def resolve_entity(self, contract: ContractLike) -> Any:
        """
        Resolve a contract to the entity it references.

        Args:
            contract: Contract model or raw mapping

        Returns:
            Entity, the bid itself, or None
        """
        contract = DependencyContract.coerce(contract)
        if contract is None:
            return None

        kind = contract.entity_type
        if kind is None:
            return None

        if kind is EntityType.BID:
            return self._bid
        elif kind is EntityType.BID_VARIABLE:
            if contract.field is None:
                return None
            return self._bid.variables.get(str(contract.field))
        elif kind in (
            EntityType.LINE_ITEM,
            EntityType.FIELD,
            EntityType.METRIC,
            EntityType.DATATABLE,
            EntityType.COMPONENT,
            EntityType.ASSEMBLY,
        ):
            if contract.entity_key is None:
                return None
            return self.get_bid_entity(kind, contract.entity_key)
        elif kind is EntityType.PROJECT:
            return None
        return None

    def resolve_value(self, contract: ContractLike) -> Any:
        """
        Resolve a contract to the value it references.

        Returns:
            Number, raw field value, datatable cell, or None

        Raises:
            DependencyContractError: If a datatable contract lacks column/row
        """
        contract = DependencyContract.coerce(contract)
        if contract is None:
            return None

        kind = contract.entity_type
        if kind is None:
            return None

        # Addressing is checked before lookup: a malformed reference is a
        # configuration error even when the datatable is absent.
        cell = contract.datatable_cell() if kind is EntityType.DATATABLE else None

        entity = self.resolve_entity(contract)
        if entity is None:
            return None

        if kind is EntityType.BID_VARIABLE:
            return entity.value
        elif kind is EntityType.LINE_ITEM:
            if contract.field is None or not entity.is_included:
                return 0
            return entity.number_of(str(contract.field))
        elif kind in (EntityType.COMPONENT, EntityType.BID):
            if contract.field is None:
                return 0
            return entity.number_of(str(contract.field))
        elif kind is EntityType.FIELD:
            if entity.value is None:
                return None
            return self.get_field_value(entity, contract.field)
        elif kind is EntityType.DATATABLE:
            return entity.get_value(cell.column, cell.row)
        elif kind is EntityType.METRIC:
            return confirm_number(entity.value, 0)
        elif kind in (EntityType.ASSEMBLY, EntityType.PROJECT):
            return None
        return None

    def dependency_exists(self, contract: ContractLike) -> bool:
        return self.resolve_entity(contract) is not None

    def get_field_value(self, field: Optional["Field"], column: Any = None) -> Any:
        """
        Value of a field; list fields read their datatable cell.

        Args:
            field: Field entity
            column: Datatable column for list fields

        Returns:
            Raw value, datatable cell, or None
        """
        if field is None or field.value is None:
            return None
        if field.field_type == FieldType.LIST.value:
            datatable = field.get_datatable()
            if datatable is None or column is None:
                return None
            return datatable.get_value(column, field.value)
        return field.value

    # =========================================================================
    # Searches
    # =========================================================================

    def get_bid_entities_by_def_id(self, entity_type: TypeLike, definition_id: Any) -> List["BidEntity"]:
        """All metrics or fields sharing a definition id."""
        kind = EntityType.parse(entity_type)
        if kind not in (EntityType.METRIC, EntityType.FIELD):
            return []
        return [
            entity for entity in self.get_collection(kind.collection_name).values()
            if str(entity.definition_id) == str(definition_id)
        ]

    def get_component_by_def_id(self, definition_id: Any) -> Optional["Component"]:
        for component in self._bid.components().values():
            if str(component.definition_id) == str(definition_id):
                return component
        return None

    def search_by_title(self, entity_type: TypeLike, query: str, exact: bool = False) -> List["BidEntity"]:
        """
        Entities of a type whose title matches a query.

        Args:
            entity_type: Collection to search
            query: Title text (case-insensitive)
            exact: Require the whole title to match

        Returns:
            Matching entities
        """
        kind = EntityType.parse(entity_type)
        if kind is None or kind is EntityType.BID:
            return []
        needle = query.lower()
        matches = []
        for entity in self.get_collection(kind.collection_name).values():
            title = (entity.title or "").lower()
            if (exact and title == needle) or (not exact and needle in title):
                matches.append(entity)
        return matches

    def get_dependants(self, entity_type: TypeLike, entity_id: Any) -> List["BidEntity"]:
        """Entities whose contracts reference the given entity."""
        from bidcascade.dependencies.graph import EntityGraph

        kind = EntityType.parse(entity_type)
        if kind is None:
            return []
        graph = EntityGraph.from_bid(self._bid)
        key = (kind.value, str(entity_id))
        dependants = []
        for dependant_key in graph.dependants_of(key):
            entity = self.entity_for_key(dependant_key)
            if entity is not None:
                dependants.append(entity)
        return dependants

    def entity_for_key(self, key) -> Optional["BidEntity"]:
        """Entity for a graph key ((type, id) pair)."""
        kind, entity_id = key
        if kind == EntityType.BID.value:
            return self._bid
        if kind == EntityType.BID_VARIABLE.value:
            return self._bid.variables.get(entity_id)
        return self.get_bid_entity(kind, entity_id)
