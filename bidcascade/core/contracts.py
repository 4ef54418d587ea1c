"""
core/contracts.py - Dependency contract and rule models

Contracts and rules live inside entity configs as plain mappings. They are
parsed into these models each time a value is resolved; nothing here is
cached, so a config edit is visible on the next recompute.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bidcascade.core.enums import EntityType, RuleType
from bidcascade.errors import ConfigurationError, DependencyContractError


EntityId = Union[int, str]

# Line item dependency keys `scalar_<letter>` feed the scalar formula
SCALAR_PREFIX = "scalar_"


# =============================================================================
# Dependency contracts
# =============================================================================


class DatatableCell(BaseModel):
    """Column/row address of a datatable value."""

    column: str = Field(..., description="Column id")
    row: str = Field(..., description="Row id")

    @field_validator("column", "row", mode="before")
    @classmethod
    def stringify_ids(cls, v):
        if v is None or v == "":
            raise ValueError("datatable address component is empty")
        return str(v)


class DependencyContract(BaseModel):
    """Typed reference from one entity to another entity's value."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = Field(None, description="Referenced entity type")
    bid_entity_id: Optional[EntityId] = Field(None, description="Referenced entity id")
    field: Optional[Any] = Field(None, description="Property, variable key or cell")

    @property
    def entity_type(self) -> Optional[EntityType]:
        return EntityType.parse(self.type)

    @property
    def entity_key(self) -> Optional[str]:
        return None if self.bid_entity_id is None else str(self.bid_entity_id)

    @classmethod
    def coerce(cls, raw: Any) -> Optional["DependencyContract"]:
        """
        Parse a raw contract mapping.

        Args:
            raw: Mapping from an entity config, or an existing contract

        Returns:
            Contract, or None when nothing is referenced

        Raises:
            DependencyContractError: If the mapping cannot be parsed
        """
        if raw is None or isinstance(raw, DependencyContract):
            return raw
        if not isinstance(raw, Mapping) or not raw:
            return None
        try:
            return cls.model_validate(dict(raw))
        except ValidationError as e:
            raise DependencyContractError(
                f"Invalid dependency contract: {e}", contract=dict(raw)
            ) from e

    def datatable_cell(self) -> DatatableCell:
        """
        Address of the referenced datatable cell.

        Raises:
            DependencyContractError: If column or row is missing
        """
        if not isinstance(self.field, Mapping):
            raise DependencyContractError(
                "Datatable dependency requires a {column, row} field",
                contract=self.model_dump(),
                entity_type=EntityType.DATATABLE.value,
                entity_id=self.bid_entity_id,
            )
        try:
            return DatatableCell.model_validate(dict(self.field))
        except ValidationError as e:
            raise DependencyContractError(
                f"Datatable dependency is missing its column or row: {e}",
                contract=self.model_dump(),
                entity_type=EntityType.DATATABLE.value,
                entity_id=self.bid_entity_id,
            ) from e


def contracts_from_mapping(raw: Any) -> Dict[str, DependencyContract]:
    """Parse a `dependencies` mapping, skipping empty entries."""
    if not isinstance(raw, Mapping):
        return {}
    contracts = {}
    for name, value in raw.items():
        contract = DependencyContract.coerce(value)
        if contract is not None:
            contracts[name] = contract
    return contracts


# =============================================================================
# Line item rules
# =============================================================================


class LineItemRule(BaseModel):
    """A single inclusion rule attached to a line item."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = Field(None, description="Rule kind")
    activate_on: bool = Field(
        default=False, description="Polarity: a False value inverts the result"
    )
    dependencies: Dict[str, Any] = Field(default_factory=dict)
    expression: Optional[str] = Field(None, description="value_expression formula")
    list_options: List[Any] = Field(default_factory=list)

    @field_validator("dependencies", mode="before")
    @classmethod
    def empty_dependencies(cls, v):
        # Backends serialise an empty mapping as []
        if v is None or (isinstance(v, list) and not v):
            return {}
        return v

    @field_validator("list_options", mode="before")
    @classmethod
    def empty_options(cls, v):
        return [] if v is None else v

    @field_validator("activate_on", mode="before")
    @classmethod
    def missing_polarity(cls, v):
        return False if v is None else v

    @property
    def rule_type(self) -> Optional[RuleType]:
        try:
            return RuleType(self.type)
        except ValueError:
            return None

    def dependency(self, name: str) -> Optional[DependencyContract]:
        return DependencyContract.coerce(self.dependencies.get(name))

    def contracts(self) -> List[DependencyContract]:
        return list(contracts_from_mapping(self.dependencies).values())

    @classmethod
    def coerce(cls, raw: Any) -> "LineItemRule":
        """
        Parse a raw rule mapping.

        Raises:
            ConfigurationError: If the rule cannot be parsed
        """
        if isinstance(raw, LineItemRule):
            return raw
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid line item rule: {e}") from e


def rules_from_config(raw: Any) -> List[LineItemRule]:
    """Parse a line item's `rules` list (mappings keyed by id are accepted)."""
    if not raw:
        return []
    if isinstance(raw, Mapping):
        raw = list(raw.values())
    return [LineItemRule.coerce(rule) for rule in raw]
