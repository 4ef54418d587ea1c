"""
bidcascade/errors.py - Cascade exceptions

Structural problems (bad configuration, malformed contracts, unknown
collections) raise. Missing data never raises: resolvers return None and
aggregations fall back to 0.
"""

from __future__ import annotations

from typing import Any, Optional


class BidCascadeError(Exception):
    """Base exception for the recomputation engine."""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id

    def __str__(self) -> str:
        parts = [self.message]
        if self.entity_type:
            parts.append(f"[{self.entity_type}={self.entity_id}]")
        return " ".join(parts)


class ConfigurationError(BidCascadeError):
    """Raised when an entity's configuration cannot be interpreted."""
    pass


class DependencyContractError(ConfigurationError):
    """Raised when a dependency contract is structurally invalid."""

    def __init__(
        self,
        message: str,
        contract: Optional[Any] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(message, entity_type=entity_type, entity_id=entity_id)
        self.contract = contract


class EntityCollectionError(ConfigurationError):
    """Raised when a bid has no collection of the requested name."""

    def __init__(self, collection: str):
        super().__init__(f"Bid entity collection '{collection}' does not exist")
        self.collection = collection


class EntityAttachmentError(BidCascadeError):
    """Raised when attaching or detaching a bid from a project is invalid."""
    pass


class ReadOnlyPropertyError(BidCascadeError):
    """Raised on assignment to a property that cannot be replaced."""

    def __init__(self, property_name: str, entity_type: Optional[str] = None):
        super().__init__(
            f"Property '{property_name}' is read only",
            entity_type=entity_type,
        )
        self.property_name = property_name


class FormulaError(BidCascadeError):
    """Raised when a formula cannot be parsed or evaluated."""

    def __init__(self, message: str, formula: Optional[str] = None):
        super().__init__(message)
        self.formula = formula

    def __str__(self) -> str:
        if self.formula is None:
            return self.message
        return f"{self.message} [formula={self.formula!r}]"
