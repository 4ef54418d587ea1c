"""
domain/__init__.py - Entity aggregation cascade.

Provides:
- BidEntity: base class with dirty tracking, a notification bus and bindings
- LineItem, Field, Metric, Component, ComponentGroup, Datatable, Assembly,
  BidVariable
- Bid: entity tree root and cascade coordinator
- Project: portfolio of bids with auto-save
"""

from .entity import BidEntity
from .datatable import Datatable
from .assembly import Assembly
from .bid_variable import BidVariable
from .field import Field
from .metric import Metric
from .line_item import LineItem
from .component import Component
from .component_group import ComponentGroup
from .bid import Bid
from .project import ComponentSummary, Project, Saver

__all__ = [
    "BidEntity",
    "Datatable",
    "Assembly",
    "BidVariable",
    "Field",
    "Metric",
    "LineItem",
    "Component",
    "ComponentGroup",
    "Bid",
    "ComponentSummary",
    "Project",
    "Saver",
]
