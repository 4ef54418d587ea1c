"""
bidcascade - Reactive recomputation engine for construction bids.

A bid is a tree of entities (line items, fields, metrics, components,
datatables, variables) that recompute when their dependencies change.
Changes propagate through per-entity notification buses with debounced
delivery; a project aggregates its bids.

Usage:
    from bidcascade import Bid, Project

    bid = Bid.from_record(record)
    bid.bind()
    bid.line_items("12").quantity = 40
    bid.scheduler.settle()
"""

from bidcascade.bootstrap.config import get_config, load_config
from bidcascade.domain.bid import Bid
from bidcascade.domain.project import Project
from bidcascade.errors import (
    BidCascadeError,
    ConfigurationError,
    DependencyContractError,
    EntityAttachmentError,
    EntityCollectionError,
    FormulaError,
    ReadOnlyPropertyError,
)
from bidcascade.formula.evaluator import NO_FORMULA, evaluate, evaluate_boolean
from bidcascade.kernel.scheduler import DebounceScheduler, ManualClock

__version__ = "1.0.0"

__all__ = [
    "__version__",
    "Bid",
    "Project",
    "DebounceScheduler",
    "ManualClock",
    "NO_FORMULA",
    "evaluate",
    "evaluate_boolean",
    "get_config",
    "load_config",
    "BidCascadeError",
    "ConfigurationError",
    "DependencyContractError",
    "EntityAttachmentError",
    "EntityCollectionError",
    "FormulaError",
    "ReadOnlyPropertyError",
]
