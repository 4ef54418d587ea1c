"""
dependencies/__init__.py - Dependency resolution.

Provides:
- DependencyResolver: contract lookup over a bid's collections
- EntityGraph: dependency graph, dependants and recompute order
- BidValidator: structural checks reporting ValidationIssue records
"""

from .resolver import DependencyResolver
from .graph import EntityGraph
from .validator import BidValidator, IssueType, ValidationIssue

__all__ = [
    "DependencyResolver",
    "EntityGraph",
    "BidValidator",
    "IssueType",
    "ValidationIssue",
]
