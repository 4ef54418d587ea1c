"""
dependencies/graph.py - Entity dependency graph

Directed graph of a bid's entities; an edge points from a dependency to the
entity that reads it. Built from every entity's contracts plus component
containment, so it answers "who depends on X" and "in which order should a
full recompute visit entities".

Cycles are legal in bid configurations. recompute_order() collapses each
strongly connected group into one node instead of failing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, List, Tuple

import networkx as nx

from bidcascade.core.enums import ENTITY_LEVELS, EntityType

if TYPE_CHECKING:
    from bidcascade.domain.bid import Bid

logger = logging.getLogger(__name__)


EntityKey = Tuple[str, str]


class EntityGraph:
    """
    networkx-backed dependency graph over entity keys ((type, id) pairs).

    Usage:
        graph = EntityGraph.from_bid(bid)
        graph.dependants_of(("field", "3"))
        for key in graph.recompute_order():
            ...
    """

    def __init__(self):
        self._graph = nx.DiGraph()

    @property
    def graph(self) -> nx.DiGraph:
        return self._graph

    def add_entity(self, key: EntityKey, level: int = 0) -> None:
        self._graph.add_node(key, level=level)

    def add_dependency(self, dependant: EntityKey, dependency: EntityKey) -> None:
        """Record that `dependant` reads a value from `dependency`."""
        for key in (dependant, dependency):
            if key not in self._graph:
                self.add_entity(key, level=_level_for(key))
        self._graph.add_edge(dependency, dependant)

    @classmethod
    def from_bid(cls, bid: "Bid") -> "EntityGraph":
        """Build the graph of every entity in a bid."""
        graph = cls()
        resolver = bid.entities
        graph.add_entity(bid.key, level=bid.level)

        for entity in bid.iter_entities():
            graph.add_entity(entity.key, level=entity.level)

        for entity in bid.iter_entities():
            for contract in entity.dependency_contracts():
                dependency = resolver.resolve_entity(contract)
                if dependency is not None and hasattr(dependency, "key"):
                    graph.add_dependency(entity.key, dependency.key)

        for component in bid.components().values():
            for line_item in component.get_line_items():
                graph.add_dependency(component.key, line_item.key)
            for sub_component in component.get_sub_components():
                graph.add_dependency(component.key, sub_component.key)

        for line_item in bid.line_items().values():
            graph.add_dependency(bid.key, line_item.key)

        logger.debug(
            f"Entity graph for bid {bid.id}: "
            f"{graph._graph.number_of_nodes()} nodes, {graph._graph.number_of_edges()} edges"
        )
        return graph

    def __contains__(self, key: EntityKey) -> bool:
        return key in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def dependencies_of(self, key: EntityKey) -> List[EntityKey]:
        """Direct dependencies of an entity."""
        if key not in self._graph:
            return []
        return sorted(self._graph.predecessors(key))

    def dependants_of(self, key: EntityKey) -> List[EntityKey]:
        """Entities that directly read from an entity."""
        if key not in self._graph:
            return []
        return sorted(self._graph.successors(key))

    def all_downstream(self, key: EntityKey) -> List[EntityKey]:
        """Every entity affected, transitively, by a change to `key`."""
        if key not in self._graph:
            return []
        return sorted(nx.descendants(self._graph, key))

    def cycles(self) -> List[List[EntityKey]]:
        """Dependency cycles, for diagnostics."""
        return [list(cycle) for cycle in nx.simple_cycles(self._graph)]

    def recompute_order(self) -> List[EntityKey]:
        """
        Order in which a full recompute should visit entities.

        Dependencies come before dependants. Members of a cycle are grouped
        together and ordered by (level, key).
        """
        condensed = nx.condensation(self._graph)
        order: List[EntityKey] = []
        for component_id in nx.lexicographical_topological_sort(
            condensed, key=lambda node: self._group_sort_key(condensed, node)
        ):
            members = condensed.nodes[component_id]["members"]
            order.extend(sorted(members, key=self._sort_key))
        return order

    def _sort_key(self, key: EntityKey) -> Tuple[int, str, str]:
        return (self._graph.nodes[key].get("level", 0), key[0], key[1])

    def _group_sort_key(self, condensed: nx.DiGraph, node: Any) -> Tuple[int, str, str]:
        return min(self._sort_key(member) for member in condensed.nodes[node]["members"])


def _level_for(key: EntityKey) -> int:
    kind = EntityType.parse(key[0])
    return ENTITY_LEVELS.get(kind, 0) if kind is not None else 0
