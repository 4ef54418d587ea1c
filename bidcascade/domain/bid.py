"""
domain/bid.py - Bid entity

A bid owns every other entity of its tree: line items, fields, metrics,
components, component groups, datatables, assemblies and variables. It sums its included,
active line items into bid totals and coordinates the cascade:

- bind() wires every child and subscribes the bid to its line items'
  `assessed` through one shared debounce, so a burst of line item
  recomputes costs a single bid assessment;
- `bid.assessments.completed` is published once the whole tree has been
  quiet for a while after the last child assessment.

All entities of a bid share one DebounceScheduler. Attaching the bid to a
project moves it onto the project's scheduler.
"""

from __future__ import annotations

import logging
import math
import weakref
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional, Type

from bidcascade.bootstrap.config import CascadeConfig, get_config
from bidcascade.core.enums import EntityEvent, EntityType
from bidcascade.core.values import confirm_number, is_number, round_to
from bidcascade.dependencies.graph import EntityGraph
from bidcascade.dependencies.resolver import DependencyResolver
from bidcascade.dependencies.validator import BidValidator, ValidationIssue
from bidcascade.domain.assembly import Assembly
from bidcascade.domain.bid_variable import BidVariable
from bidcascade.domain.component import Component
from bidcascade.domain.component_group import ComponentGroup
from bidcascade.domain.datatable import Datatable
from bidcascade.domain.entity import BidEntity
from bidcascade.domain.field import Field
from bidcascade.domain.line_item import LineItem
from bidcascade.domain.metric import Metric
from bidcascade.kernel.scheduler import DebounceScheduler

if TYPE_CHECKING:
    from bidcascade.domain.project import Project

logger = logging.getLogger(__name__)


# Collection name -> entity class, in construction order
ENTITY_COLLECTIONS: Dict[str, Type[BidEntity]] = {
    "datatables": Datatable,
    "fields": Field,
    "metrics": Metric,
    "line_items": LineItem,
    "components": Component,
    "assemblies": Assembly,
    "component_groups": ComponentGroup,
}

# Grouping records kept as plain data; they carry nothing the cascade reads
AUXILIARY_COLLECTIONS = ("field_groups", "assembly_maps")

# Bid totals; price and cost are compared at 1 place, the rest at 3
SUMMED_PROPERTIES = ("cost", "price", "markup", "tax", "margin_percent", "labor_hours", "labor_cost", "watts")
COARSE_PROPERTIES = ("price", "cost")

WATT_METRIC_TITLES = ("watt", "watts")


class Bid(BidEntity):
    """
    Root of an entity tree.

    Usage:
        bid = Bid.from_record(record)
        bid.bind()
        bid.line_items("12").quantity = 40
        bid.scheduler.settle()
        bid.cost
    """

    entity_type = EntityType.BID

    def __init__(
        self,
        data: Dict[str, Any],
        scheduler: Optional[DebounceScheduler] = None,
        settings: Optional[CascadeConfig] = None,
        project: Optional["Project"] = None,
    ):
        """
        Initialize the bid and build its entities.

        Args:
            data: Bid record; child collections are taken out of it
            scheduler: Timer table for the whole tree
            settings: Cascade settings; defaults to the loaded config
            project: Owning project (held weakly)
        """
        settings = settings or get_config().cascade
        if scheduler is None:
            scheduler = DebounceScheduler(max_settle_tasks=settings.settle_max_tasks)

        child_records = {name: data.pop(name, None) for name in ENTITY_COLLECTIONS}
        variable_records = data.pop("variables", None)
        self._auxiliary = {name: data.pop(name, None) for name in AUXILIARY_COLLECTIONS}

        super().__init__(data, scheduler=scheduler, settings=settings, max_events=settings.bid_max_events)

        self._resolver = DependencyResolver(self)
        self._project_ref = weakref.ref(project) if project is not None else None
        self._assessment_started: Optional[float] = None

        self.collections: Dict[str, Dict[str, BidEntity]] = {}
        for name, entity_class in ENTITY_COLLECTIONS.items():
            self.collections[name] = {
                str(entity.id): entity
                for entity in (entity_class(record, bid=self) for record in _iter_records(child_records[name]))
            }

        self.variables: Dict[str, BidVariable] = {}
        if isinstance(variable_records, Mapping):
            for key, record in variable_records.items():
                self.variables[str(key)] = BidVariable(key, record, bid=self)

        self.events.subscribe(EntityEvent.ASSESSING, f"{self.requester_id}.timer", self._start_timer)

        logger.debug(
            f"Built bid {self.id}: "
            + ", ".join(f"{len(entities)} {name}" for name, entities in self.collections.items())
            + f", {len(self.variables)} variables"
        )

    @classmethod
    def from_record(
        cls,
        record: Mapping[str, Any],
        scheduler: Optional[DebounceScheduler] = None,
        settings: Optional[CascadeConfig] = None,
        project: Optional["Project"] = None,
    ) -> "Bid":
        """
        Build a bid from a loaded record.

        The top-level mapping is copied; entity records inside it are kept
        by reference and updated in place.
        """
        return cls(dict(record), scheduler=scheduler, settings=settings, project=project)

    # =========================================================================
    # Tree access
    # =========================================================================

    @property
    def bid(self) -> "Bid":
        return self

    @property
    def entities(self) -> DependencyResolver:
        return self._resolver

    @property
    def relations(self) -> DependencyResolver:
        return self._resolver

    @property
    def project(self) -> Optional["Project"]:
        return self._project_ref() if self._project_ref is not None else None

    @project.setter
    def project(self, project: Optional["Project"]) -> None:
        self._project_ref = weakref.ref(project) if project is not None else None

    @property
    def project_id(self) -> Any:
        return self._data.get("project_id")

    def _lookup(self, collection: str, entity_id: Any = None) -> Any:
        entities = self.collections[collection]
        if entity_id is None:
            return entities
        return entities.get(str(entity_id))

    def line_items(self, entity_id: Any = None) -> Any:
        return self._lookup("line_items", entity_id)

    def fields(self, entity_id: Any = None) -> Any:
        return self._lookup("fields", entity_id)

    def metrics(self, entity_id: Any = None) -> Any:
        return self._lookup("metrics", entity_id)

    def components(self, entity_id: Any = None) -> Any:
        return self._lookup("components", entity_id)

    def datatables(self, entity_id: Any = None) -> Any:
        return self._lookup("datatables", entity_id)

    def assemblies(self, entity_id: Any = None) -> Any:
        return self._lookup("assemblies", entity_id)

    def component_groups(self, entity_id: Any = None) -> Any:
        return self._lookup("component_groups", entity_id)

    def auxiliary(self, name: str) -> Any:
        """Raw grouping records (field_groups, assembly_maps)."""
        return self._auxiliary.get(name)

    def iter_entities(self) -> Iterator[BidEntity]:
        """Every entity of the tree except the bid itself."""
        for entities in self.collections.values():
            yield from entities.values()
        yield from self.variables.values()

    def get_bid_entities_by_def_id(self, entity_type: Any, definition_id: Any) -> List[BidEntity]:
        return self._resolver.get_bid_entities_by_def_id(entity_type, definition_id)

    # =========================================================================
    # Scheduler
    # =========================================================================

    def adopt_scheduler(self, scheduler: DebounceScheduler) -> None:
        """Move the whole tree, pending timers included, onto another scheduler."""
        current = self.scheduler
        if scheduler is current:
            return
        moved = scheduler.absorb(current)
        self.events.scheduler = scheduler
        for entity in self.iter_entities():
            entity.events.scheduler = scheduler
        logger.debug(f"Bid {self.id} moved to a shared scheduler ({moved} pending tasks)")

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_active(self) -> bool:
        return self._data.get("is_active", True) is not False

    @is_active.setter
    def is_active(self, value: Any) -> None:
        if isinstance(value, bool) and value != self.is_active:
            self._data["is_active"] = value
            self.dirty()
            self.assess(True)

    def toggle_active(self) -> None:
        self._data["is_active"] = not self.is_active
        self.dirty()
        self.assess(True)

    def is_locked(self) -> bool:
        return bool(self._data.get("is_locked", False))

    def can_lock(self) -> bool:
        return not self.is_locked()

    def can_unlock(self) -> bool:
        return self.is_locked()

    def lock(self) -> None:
        if self.can_lock():
            self._data["is_locked"] = True
            self.dirty()
            self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    def unlock(self) -> None:
        if self.can_unlock():
            self._data["is_locked"] = False
            self.dirty()
            self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    def is_read_only(self) -> bool:
        """Locked bids, and bids of a closed project, accept no edits."""
        project = self.project
        return self.is_locked() or (project is not None and project.is_closed())

    def is_assessable(self) -> bool:
        return not self.is_read_only()

    def is_shell(self) -> bool:
        return bool(self._data.get("is_shell", False))

    def include_tax_in_markup(self) -> bool:
        strategy = self.variables.get("markup_strategy")
        return strategy is not None and strategy.value is True

    # =========================================================================
    # Totals
    # =========================================================================

    @property
    def cost(self) -> float:
        return confirm_number(self._data.get("cost"))

    @property
    def tax(self) -> float:
        return confirm_number(self._data.get("tax"))

    @property
    def labor_hours(self) -> float:
        return confirm_number(self._data.get("labor_hours"))

    @property
    def labor_cost(self) -> float:
        return confirm_number(self._data.get("labor_cost"))

    @property
    def watts(self) -> float:
        return confirm_number(self._data.get("watts"))

    @property
    def tax_percent(self) -> float:
        return confirm_number(self._data.get("tax_percent"))

    @property
    def markup_percent(self) -> float:
        return confirm_number(self._data.get("markup_percent"))

    @property
    def price(self) -> float:
        return confirm_number(self._data.get("price"))

    @price.setter
    def price(self, value: Any) -> None:
        """Scale every included line item's price to reach a new bid price."""
        if not is_number(value) or confirm_number(value) == self._data.get("price"):
            return
        old_price = self.price
        new_price = confirm_number(value)
        if old_price != 0:
            change = (new_price - old_price) / old_price
            for line_item in self.line_items().values():
                if line_item.contributes and line_item.price > 0:
                    line_item.price = line_item.price * (1 + change)
        self._data["price"] = new_price
        self.dirty()
        self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    @property
    def markup(self) -> float:
        return confirm_number(self._data.get("markup"))

    @markup.setter
    def markup(self, value: Any) -> None:
        """Scale every included line item's markup percent to reach a new bid markup."""
        if not is_number(value) or confirm_number(value) == self._data.get("markup"):
            return
        old_markup = self.markup
        new_markup = confirm_number(value)
        if old_markup != 0:
            ratio = 1 + (new_markup - old_markup) / old_markup
            for line_item in self.line_items().values():
                if line_item.contributes and line_item.price > 0:
                    line_item.markup_percent = line_item.markup_percent * ratio
        self._data["markup"] = new_markup
        self.dirty()
        self.events.publish(EntityEvent.PROPERTY_UPDATED, self)

    @property
    def margin_percent(self) -> float:
        return confirm_number(self._data.get("margin_percent"))

    @margin_percent.setter
    def margin_percent(self, value: Any) -> None:
        if is_number(value) and confirm_number(value) != self._data.get("margin_percent"):
            self._apply_margin_percent(confirm_number(value))

    def _apply_margin_percent(self, margin_percent: float) -> None:
        if margin_percent >= 100:
            self.assess()
            return

        bid_cost = self.cost + self.tax
        new_price = bid_cost / (1 - margin_percent / 100)
        new_markup = new_price - bid_cost
        old_markup = self.markup
        ratio = new_markup / old_markup if old_markup != 0 else 1

        self._data["margin_percent"] = margin_percent
        for line_item in self.line_items().values():
            if line_item.contributes and line_item.cost > 0:
                line_item.markup_percent = line_item.markup_percent * ratio

        self.dirty()
        self.events.publish(EntityEvent.UPDATED, self)

    def get_total_watts(self) -> float:
        """Value of the metric titled watt/watts (at least 1), or 0 without one."""
        for metric in self.metrics().values():
            if (metric.title or "").strip().lower() in WATT_METRIC_TITLES:
                return max(confirm_number(metric.value), 1)
        return 0

    def get_margin_percent(self) -> float:
        price = self.price
        return round_to(self.markup / price * 100, 2) if price > 0 else 0

    def reset_markup(self) -> None:
        for line_item in self.line_items().values():
            line_item.reset_markup()

    # =========================================================================
    # Cascade
    # =========================================================================

    def assess(self, force: bool = False) -> None:
        """
        Recompute bid totals from included, active line items.

        Publishes `updated` only when a total changed (or when forced);
        always publishes `assessed`.
        """
        if not self.is_assessable():
            return
        self._begin_assessment()

        totals = dict.fromkeys(SUMMED_PROPERTIES, 0.0)
        for line_item in self.line_items().values():
            if not line_item.contributes:
                continue
            totals["cost"] += line_item.cost
            totals["price"] += line_item.price
            totals["tax"] += line_item.tax
            totals["markup"] += line_item.markup
            if line_item.is_labor():
                totals["labor_hours"] += line_item.labor_hours
                totals["labor_cost"] += line_item.cost

        totals["watts"] = self.get_total_watts()
        margin = totals["markup"] / totals["price"] * 100 if totals["price"] > 0 else 0
        totals["margin_percent"] = round_to(margin, 2)

        changed = False
        for name, value in totals.items():
            places = 1 if name in COARSE_PROPERTIES else 3
            if round_to(confirm_number(self._data.get(name)), places) != round_to(value, places):
                self._data[name] = round_to(value, 4)
                changed = True

        if changed:
            logger.debug(f"Bid {self.id}: cost={self.cost} price={self.price} margin={self.margin_percent}")
        self._finish_assessment(changed, force)

    def bind(self) -> None:
        """Wire every entity of the tree and the bid's own listeners."""
        super().bind()
        for entity in self.iter_entities():
            entity.bind()

        for collection in ("fields", "metrics", "components"):
            for entity in self.collections[collection].values():
                self.listen(entity, EntityEvent.ASSESSED, self._handle_assessment_complete)

        line_item_key = f"bid.{self.id}.line_items"
        for line_item in self.line_items().values():
            self.listen(
                line_item,
                EntityEvent.ASSESSED,
                lambda *_: self.assess(),
                delay_ms=self.settings.bid_line_item_delay_ms,
                debounce_key=line_item_key,
            )
            self.listen(
                line_item,
                EntityEvent.ASSESSED,
                self._handle_assessment_complete,
                suffix=".completion",
            )

        self.listen(self, EntityEvent.ASSESSED, self._handle_assessment_complete, suffix=".completion")

    def unbind(self) -> None:
        for entity in self.iter_entities():
            entity.unbind()
        super().unbind()

    def _start_timer(self, *_: Any) -> None:
        if self._assessment_started is None:
            self._assessment_started = self.scheduler.now()

    def _handle_assessment_complete(self, *_: Any) -> None:
        self.scheduler.schedule(
            f"bid.{self.id}.assessments.completed",
            self.settings.bid_completion_delay_ms,
            self._complete_assessments,
            level=self.level,
            owner=self.events,
        )

    def _complete_assessments(self) -> None:
        if self._assessment_started is not None:
            elapsed = self.scheduler.now() - self._assessment_started
            logger.info(f"Bid {self.id} assessments completed in {elapsed:.1f} ms")
        self._assessment_started = None
        self.events.publish(EntityEvent.ASSESSMENTS_COMPLETED, self)

    def reassess_all(self, force: bool = False) -> bool:
        """
        Assess every entity in dependency order, then the bid.

        Args:
            force: Reassess even when the totals look consistent

        Returns:
            True if a reassessment ran
        """
        if not (force or self.needs_reassessment()):
            return False

        logger.info(f"Reassessing bid {self.id}")
        graph = EntityGraph.from_bid(self)
        for key in graph.recompute_order():
            entity = self._resolver.entity_for_key(key)
            if entity is None or entity is self:
                continue
            entity.assess()
        self.assess()
        return True

    def validate(self) -> List[ValidationIssue]:
        """Structural problems in this bid's configuration (empty when sound)."""
        return BidValidator().validate(self)

    def needs_reassessment(self) -> bool:
        """True when stored totals disagree with the sums of their line items."""
        if self.price == 0:
            return True

        for component in self.components().values():
            if self._component_needs_reassessment(component):
                return True

        cost = 0.0
        price = 0.0
        for line_item in self.line_items().values():
            if line_item.contributes:
                cost += line_item.cost
                price += line_item.price

        return (
            _floor_to(self.price, 0) != _floor_to(price, 0)
            or _floor_to(self.cost, 0) != _floor_to(cost, 0)
        )

    def _component_needs_reassessment(self, component: Component) -> bool:
        cost = 0.0
        price = 0.0
        for line_item in component.get_line_items(True):
            if line_item.contributes:
                cost += line_item.cost
                price += line_item.price
        return (
            _floor_to(component.price, 1) != _floor_to(price, 1)
            or _floor_to(component.cost, 1) != _floor_to(cost, 1)
        )

    # =========================================================================
    # Persistence
    # =========================================================================

    def dirty_entities(self) -> List[BidEntity]:
        """Entities with unsaved changes."""
        return [entity for entity in self.iter_entities() if entity.is_dirty()]

    def export_data(self) -> Dict[str, Any]:
        """Bid record without child collections; variables are included."""
        data = super().export_data()
        data["variables"] = {key: variable.export_data() for key, variable in self.variables.items()}
        return data

    def pristine(self) -> None:
        super().pristine()
        for entity in self.iter_entities():
            entity.pristine()


def _iter_records(records: Any) -> Iterator[Dict[str, Any]]:
    """Entity records from either a mapping keyed by id or a list."""
    if not records:
        return
    values = records.values() if isinstance(records, Mapping) else records
    for record in values:
        if isinstance(record, dict):
            yield record


def _floor_to(value: float, places: int) -> float:
    factor = 10 ** places
    return math.floor(round_to(value * factor, 9)) / factor
