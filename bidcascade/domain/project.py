"""
domain/project.py - Project entity

A project aggregates its active bids into portfolio totals and a
per-definition component summary. Bids attached to a project move onto
the project's scheduler; the project recomputes on a debounce after any
bid's `assessed`.

Saving is delegated to a caller-supplied Saver callable; with auto-save
enabled the project saves itself once it has been quiet for a while after
its last `changed`.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from bidcascade.bootstrap.config import CascadeConfig, get_config
from bidcascade.core.enums import EntityEvent, EntityType
from bidcascade.core.values import confirm_number, round_to
from bidcascade.domain.bid import Bid
from bidcascade.domain.entity import BidEntity
from bidcascade.errors import ConfigurationError, EntityAttachmentError
from bidcascade.kernel.scheduler import DebounceScheduler

logger = logging.getLogger(__name__)


Saver = Callable[["Project"], Any]

SUMMED_PROPERTIES = ("price", "cost", "tax", "markup", "watts", "labor_hours")


@dataclass
class ComponentSummary:
    """Totals of every top-level component sharing one definition."""
    definition_id: Any
    title: Optional[str] = None
    count: int = 0
    cost: float = 0.0
    price: float = 0.0
    markup: float = 0.0
    tax: float = 0.0
    labor_hours: float = 0.0
    price_per_watt: float = 0.0
    cost_per_watt: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Project(BidEntity):
    """
    Portfolio of bids.

    Usage:
        project = Project(record)
        project.attach_bid(bid)
        project.bind()
        project.enable_auto_save(saver)
    """

    entity_type = EntityType.PROJECT

    def __init__(
        self,
        data: Dict[str, Any],
        scheduler: Optional[DebounceScheduler] = None,
        settings: Optional[CascadeConfig] = None,
    ):
        settings = settings or get_config().cascade
        if scheduler is None:
            scheduler = DebounceScheduler(max_settle_tasks=settings.settle_max_tasks)
        super().__init__(data, scheduler=scheduler, settings=settings)

        self._bids: Dict[str, Bid] = {}
        self._saver: Optional[Saver] = None
        self._assessment_started: Optional[float] = None
        self.component_summary: Dict[str, ComponentSummary] = {}

        self.events.subscribe_delayed(
            EntityEvent.PROPERTY_UPDATED,
            self.settings.project_self_delay_ms,
            "self",
            lambda *_: self.assess(),
            level=self.level,
        )
        self.events.subscribe(EntityEvent.ASSESSING, f"{self.requester_id}.timer", self._start_timer)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def bid(self) -> None:
        return None

    @property
    def bids(self) -> Dict[str, Bid]:
        return self._bids

    @BidEntity.title.setter
    def title(self, value: Any) -> None:
        if isinstance(value, str) and value:
            self._data["title"] = value
            self.dirty()

    @property
    def price(self) -> float:
        return confirm_number(self._data.get("price"))

    @property
    def cost(self) -> float:
        return confirm_number(self._data.get("cost"))

    @property
    def tax(self) -> float:
        return confirm_number(self._data.get("tax"))

    @property
    def markup(self) -> float:
        return confirm_number(self._data.get("markup"))

    @property
    def watts(self) -> float:
        return confirm_number(self._data.get("watts"))

    @property
    def labor_hours(self) -> float:
        return confirm_number(self._data.get("labor_hours"))

    @property
    def margin_percent(self) -> float:
        return confirm_number(self._data.get("margin_percent"))

    @property
    def closed_at(self) -> Any:
        return self._data.get("closed_at")

    def is_closed(self) -> bool:
        return bool(self._data.get("closed_at"))

    def is_reconciled(self) -> bool:
        return bool(self._data.get("reconciled_at"))

    def is_assessable(self) -> bool:
        return True

    def dependency_contracts(self):
        return []

    def dependants(self):
        return []

    # =========================================================================
    # Bids
    # =========================================================================

    def attach_bid(self, bid: Bid) -> None:
        """
        Attach a bid and subscribe to its cascade.

        Raises:
            EntityAttachmentError: If the bid is attached already or belongs
                to another project
        """
        key = str(bid.id)
        if key in self._bids:
            raise EntityAttachmentError("Bid is already attached.", entity_type="bid", entity_id=bid.id)
        if str(bid.project_id) != str(self.id):
            raise EntityAttachmentError("Bid is not associated with project.", entity_type="bid", entity_id=bid.id)

        bid.adopt_scheduler(self.scheduler)
        bid.project = self
        self._bids[key] = bid
        self._bind_to_bid(bid)
        logger.debug(f"Project {self.id}: attached bid {bid.id}")

    def detach_bid(self, bid: Bid) -> None:
        """
        Detach a bid, drop every subscription between the two, and reassess.

        Raises:
            EntityAttachmentError: If the bid is not attached
        """
        key = str(bid.id)
        if key not in self._bids:
            raise EntityAttachmentError("Bid is not attached.", entity_type="bid", entity_id=bid.id)
        if str(bid.project_id) != str(self.id):
            raise EntityAttachmentError("Bid is not associated with project.", entity_type="bid", entity_id=bid.id)

        self.unlisten(bid)
        bid.unbind()
        bid.project = None
        del self._bids[key]
        logger.debug(f"Project {self.id}: detached bid {bid.id}")
        self.assess()

    def _bind_to_bid(self, bid: Bid) -> None:
        self.listen(
            bid,
            EntityEvent.ASSESSING,
            lambda *_: self.events.publish(EntityEvent.ASSESSING, self),
            delay_ms=self.settings.project_bid_assessing_delay_ms,
        )
        self.listen(bid, EntityEvent.CHANGED, lambda *_: self.dirty(), suffix=".bid-changed")
        # One quiet period across all bids, then a single project assessment.
        self.listen(
            bid,
            EntityEvent.ASSESSED,
            lambda *_: self.assess(),
            delay_ms=self.settings.project_bid_delay_ms,
            debounce_key=f"project.{self.id}.bids",
            suffix=".assessed",
        )

    def bind(self) -> None:
        """Wire every attached bid and the project's subscriptions to them."""
        super().bind()
        for bid in self._bids.values():
            bid.bind()
            self._bind_to_bid(bid)

    def unbind(self) -> None:
        for bid in self._bids.values():
            bid.unbind()
        super().unbind()

    # =========================================================================
    # Cascade
    # =========================================================================

    def _start_timer(self, *_: Any) -> None:
        if self._assessment_started is None:
            self._assessment_started = self.scheduler.now()

    def assess(self, force: bool = False) -> None:
        """Sum active bids; always marks dirty and publishes `updated`."""
        self._begin_assessment()

        for name in SUMMED_PROPERTIES:
            self._data[name] = 0
        for bid in self._bids.values():
            if not bid.is_active:
                continue
            for name in SUMMED_PROPERTIES:
                self._data[name] += confirm_number(bid.value_of(name))

        price = self._data["price"]
        margin = self._data["markup"] / price * 100 if price > 0 else 0
        self._data["margin_percent"] = confirm_number(round_to(margin, 4))

        self.component_summary = self._summarize_components()

        if self._assessment_started is not None:
            elapsed = self.scheduler.now() - self._assessment_started
            logger.debug(f"Project {self.id} assessed in {elapsed:.1f} ms")
            self._assessment_started = None

        self._finish_assessment(True)

    def get_component_summary(self, component_group_id: Any = None) -> Dict[str, ComponentSummary]:
        """
        Per-definition totals of top-level components.

        Args:
            component_group_id: Only count components of this group

        Returns:
            Summaries keyed by definition id; the unscoped summary is the
            one cached by the last assessment
        """
        if component_group_id is None:
            return self.component_summary
        return self._summarize_components(component_group_id)

    def _summarize_components(self, component_group_id: Any = None) -> Dict[str, ComponentSummary]:
        """Top-level components of active bids, grouped by definition id."""
        watts = self.watts
        summary: Dict[str, ComponentSummary] = {}
        for bid in self._bids.values():
            if not bid.is_active:
                continue
            for component in bid.components().values():
                if component.parent_component_id:
                    continue
                if component_group_id is not None and str(component.component_group_id) != str(component_group_id):
                    continue
                key = str(component.definition_id)
                entry = summary.get(key)
                if entry is None:
                    entry = summary[key] = ComponentSummary(
                        definition_id=component.definition_id, title=component.title
                    )
                entry.count += 1
                entry.cost += component.cost
                entry.price += component.price
                entry.markup += component.markup
                entry.tax += component.tax
                entry.labor_hours += component.labor_hours

        for entry in summary.values():
            entry.price_per_watt = entry.price / watts if watts > 0 else 0
            entry.cost_per_watt = entry.cost / watts if watts > 0 else 0
        return summary

    # =========================================================================
    # Persistence
    # =========================================================================

    def enable_auto_save(self, saver: Saver, delay_ms: Optional[float] = None) -> None:
        """
        Save automatically once the project has been quiet after a change.

        Args:
            saver: Called with the project
            delay_ms: Quiet period; never below the configured minimum
        """
        if isinstance(delay_ms, (int, float)) and not isinstance(delay_ms, bool):
            delay = max(delay_ms, self.settings.auto_save_min_delay_ms)
        else:
            delay = self.settings.auto_save_delay_ms
        self._saver = saver
        requester = f"{self.requester_id}.auto-save"
        self.events.unsubscribe(EntityEvent.CHANGED, requester)
        self.events.subscribe_delayed(EntityEvent.CHANGED, delay, requester, lambda *_: self.save())
        logger.info(f"Project {self.id}: auto-save enabled ({delay} ms)")

    def disable_auto_save(self) -> None:
        self.events.unsubscribe(EntityEvent.CHANGED, f"{self.requester_id}.auto-save")

    def save(self, saver: Optional[Saver] = None) -> Any:
        """
        Hand the project to the saver.

        Raises:
            ConfigurationError: If no saver is available
        """
        saver = saver or self._saver
        if saver is None:
            raise ConfigurationError("No saver configured", entity_type="project", entity_id=self.id)
        self.events.publish(EntityEvent.SAVING, self)
        result = saver(self)
        self.events.publish(EntityEvent.SAVED, self)
        return result

    def export_data(self) -> Dict[str, Any]:
        data = copy.deepcopy(self._data)
        data.pop("bids", None)
        data.pop("components", None)
        return data

    def pristine(self) -> None:
        super().pristine()
        for bid in self._bids.values():
            bid.pristine()
