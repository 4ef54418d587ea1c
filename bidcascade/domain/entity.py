"""
domain/entity.py - Base bid entity

Every node of a bid tree (line items, fields, metrics, components,
datatables, assemblies, variables, the bid and the project) wraps its raw
record and owns a NotificationBus. Subscriptions an entity makes on other
entities' buses are tracked so that unbind() can drop them again.
"""

from __future__ import annotations

import copy
import logging
import weakref
from typing import TYPE_CHECKING, Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from bidcascade.bootstrap.config import CascadeConfig, get_config
from bidcascade.core.contracts import DependencyContract, contracts_from_mapping
from bidcascade.core.enums import ENTITY_LEVELS, AssessmentState, EntityEvent, EntityType
from bidcascade.core.values import confirm_number
from bidcascade.errors import ReadOnlyPropertyError
from bidcascade.kernel.event_bus import EventName, NotificationBus
from bidcascade.kernel.scheduler import DebounceScheduler

if TYPE_CHECKING:
    from bidcascade.dependencies.resolver import DependencyResolver
    from bidcascade.domain.bid import Bid

logger = logging.getLogger(__name__)


EntityKey = Tuple[str, str]


class BidEntity:
    """
    Base class for all entities of a bid tree.

    Subclasses set `entity_type` and implement assess().
    """

    entity_type: EntityType = None

    def __init__(
        self,
        data: Dict[str, Any],
        bid: Optional["Bid"] = None,
        scheduler: Optional[DebounceScheduler] = None,
        settings: Optional[CascadeConfig] = None,
        max_events: Optional[int] = None,
    ):
        """
        Initialize the entity.

        Args:
            data: Raw entity record (kept by reference, mutated in place)
            bid: Owning bid (held weakly)
            scheduler: Timer table; defaults to the owning bid's
            settings: Cascade settings; defaults to the loaded config
            max_events: Loop guard ceiling for this entity's bus
        """
        self._data = data
        self._original = copy.deepcopy(data)
        self._is_dirty = False
        self._bid_ref = weakref.ref(bid) if bid is not None else None
        self.settings = settings or (bid.settings if bid is not None else get_config().cascade)
        self.assessment_state = AssessmentState.IDLE

        if scheduler is None and bid is not None:
            scheduler = bid.scheduler
        self.events = NotificationBus(
            name=self.requester_id,
            scheduler=scheduler,
            max_events=max_events if max_events is not None else self.settings.max_events,
        )

        # (target bus, requester id) pairs this entity subscribed with
        self._bindings: List[Tuple[NotificationBus, str]] = []

        self.events.subscribe_delayed(
            EntityEvent.ASSESSED,
            self.settings.guard_reset_delay_ms,
            "self.clear",
            lambda *_: self.events.reset_guard(),
            level=self.level,
        )

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def id(self) -> Any:
        return self._data.get("id")

    @property
    def type(self) -> EntityType:
        return self.entity_type

    @property
    def key(self) -> EntityKey:
        return (self.entity_type.value, str(self.id))

    @property
    def level(self) -> int:
        return ENTITY_LEVELS.get(self.entity_type, 0)

    @property
    def requester_id(self) -> str:
        """Identity used for subscriptions this entity makes."""
        return f"{self.entity_type.value}.{self.id}"

    @property
    def title(self) -> Optional[str]:
        return self._data.get("title")

    @title.setter
    def title(self, value: str) -> None:
        self._data["title"] = value
        self.dirty()

    @property
    def definition_id(self) -> Any:
        return self._data.get("definition_id")

    @property
    def config(self) -> Dict[str, Any]:
        config = self._data.get("config")
        if config is None:
            config = self._data["config"] = {}
        return config

    @config.setter
    def config(self, value: Any) -> None:
        raise ReadOnlyPropertyError("config", entity_type=self.entity_type.value)

    @property
    def bid(self) -> Optional["Bid"]:
        return self._bid_ref() if self._bid_ref is not None else None

    @property
    def entities(self) -> "DependencyResolver":
        return self.bid.entities

    @property
    def scheduler(self) -> DebounceScheduler:
        return self.events.scheduler

    def value_of(self, name: str) -> Any:
        """Read a named property: a Python property if defined, else the record."""
        if isinstance(getattr(type(self), name, None), property):
            return getattr(self, name)
        return self._data.get(name)

    def number_of(self, name: str, default: float = 0) -> float:
        return confirm_number(self.value_of(name), default)

    # -------------------------------------------------------------------------
    # Dirty tracking
    # -------------------------------------------------------------------------

    def dirty(self) -> None:
        """Flag the entity as changed and to be saved."""
        self._is_dirty = True
        self.events.publish(EntityEvent.CHANGED, self)

    def pristine(self) -> None:
        """Mark the entity clean (after a successful save)."""
        self._is_dirty = False
        self._original = copy.deepcopy(self._data)

    def is_dirty(self) -> bool:
        return self._is_dirty

    def _config_changed(self) -> bool:
        return (self._data.get("config") or {}) != (self._original.get("config") or {})

    def export_data(self) -> Dict[str, Any]:
        """Plain snapshot of the persisted record."""
        return copy.deepcopy(self._data)

    # -------------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------------

    def dependency_contracts(self) -> List[DependencyContract]:
        return list(contracts_from_mapping(self.config.get("dependencies")).values())

    def dependencies(self) -> List["BidEntity"]:
        """Entities this entity reads values from."""
        found = []
        for contract in self.dependency_contracts():
            dependency = self.entities.resolve_entity(contract)
            if isinstance(dependency, BidEntity):
                found.append(dependency)
        return found

    def dependants(self) -> List["BidEntity"]:
        """Entities that read values from this entity."""
        return self.entities.get_dependants(self.entity_type, self.id)

    # -------------------------------------------------------------------------
    # Assessment
    # -------------------------------------------------------------------------

    def is_assessable(self) -> bool:
        bid = self.bid
        return bid is None or bid.is_assessable()

    def assess(self, force: bool = False) -> None:
        raise NotImplementedError(f"{type(self).__name__} must implement assess()")

    def _begin_assessment(self) -> None:
        self.assessment_state = AssessmentState.ASSESSING
        self.events.publish(EntityEvent.ASSESSING, self)

    def _finish_assessment(self, changed: bool, force: bool = False) -> None:
        if changed or force:
            self.dirty()
            self.events.publish(EntityEvent.UPDATED, self)
        self.assessment_state = AssessmentState.ASSESSED
        self.events.publish(EntityEvent.ASSESSED, self)

    # -------------------------------------------------------------------------
    # Binding
    # -------------------------------------------------------------------------

    def listen(
        self,
        target: "BidEntity",
        event_name: EventName,
        handler: Callable[..., Any],
        delay_ms: Optional[float] = None,
        debounce_key: Optional[Hashable] = None,
        suffix: str = "",
    ) -> None:
        """
        Subscribe to another entity's bus under this entity's identity.

        Args:
            target: Entity to listen to
            event_name: Event on the target's bus
            handler: Called with (requester_id, *args)
            delay_ms: Debounce quiet period; immediate when None
            debounce_key: Shared timer identity for delayed subscriptions
            suffix: Distinguishes several subscriptions on the same bus
        """
        requester = f"{self.requester_id}{suffix}"
        if any(sub.requester_id == requester for sub in target.events.subscriptions(event_name)):
            return
        if delay_ms is None:
            target.events.subscribe(event_name, requester, handler)
        else:
            target.events.subscribe_delayed(
                event_name,
                delay_ms,
                requester,
                handler,
                debounce_key=debounce_key,
                level=self.level,
            )
        self._bindings.append((target.events, requester))

    def bind(self) -> None:
        """Wire subscriptions to dependencies. Safe to call again."""
        self.unbind()

    def unbind(self) -> None:
        """Drop every subscription this entity made on other buses."""
        for bus, requester in self._bindings:
            bus.unsubscribe_requester(requester)
        self._bindings = []

    def unlisten(self, target: "BidEntity") -> int:
        """Drop the subscriptions this entity made on one target's bus."""
        removed = 0
        kept = []
        for bus, requester in self._bindings:
            if bus is target.events:
                removed += bus.unsubscribe_requester(requester)
            else:
                kept.append((bus, requester))
        self._bindings = kept
        return removed

    def iter_bindings(self) -> Iterator[Tuple[NotificationBus, str]]:
        return iter(self._bindings)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, title={self.title!r})"
