"""
bidcascade/kernel/event_bus.py - Per-entity notification bus

Every entity owns one bus. Other entities subscribe to it under a requester
identity; the identity scopes both the debounce timer of delayed
subscriptions and the loop guard that stops runaway re-triggering.

INVARIANT: Buses of one entity tree share a single DebounceScheduler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Union
import logging

from bidcascade.core.enums import EntityEvent
from bidcascade.kernel.scheduler import DebounceScheduler

logger = logging.getLogger(__name__)


EventName = Union[EntityEvent, str]

# Handlers receive (requester_id, *publish_args)
Handler = Callable[..., Any]


def event_key(event_name: EventName) -> str:
    if isinstance(event_name, EntityEvent):
        return event_name.value
    return str(event_name)


@dataclass
class Subscription:
    """A handler registered on a bus."""
    event_name: str
    requester_id: str
    handler: Handler
    delay_ms: Optional[float] = None
    debounce_key: Optional[Hashable] = None
    level: int = 0

    @property
    def is_delayed(self) -> bool:
        return self.delay_ms is not None


class NotificationBus:
    """
    Publish/subscribe with trailing-edge debounce and a loop guard.

    Immediate subscribers run synchronously inside publish(), in
    registration order. Delayed subscribers are (re)armed on the shared
    scheduler and run with the arguments of the last publish once their
    quiet period elapses.

    The loop guard counts triggers per requester. Once max_events triggers
    have been allowed the requester's handlers are skipped until
    reset_guard() is called. Handler exceptions are not caught.

    Usage:
        bus = NotificationBus("line_item.7", scheduler=scheduler)
        bus.subscribe(EntityEvent.UPDATED, "component.3", on_updated)
        bus.subscribe_delayed(EntityEvent.ASSESSED, 15, "bid.1", on_assessed)
        bus.publish(EntityEvent.UPDATED, line_item)
    """

    DEFAULT_MAX_EVENTS = 25

    def __init__(
        self,
        name: str = "",
        scheduler: Optional[DebounceScheduler] = None,
        max_events: int = DEFAULT_MAX_EVENTS,
    ):
        """
        Initialize the bus.

        Args:
            name: Bus identity (part of the default debounce key)
            scheduler: Timer table shared with the rest of the tree
            max_events: Loop guard ceiling per requester
        """
        self._name = name or f"bus_{id(self):x}"
        self.scheduler = scheduler or DebounceScheduler()
        self.max_events = max_events

        # event name -> subscriptions in registration order
        self._subscriptions: Dict[str, List[Subscription]] = {}

        # requester -> triggers allowed since the last guard reset
        self._trigger_counts: Dict[str, int] = {}

    @property
    def name(self) -> str:
        return self._name

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def _add(self, subscription: Subscription) -> Subscription:
        self._subscriptions.setdefault(subscription.event_name, []).append(subscription)
        logger.debug(
            f"{self._name}: {subscription.requester_id} subscribed to "
            f"{subscription.event_name}"
        )
        return subscription

    def subscribe(
        self,
        event_name: EventName,
        requester_id: str,
        handler: Handler,
    ) -> Subscription:
        """
        Subscribe an immediate handler.

        Args:
            event_name: Event to receive
            requester_id: Identity of the subscriber
            handler: Callback(requester_id, *args)

        Returns:
            The subscription
        """
        return self._add(Subscription(event_key(event_name), requester_id, handler))

    def subscribe_delayed(
        self,
        event_name: EventName,
        delay_ms: float,
        requester_id: str,
        handler: Handler,
        debounce_key: Optional[Hashable] = None,
        level: int = 0,
    ) -> Subscription:
        """
        Subscribe a debounced handler.

        Args:
            event_name: Event to receive
            delay_ms: Quiet period; every publish restarts it
            requester_id: Identity of the subscriber
            handler: Callback(requester_id, *args)
            debounce_key: Shared timer identity, to coalesce publishes from
                several buses into one call
            level: Scheduler tie-break level

        Returns:
            The subscription
        """
        return self._add(Subscription(
            event_key(event_name),
            requester_id,
            handler,
            delay_ms=delay_ms,
            debounce_key=debounce_key,
            level=level,
        ))

    def once(
        self,
        event_name: EventName,
        requester_id: str,
        handler: Handler,
    ) -> Subscription:
        """Subscribe an immediate handler that removes itself after one call."""
        name = event_key(event_name)
        subscription = None

        def wrapper(*args):
            self._remove(name, lambda sub: sub is subscription)
            return handler(*args)

        subscription = self.subscribe(name, requester_id, wrapper)
        return subscription

    def _remove(self, event_name: str, predicate: Callable[[Subscription], bool]) -> int:
        subs = self._subscriptions.get(event_name, [])
        kept = [sub for sub in subs if not predicate(sub)]
        removed = [sub for sub in subs if predicate(sub)]
        if kept:
            self._subscriptions[event_name] = kept
        else:
            self._subscriptions.pop(event_name, None)
        for sub in removed:
            if sub.is_delayed:
                self._cancel_timer(sub)
        return len(removed)

    def unsubscribe(self, event_name: EventName, requester_id: str) -> int:
        """
        Remove a requester's subscriptions to one event.

        Returns:
            Number of subscriptions removed
        """
        return self._remove(
            event_key(event_name), lambda sub: sub.requester_id == requester_id
        )

    def unsubscribe_requester(self, requester_id: str) -> int:
        """Remove every subscription a requester holds on this bus."""
        removed = 0
        for name in list(self._subscriptions):
            removed += self._remove(name, lambda sub: sub.requester_id == requester_id)
        self._trigger_counts.pop(requester_id, None)
        return removed

    def clear(self) -> None:
        """Drop all subscriptions and cancel this bus's pending timers."""
        self._subscriptions.clear()
        self._trigger_counts.clear()
        cancelled = self.scheduler.cancel_owned(self)
        logger.debug(f"{self._name}: cleared ({cancelled} pending timers cancelled)")

    def has_subscribers(self, event_name: EventName) -> bool:
        return bool(self._subscriptions.get(event_key(event_name)))

    def subscriptions(self, event_name: Optional[EventName] = None) -> List[Subscription]:
        if event_name is not None:
            return list(self._subscriptions.get(event_key(event_name), []))
        return [sub for subs in self._subscriptions.values() for sub in subs]

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._subscriptions.values())

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def publish(self, event_name: EventName, *args: Any) -> int:
        """
        Publish an event.

        Args:
            event_name: Event to publish
            *args: Passed to handlers after the requester id

        Returns:
            Number of immediate handlers invoked
        """
        name = event_key(event_name)
        invoked = 0
        # Snapshot: handlers may subscribe or unsubscribe while we iterate
        for sub in list(self._subscriptions.get(name, [])):
            if sub.is_delayed:
                self._arm(sub, args)
            elif self._should_trigger(sub):
                sub.handler(sub.requester_id, *args)
                invoked += 1
        return invoked

    def _timer_key(self, sub: Subscription) -> Hashable:
        if sub.debounce_key is not None:
            return sub.debounce_key
        return (self._name, sub.event_name, sub.requester_id)

    def _cancel_timer(self, sub: Subscription) -> None:
        key = self._timer_key(sub)
        # Shared keys may currently be armed by another bus
        if self.scheduler.is_pending(key) and self._owns_pending(key):
            self.scheduler.cancel(key)

    def _owns_pending(self, key: Hashable) -> bool:
        return self.scheduler.owner_of(key) is self

    def _arm(self, sub: Subscription, args: tuple) -> None:
        self.scheduler.schedule(
            self._timer_key(sub),
            sub.delay_ms,
            lambda: self._fire_delayed(sub, args),
            level=sub.level,
            owner=self,
        )

    def _fire_delayed(self, sub: Subscription, args: tuple) -> None:
        if not any(s is sub for s in self._subscriptions.get(sub.event_name, [])):
            return
        if self._should_trigger(sub):
            sub.handler(sub.requester_id, *args)

    # -------------------------------------------------------------------------
    # Loop guard
    # -------------------------------------------------------------------------

    def _should_trigger(self, sub: Subscription) -> bool:
        count = self._trigger_counts.get(sub.requester_id, 0)
        if count >= self.max_events:
            logger.debug(
                f"{self._name}: loop guard dropped {sub.event_name} "
                f"for {sub.requester_id} after {count} triggers"
            )
            return False
        self._trigger_counts[sub.requester_id] = count + 1
        return True

    def trigger_count(self, requester_id: str) -> int:
        return self._trigger_counts.get(requester_id, 0)

    def reset_guard(self, requester_id: Optional[str] = None) -> None:
        """Reset the loop guard for one requester, or for all of them."""
        if requester_id is None:
            self._trigger_counts.clear()
        else:
            self._trigger_counts.pop(requester_id, None)
