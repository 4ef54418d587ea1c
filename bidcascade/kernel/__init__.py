"""
kernel/__init__.py - Notification kernel.

Provides:
- DebounceScheduler: keyed timer table shared by an entity tree
- NotificationBus: per-entity pub/sub with debounce and loop guard
"""

from .scheduler import (
    DebounceScheduler,
    ManualClock,
    ScheduledTask,
    monotonic_ms,
)
from .event_bus import (
    NotificationBus,
    Subscription,
    event_key,
)

__all__ = [
    "DebounceScheduler",
    "ManualClock",
    "ScheduledTask",
    "monotonic_ms",
    "NotificationBus",
    "Subscription",
    "event_key",
]
