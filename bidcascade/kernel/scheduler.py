"""
bidcascade/kernel/scheduler.py - Debounce scheduler

Owns the table of pending delayed callbacks for one entity tree. Every task
is keyed by an identity; scheduling under a key that is already pending
replaces the earlier task (trailing-edge debounce, last write wins).

Nothing runs in the background. Hosts drive the table explicitly:
- run_due(): fire tasks whose due time has passed
- settle(): drain everything in order, regardless of the clock
- wait(): sleep in real time until the table is empty
"""

from __future__ import annotations

from dataclasses import dataclass
from heapq import heappush, heappop
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple
import logging
import time

logger = logging.getLogger(__name__)


Clock = Callable[[], float]


def monotonic_ms() -> float:
    """Default clock: monotonic time in milliseconds."""
    return time.monotonic() * 1000.0


class ManualClock:
    """
    Clock that only moves when told to.

    Usage:
        clock = ManualClock()
        scheduler = DebounceScheduler(clock=clock)
        clock.advance(20)
        scheduler.run_due()
    """

    def __init__(self, start: float = 0.0):
        self._now = start

    def __call__(self) -> float:
        return self._now

    def advance(self, ms: float) -> float:
        self._now += ms
        return self._now


# =============================================================================
# SCHEDULED TASK
# =============================================================================

@dataclass
class ScheduledTask:
    """A pending delayed callback."""
    key: Hashable
    due_at: float
    callback: Callable[[], Any]
    level: int = 0
    seq: int = 0
    owner: Any = None
    cancelled: bool = False

    @property
    def sort_key(self) -> Tuple[float, int, int]:
        return (self.due_at, self.level, self.seq)

    def __lt__(self, other: "ScheduledTask") -> bool:
        """For heap ordering."""
        return self.sort_key < other.sort_key


# =============================================================================
# DEBOUNCE SCHEDULER
# =============================================================================

class DebounceScheduler:
    """
    Keyed timer table with deterministic draining.

    Tasks fire in (due time, level, sequence) order. Level breaks ties so
    that leaf recomputes scheduled for the same instant run before their
    parents' aggregations.
    """

    def __init__(self, clock: Optional[Clock] = None, max_settle_tasks: int = 10000):
        self._clock = clock or monotonic_ms
        self._max_settle_tasks = max_settle_tasks
        self._heap: List[ScheduledTask] = []
        self._tasks: Dict[Hashable, ScheduledTask] = {}
        self._seq = 0
        self._fired_count = 0

    @property
    def clock(self) -> Clock:
        return self._clock

    def now(self) -> float:
        return self._clock()

    def schedule(
        self,
        key: Hashable,
        delay_ms: float,
        callback: Callable[[], Any],
        level: int = 0,
        owner: Any = None,
    ) -> ScheduledTask:
        """
        Schedule a callback, replacing any pending task under the same key.

        Args:
            key: Debounce identity
            delay_ms: Quiet period before the callback fires
            callback: Zero-argument callable
            level: Tie-break for tasks due at the same instant (lower first)
            owner: Opaque tag used by cancel_owned()

        Returns:
            The scheduled task
        """
        self.cancel(key)
        self._seq += 1
        task = ScheduledTask(
            key=key,
            due_at=self.now() + max(0.0, float(delay_ms)),
            callback=callback,
            level=level,
            seq=self._seq,
            owner=owner,
        )
        self._tasks[key] = task
        heappush(self._heap, task)
        return task

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending task under key. Returns True if one existed."""
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancelled = True
        return True

    def cancel_owned(self, owner: Any) -> int:
        """Cancel every pending task scheduled with the given owner."""
        keys = [key for key, task in self._tasks.items() if task.owner is owner]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def clear(self) -> None:
        for task in self._tasks.values():
            task.cancelled = True
        self._tasks.clear()
        self._heap.clear()

    def is_pending(self, key: Hashable) -> bool:
        return key in self._tasks

    def owner_of(self, key: Hashable) -> Any:
        task = self._tasks.get(key)
        return task.owner if task else None

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    @property
    def fired_count(self) -> int:
        """Total callbacks fired over the scheduler's lifetime."""
        return self._fired_count

    def pending_keys(self) -> List[Hashable]:
        return [task.key for task in sorted(self._tasks.values())]

    def next_due(self) -> Optional[float]:
        """Due time of the next live task, or None when the table is empty."""
        task = self._peek()
        return task.due_at if task else None

    def _peek(self) -> Optional[ScheduledTask]:
        while self._heap and self._heap[0].cancelled:
            heappop(self._heap)
        return self._heap[0] if self._heap else None

    def _pop_next(self, now: Optional[float]) -> Optional[ScheduledTask]:
        task = self._peek()
        if task is None:
            return None
        if now is not None and task.due_at > now:
            return None
        heappop(self._heap)
        del self._tasks[task.key]
        return task

    def _fire(self, task: ScheduledTask) -> None:
        # Removed from the table before running: a raising callback is gone
        # and the exception propagates to whoever drives the scheduler.
        self._fired_count += 1
        task.callback()

    def run_due(self, now: Optional[float] = None) -> int:
        """
        Fire every task whose due time has passed.

        Tasks scheduled by fired callbacks are included when they are due.

        Args:
            now: Reference time; defaults to the clock, re-read per task

        Returns:
            Number of tasks fired
        """
        fired = 0
        while True:
            task = self._pop_next(self.now() if now is None else now)
            if task is None:
                break
            self._fire(task)
            fired += 1
        return fired

    def settle(self, max_tasks: Optional[int] = None) -> int:
        """
        Drain the table regardless of the clock.

        Args:
            max_tasks: Safety ceiling on fired tasks

        Returns:
            Number of tasks fired
        """
        limit = self._max_settle_tasks if max_tasks is None else max_tasks
        fired = 0
        while fired < limit:
            task = self._pop_next(None)
            if task is None:
                return fired
            self._fire(task)
            fired += 1
        if self._tasks:
            logger.warning(
                f"Scheduler settle stopped after {fired} tasks, "
                f"{len(self._tasks)} still pending"
            )
        return fired

    def wait(self, timeout_ms: float) -> int:
        """
        Run the table in real time until it is empty or the timeout passes.

        Returns:
            Number of tasks fired
        """
        deadline = self.now() + timeout_ms
        fired = 0
        while True:
            due = self.next_due()
            if due is None:
                break
            now = self.now()
            if now >= deadline:
                break
            if due > now:
                time.sleep((min(due, deadline) - now) / 1000.0)
            fired += self.run_due()
        return fired

    def absorb(self, other: "DebounceScheduler") -> int:
        """
        Take over another scheduler's pending tasks.

        Due times carry over unchanged; both schedulers are expected to share
        a time base.

        Returns:
            Number of tasks moved
        """
        if other is self:
            return 0
        moved = 0
        for task in sorted(other._tasks.values()):
            self.cancel(task.key)
            self._seq += 1
            task.seq = self._seq
            self._tasks[task.key] = task
            heappush(self._heap, task)
            moved += 1
        other._tasks.clear()
        other._heap.clear()
        if moved:
            logger.debug(f"Absorbed {moved} pending tasks")
        return moved
