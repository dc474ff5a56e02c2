#!/usr/bin/env python3
"""
Delayed trigger checks.

A delayed event does not hold a timer of its own. It submits a work item to
one long-lived scheduler thread; when the item is due the handler reloads the
event from the store and re-checks live device state. Items are never
cancelled, a removed event or device shows up as a logged NotFound instead.
"""
from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .logging_config import get_logger

logger = get_logger()


@dataclass(order=True)
class DelayedCheck:
    due_at: float
    seq: int
    device_id: int = field(compare=False)
    minor: int = field(compare=False)
    event_id: int = field(compare=False)
    direction: object = field(compare=False)


class DelayedCheckScheduler:
    def __init__(self, handler: Callable[[DelayedCheck], None], clock: Callable[[], float] = time.monotonic):
        self.handler = handler
        self.clock = clock
        self._queue: List[DelayedCheck] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def start(self):
        with self._cond:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(target=self._loop, name="delayed-checks", daemon=True)
        self._thread.start()
        logger.info("Delayed check scheduler started", "SCHEDULER")

    def stop(self, timeout: float = 5.0):
        with self._cond:
            if not self._running:
                return
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info(f"Delayed check scheduler stopped ({self.pending()} checks dropped)", "SCHEDULER")

    @property
    def running(self) -> bool:
        return self._running

    def submit(self, device_id: int, minor: int, event_id: int, direction, delay: float) -> DelayedCheck:
        item = DelayedCheck(self.clock() + delay, next(self._seq), device_id, minor, event_id, direction)
        with self._cond:
            heapq.heappush(self._queue, item)
            self._cond.notify()
        return item

    def pending(self) -> int:
        with self._cond:
            return len(self._queue)

    def _pop_due(self, now: float) -> Optional[DelayedCheck]:
        with self._cond:
            if self._queue and self._queue[0].due_at <= now:
                return heapq.heappop(self._queue)
            return None

    def _run(self, item: DelayedCheck):
        try:
            self.handler(item)
        except Exception as e:
            logger.error(
                f"Delayed check {item.minor}/{item.event_id} for device {item.device_id} failed", "SCHEDULER", e
            )

    def run_pending(self, now: Optional[float] = None) -> int:
        """Run every check due at now (default: clock()); returns how many ran."""
        now = self.clock() if now is None else now
        ran = 0
        item = self._pop_due(now)
        while item is not None:
            self._run(item)
            ran += 1
            item = self._pop_due(now)
        return ran

    def _loop(self):
        while True:
            with self._cond:
                if not self._running:
                    return
                if not self._queue:
                    self._cond.wait()
                    continue
                wait = self._queue[0].due_at - self.clock()
                if wait > 0:
                    self._cond.wait(timeout=wait)
                    continue
                item = heapq.heappop(self._queue)
            self._run(item)
