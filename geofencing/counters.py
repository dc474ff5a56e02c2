#!/usr/bin/env python3
"""
Counter store: persisted non-negative integers mutated by counter events.

Updates are read-modify-write inside one session; two concurrent updates of
the same counter can race and lose one step.
"""
from __future__ import annotations

from typing import List

from sqlalchemy import select, func

from .db import Database
from .exceptions import NotFoundError
from .logging_config import get_logger
from .models import Counter

logger = get_logger()


class CounterStore:
    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _next_id(s) -> int:
        highest = s.scalar(select(func.max(Counter.counter_id)))
        return (highest or 0) + 1

    def next_counter_id(self) -> int:
        with self.db.session_scope() as s:
            return self._next_id(s)

    def insert_counter(self) -> int:
        """Create a counter with value 0 and return its id."""
        with self.db.session_scope() as s:
            counter = Counter(counter_id=self._next_id(s), value=0)
            s.add(counter)
            s.flush()
            counter_id = counter.counter_id
        logger.info(f"Counter {counter_id} created", "COUNTER")
        return counter_id

    def find_counter(self, counter_id: int) -> Counter:
        with self.db.session_scope() as s:
            counter = s.get(Counter, counter_id)
            if counter is None:
                raise NotFoundError(f"Counter {counter_id}")
            return counter

    def is_counter_existing(self, counter_id: int) -> bool:
        try:
            self.find_counter(counter_id)
            return True
        except NotFoundError:
            return False

    def find_counter_list(self) -> List[Counter]:
        with self.db.session_scope() as s:
            return list(s.scalars(select(Counter).order_by(Counter.counter_id)).all())

    def _set_value(self, counter_id: int, step) -> int:
        with self.db.session_scope() as s:
            counter = s.get(Counter, counter_id)
            if counter is None:
                raise NotFoundError(f"Counter {counter_id}")
            counter.value = step(counter.value)
            return counter.value

    def increment_counter(self, counter_id: int) -> int:
        return self._set_value(counter_id, lambda v: v + 1)

    def decrement_counter(self, counter_id: int) -> int:
        """Decrement, never below zero."""
        return self._set_value(counter_id, lambda v: max(v - 1, 0))

    def reset_counter(self, counter_id: int) -> int:
        return self._set_value(counter_id, lambda v: 0)

    def remove_counter(self, counter_id: int) -> bool:
        with self.db.session_scope() as s:
            counter = s.get(Counter, counter_id)
            if counter is None:
                raise NotFoundError(f"Counter {counter_id}")
            s.delete(counter)
        logger.info(f"Counter {counter_id} removed", "COUNTER")
        return True
