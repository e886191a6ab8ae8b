"""
Identifier allocation for discharge plans and follow-up appointments.

Each counter is a record in the store, so allocation is persistent across
restarts and, when done through a StagedTransaction, rolls back together
with the invocation that asked for the ID.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Protocol

from .storage import MAX_U64, StorageKey

logger = logging.getLogger(__name__)


class CounterName(str, Enum):
    PLAN = "plan"
    APPOINTMENT = "appointment"

    @property
    def key(self) -> StorageKey:
        if self is CounterName.PLAN:
            return StorageKey.counter()
        return StorageKey.appointment_counter()


class KeyValueRecords(Protocol):
    def get(self, key: StorageKey) -> Optional[Any]: ...

    def set(self, key: StorageKey, value: Any) -> None: ...


class IdAllocator:
    """
    Hands out 0, 1, 2, ... per counter, never repeating a value.

    Example:
        >>> with store.transaction() as txn:
        ...     allocator = IdAllocator(txn)
        ...     allocator.next(CounterName.PLAN)
        0
    """

    def __init__(self, records: KeyValueRecords) -> None:
        self.records = records

    def peek(self, counter: CounterName) -> int:
        """The value the next call to ``next`` would return."""
        value = self.records.get(counter.key)
        return 0 if value is None else value

    def next(self, counter: CounterName) -> int:
        value = self.peek(counter)
        if value >= MAX_U64:
            raise OverflowError(f"{counter.value} counter exhausted")
        self.records.set(counter.key, value + 1)
        logger.debug(f"Allocated {counter.value} id {value}")
        return value
