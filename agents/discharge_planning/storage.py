"""
Discharge Planning Agent - Persistent Record Store

This module owns every byte the discharge workflow persists.

================================================================================
KEY SPACE
================================================================================

All records live in ONE table, addressed by a tagged key: a key kind plus an
optional numeric discriminator (the discharge plan ID). The kind is part of
the encoded key, so Plan/7 and Readiness/7 can never collide.

    ┌──────────────────────┬───────────────────────────┬──────────────┐
    │ Key                  │ Payload                   │ Shape        │
    ├──────────────────────┼───────────────────────────┼──────────────┤
    │ Counter              │ next plan ID              │ int          │
    │ AppointmentCounter   │ next appointment ID       │ int          │
    │ Plan/<id>            │ DischargePlan             │ record       │
    │ Readiness/<id>       │ ReadinessScore            │ record       │
    │ Orders/<id>          │ DischargeOrder            │ list         │
    │ HomeHealth/<id>      │ HomeHealthArrangement     │ record       │
    │ Dme/<id>             │ DmeOrder                  │ list         │
    │ Appointments/<id>    │ ScheduledAppointment      │ list         │
    │ Education/<id>       │ EducationRecord           │ list         │
    │ SnfCoord/<id>        │ SnfCoordination           │ record       │
    │ Completed/<id>       │ DischargeCompletion       │ record       │
    │ Risk/<id>            │ ReadmissionRisk           │ record       │
    └──────────────────────┴───────────────────────────┴──────────────┘

================================================================================
ATOMICITY: THE STAGING BUFFER
================================================================================

Business operations never write to the table directly. They open a
StagedTransaction, which buffers every set/append in memory and answers
reads from the buffer first. Only when the operation finishes without an
exception is the whole buffer written inside a single database transaction.
Any exception discards the buffer, so a rejected operation leaves nothing
behind, not even counter increments.

================================================================================
RETENTION
================================================================================

Every write, of every kind, pushes the row's expires_at to
``now + ttl_seconds``. The policy is applied in the commit path so no caller
can forget it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import TypeAdapter
from sqlalchemy import (
    BigInteger,
    Column,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .clock import Clock
from .config import ONE_YEAR_SECONDS
from .records import (
    DischargeCompletion,
    DischargeOrder,
    DischargePlan,
    DmeOrder,
    EducationRecord,
    HomeHealthArrangement,
    ReadinessScore,
    ReadmissionRisk,
    ScheduledAppointment,
    SnfCoordination,
)

logger = logging.getLogger(__name__)

MAX_U64 = 2**64 - 1


# =============================================================================
# TAGGED KEYS
# =============================================================================

class KeyKind(str, Enum):
    """Closed set of record kinds held by the store."""
    COUNTER = "Counter"
    APPOINTMENT_COUNTER = "AppointmentCounter"
    PLAN = "Plan"
    READINESS = "Readiness"
    ORDERS = "Orders"
    HOME_HEALTH = "HomeHealth"
    DME = "Dme"
    APPOINTMENTS = "Appointments"
    EDUCATION = "Education"
    SNF_COORD = "SnfCoord"
    COMPLETED = "Completed"
    RISK = "Risk"


SINGLETON_KINDS = frozenset({KeyKind.COUNTER, KeyKind.APPOINTMENT_COUNTER})

# Payload type per kind. List kinds hold the whole list under one key.
_RECORD_TYPES: Dict[KeyKind, Any] = {
    KeyKind.COUNTER: int,
    KeyKind.APPOINTMENT_COUNTER: int,
    KeyKind.PLAN: DischargePlan,
    KeyKind.READINESS: ReadinessScore,
    KeyKind.ORDERS: List[DischargeOrder],
    KeyKind.HOME_HEALTH: HomeHealthArrangement,
    KeyKind.DME: List[DmeOrder],
    KeyKind.APPOINTMENTS: List[ScheduledAppointment],
    KeyKind.EDUCATION: List[EducationRecord],
    KeyKind.SNF_COORD: SnfCoordination,
    KeyKind.COMPLETED: DischargeCompletion,
    KeyKind.RISK: ReadmissionRisk,
}

LIST_KINDS = frozenset({
    KeyKind.ORDERS,
    KeyKind.DME,
    KeyKind.APPOINTMENTS,
    KeyKind.EDUCATION,
})

_ADAPTERS: Dict[KeyKind, TypeAdapter] = {
    kind: TypeAdapter(record_type) for kind, record_type in _RECORD_TYPES.items()
}


@dataclass(frozen=True)
class StorageKey:
    """
    A key kind plus its discriminator.

    Counter keys carry no discriminator; every other kind is scoped to one
    discharge plan.
    """
    kind: KeyKind
    subject_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.kind in SINGLETON_KINDS:
            if self.subject_id is not None:
                raise ValueError(f"{self.kind.value} key takes no discriminator")
        elif self.subject_id is None or not 0 <= self.subject_id <= MAX_U64:
            raise ValueError(f"{self.kind.value} key needs a 64-bit discriminator")

    @property
    def is_list(self) -> bool:
        return self.kind in LIST_KINDS

    def encode(self) -> str:
        if self.subject_id is None:
            return self.kind.value
        return f"{self.kind.value}/{self.subject_id}"

    def __str__(self) -> str:
        return self.encode()

    # Constructors, one per kind

    @classmethod
    def counter(cls) -> "StorageKey":
        return cls(KeyKind.COUNTER)

    @classmethod
    def appointment_counter(cls) -> "StorageKey":
        return cls(KeyKind.APPOINTMENT_COUNTER)

    @classmethod
    def plan(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.PLAN, plan_id)

    @classmethod
    def readiness(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.READINESS, plan_id)

    @classmethod
    def orders(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.ORDERS, plan_id)

    @classmethod
    def home_health(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.HOME_HEALTH, plan_id)

    @classmethod
    def dme(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.DME, plan_id)

    @classmethod
    def appointments(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.APPOINTMENTS, plan_id)

    @classmethod
    def education(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.EDUCATION, plan_id)

    @classmethod
    def snf_coord(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.SNF_COORD, plan_id)

    @classmethod
    def completed(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.COMPLETED, plan_id)

    @classmethod
    def risk(cls, plan_id: int) -> "StorageKey":
        return cls(KeyKind.RISK, plan_id)


def _serialize(key: StorageKey, value: Any) -> str:
    adapter = _ADAPTERS[key.kind]
    # Round-trip through validation so a wrong payload type fails at the
    # write site rather than on some later read.
    return adapter.dump_json(adapter.validate_python(value)).decode("utf-8")


def _deserialize(key: StorageKey, payload: str) -> Any:
    return _ADAPTERS[key.kind].validate_json(payload)


# =============================================================================
# TABLE
# =============================================================================

metadata = MetaData()

records_table = Table(
    "discharge_records",
    metadata,
    Column("storage_key", String(64), primary_key=True),
    Column("kind", String(32), nullable=False, index=True),
    Column("subject_id", BigInteger, nullable=True, index=True),
    Column("payload", Text, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
    Column("expires_at", BigInteger, nullable=False, index=True),
)


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the record store.

    In-memory SQLite gets a single shared connection; without it every
    pooled connection would see its own empty database.
    """
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


# =============================================================================
# RECORD STORE
# =============================================================================

class RecordStore:
    """
    Generic keyed persistent map over the closed key space.

    Direct ``set``/``append`` calls each commit on their own. Business
    operations use ``transaction()`` so that all of their writes land
    together or not at all.

    Example:
        >>> store = RecordStore.from_url("sqlite://", clock=ManualClock(10))
        >>> with store.transaction() as txn:
        ...     txn.set(StorageKey.counter(), 1)
        >>> store.get(StorageKey.counter())
        1
    """

    def __init__(
        self,
        engine: Engine,
        clock: Clock,
        ttl_seconds: int = ONE_YEAR_SECONDS,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.engine = engine
        self.clock = clock
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(
        cls,
        database_url: str,
        clock: Clock,
        ttl_seconds: int = ONE_YEAR_SECONDS,
        echo: bool = False,
    ) -> "RecordStore":
        """Create a store over ``database_url`` and make sure its table exists."""
        store = cls(create_store_engine(database_url, echo=echo), clock, ttl_seconds)
        store.create_schema()
        return store

    def create_schema(self) -> None:
        metadata.create_all(self.engine)
        logger.info(f"Record store ready: {self.engine.url.render_as_string(hide_password=True)}")

    # -------------------------------------------------------------------------
    # Committed reads
    # -------------------------------------------------------------------------

    def _load(self, key: StorageKey) -> Optional[str]:
        stmt = select(records_table.c.payload).where(
            records_table.c.storage_key == key.encode()
        )
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Record store read failed for {key}: {e}")
            raise

    def get(self, key: StorageKey) -> Optional[Any]:
        """Return an independent copy of the value at ``key``, or None."""
        payload = self._load(key)
        return None if payload is None else _deserialize(key, payload)

    def has(self, key: StorageKey) -> bool:
        return self._load(key) is not None

    def expires_at(self, key: StorageKey) -> Optional[int]:
        """Retention horizon of ``key``, or None if absent."""
        stmt = select(records_table.c.expires_at).where(
            records_table.c.storage_key == key.encode()
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def ping(self) -> int:
        """Count stored rows; raises if the database is unreachable."""
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(records_table)).scalar_one()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(self, key: StorageKey, value: Any) -> None:
        with self.transaction() as txn:
            txn.set(key, value)

    def append(self, key: StorageKey, item: Any) -> None:
        with self.transaction() as txn:
            txn.append(key, item)

    @contextmanager
    def transaction(self, now: Optional[int] = None) -> Iterator["StagedTransaction"]:
        """
        Stage writes and commit them together on successful exit.

        Args:
            now: Clock reading to stamp the commit with; read from the
                store's clock when omitted
        """
        txn = StagedTransaction(self, self.clock.now() if now is None else now)
        try:
            yield txn
        except Exception:
            if txn.pending:
                logger.debug(f"Discarding {len(txn.pending)} staged write(s)")
            txn.close()
            raise
        txn.commit()

    def _apply(self, writes: Dict[str, Tuple[StorageKey, str]], now: int) -> None:
        """Write every staged value in one database transaction."""
        expires_at = now + self.ttl_seconds
        try:
            with self.engine.begin() as conn:
                for encoded, (key, payload) in writes.items():
                    values = {
                        "payload": payload,
                        "updated_at": now,
                        "expires_at": expires_at,
                    }
                    result = conn.execute(
                        update(records_table)
                        .where(records_table.c.storage_key == encoded)
                        .values(**values)
                    )
                    if result.rowcount == 0:
                        conn.execute(
                            insert(records_table).values(
                                storage_key=encoded,
                                kind=key.kind.value,
                                subject_id=key.subject_id,
                                **values,
                            )
                        )
        except SQLAlchemyError as e:
            logger.error(f"Record store commit failed ({len(writes)} writes): {e}")
            raise
        logger.debug(f"Committed {len(writes)} write(s), retained until {expires_at}")

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def purge_expired(self, now: Optional[int] = None) -> int:
        """
        Delete rows whose retention horizon has passed.

        Returns:
            Number of rows removed
        """
        now = self.clock.now() if now is None else now
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(records_table).where(records_table.c.expires_at <= now)
            )
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired record(s)")
        return result.rowcount


class StagedTransaction:
    """
    In-memory buffer of the writes belonging to one invocation.

    Reads see this transaction's own staged writes first, then the
    committed store. Values are held serialized, so whatever the caller
    does to an object after handing it over cannot leak into the store.
    """

    def __init__(self, store: RecordStore, now: int) -> None:
        self.store = store
        self.now = now
        self.pending: Dict[str, Tuple[StorageKey, str]] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction is no longer open")

    def _payload(self, key: StorageKey) -> Optional[str]:
        staged = self.pending.get(key.encode())
        if staged is not None:
            return staged[1]
        return self.store._load(key)

    def get(self, key: StorageKey) -> Optional[Any]:
        self._check_open()
        payload = self._payload(key)
        return None if payload is None else _deserialize(key, payload)

    def has(self, key: StorageKey) -> bool:
        self._check_open()
        return self._payload(key) is not None

    def set(self, key: StorageKey, value: Any) -> None:
        self._check_open()
        self.pending[key.encode()] = (key, _serialize(key, value))

    def append(self, key: StorageKey, item: Any) -> None:
        """Read the list at ``key`` (empty if absent), push, stage the whole list."""
        if not key.is_list:
            raise TypeError(f"{key.kind.value} is not a list key")
        items = self.get(key) or []
        items.append(item)
        self.set(key, items)

    def commit(self) -> None:
        self._check_open()
        try:
            if self.pending:
                self.store._apply(self.pending, self.now)
        finally:
            self.close()

    def close(self) -> None:
        self.pending = {}
        self._closed = True
