#!/usr/bin/env python3
"""Idempotent persistence of decoded UserOperationEvents.

Events are written with ``INSERT ... ON CONFLICT DO NOTHING`` on the natural
key (user_op_hash, nonce), so redelivered events are absorbed without error
and stored rows are never modified after their first write.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import TypeDecorator

from .errors import PersistenceError
from .models import InsertOutcome, UserOperationEvent

logger = logging.getLogger(__name__)

UINT256_DIGITS = 78  # len(str(2**256 - 1))


class Uint256(TypeDecorator):
    """Unsigned 256-bit integer column.

    NUMERIC(78, 0) on PostgreSQL; decimal text on other backends, whose
    native integers stop at 64 bits. Values always load back as ``int``.
    """

    impl = Numeric(UINT256_DIGITS, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(UINT256_DIGITS, 0))
        return dialect.type_descriptor(String(UINT256_DIGITS))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return Decimal(value)
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


metadata = MetaData()

user_operation_events = Table(
    "user_operation_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_op_hash", String(66), nullable=False),
    Column("sender", String(42), nullable=False),
    Column("paymaster", String(42), nullable=False),
    Column("nonce", Uint256, nullable=False),
    Column("success", Boolean, nullable=False),
    Column("actual_gas_cost", Uint256, nullable=False),
    Column("actual_gas_used", Uint256, nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    ),
    UniqueConstraint("user_op_hash", "nonce", name="uq_user_operation_events_hash_nonce"),
    Index("ix_user_operation_events_block_number", "block_number"),
)

NATURAL_KEY = ("user_op_hash", "nonce")


class EventSink:
    """Writes decoded events to the user_operation_events table.

    The sink is the only component that writes durable state. Writes are
    serial: callers await one ``persist`` at a time.
    """

    def __init__(self, engine: Engine) -> None:
        """
        Initialize the EventSink.

        Args:
            engine: SQLAlchemy engine for the target database
        """
        self.engine = engine
        self._insert = self._dialect_insert(engine.dialect.name)

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> "EventSink":
        """Create a sink with its own engine for the given database URL."""
        engine_kwargs.setdefault("pool_pre_ping", True)
        return cls(create_engine(database_url, **engine_kwargs))

    @staticmethod
    def _dialect_insert(dialect_name: str):
        match dialect_name:
            case "postgresql":
                return postgresql.insert
            case "sqlite":
                return sqlite.insert
            case _:
                raise ValueError(
                    f"Unsupported database dialect: {dialect_name}. "
                    "Expected postgresql or sqlite"
                )

    def ping(self) -> None:
        """Check that the database is reachable.

        Raises:
            PersistenceError: If the liveness query fails
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Database liveness check failed: {e}") from e

    def create_schema(self) -> None:
        """Create the events table and its indexes if they do not exist."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create schema: {e}") from e

    def save_event(self, event: UserOperationEvent, block_number: int) -> InsertOutcome:
        """Insert one event unless a row with the same natural key exists.

        Args:
            event: The decoded event
            block_number: Block the event was emitted in

        Returns:
            INSERTED if a row was written, DUPLICATE if one already existed

        Raises:
            PersistenceError: On any storage failure
        """
        stmt = (
            self._insert(user_operation_events)
            .values(block_number=block_number, **event.to_dict())
            .on_conflict_do_nothing(index_elements=list(NATURAL_KEY))
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to save event {event.user_op_hash} at block {block_number}: {e}"
            ) from e

        if result.rowcount == 0:
            logger.debug(f"Duplicate event skipped: {event} (block {block_number})")
            return InsertOutcome.DUPLICATE

        logger.info(f"Event saved to database: {event} (block {block_number})")
        return InsertOutcome.INSERTED

    async def persist(self, event: UserOperationEvent, block_number: int) -> InsertOutcome:
        """Async wrapper around ``save_event`` that runs the write off the event loop."""
        return await asyncio.to_thread(self.save_event, event, block_number)

    def get_event(self, user_op_hash: str, nonce: int) -> dict[str, Any] | None:
        """Read one stored event by natural key."""
        query = select(user_operation_events).where(
            user_operation_events.c.user_op_hash == user_op_hash,
            user_operation_events.c.nonce == nonce,
        )
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).mappings().one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read event {user_op_hash}: {e}") from e
        return dict(row) if row is not None else None

    def count_events(self) -> int:
        """Number of stored events."""
        query = select(func.count()).select_from(user_operation_events)
        try:
            with self.engine.connect() as conn:
                return conn.execute(query).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to count events: {e}") from e

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self.engine.dispose()
