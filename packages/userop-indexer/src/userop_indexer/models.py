#!/usr/bin/env python3
"""Data models for the UserOperationEvent indexer.

This module provides immutable data classes for the raw logs received from
the node and the decoded UserOperationEvent records persisted to storage,
plus the small enums used to report outcomes and indexer state.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from hexbytes import HexBytes

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _to_bytes(value: Any) -> bytes:
    """Convert a hex string or bytes-like value to bytes."""
    if value is None:
        return b""
    return bytes(HexBytes(value))


def _to_optional_int(value: Any) -> int | None:
    """Parse an int that may arrive as a hex string, decimal string or int."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def _to_optional_hex(value: Any) -> str | None:
    if value is None:
        return None
    return HexBytes(value).to_0x_hex()


@dataclass(frozen=True, slots=True)
class LogEnvelope:
    """A raw log as delivered by the node, before decoding.

    Attributes:
        topics: Indexed topic slots; topics[0] is the event signature hash
        data: ABI-encoded non-indexed payload
        block_number: Block the log was emitted in (None for pending logs)
        transaction_hash: Hash of the emitting transaction, if known
        log_index: Position of the log within its block, if known
    """

    topics: tuple[bytes, ...]
    data: bytes
    block_number: int | None = None
    transaction_hash: str | None = None
    log_index: int | None = None

    @classmethod
    def from_log_receipt(cls, receipt: Mapping[str, Any] | Any) -> "LogEnvelope":
        """Build an envelope from a web3 LogReceipt or a raw JSON-RPC log.

        Handles both dict-like receipts and attribute-style objects, with
        topics/data as hex strings or bytes and numbers as hex strings or ints.
        """
        if hasattr(receipt, "get") and callable(receipt.get):
            get = receipt.get
        else:
            def get(key: str, default: Any = None) -> Any:
                return getattr(receipt, key, default)

        topics: Sequence[Any] = get("topics") or []
        return cls(
            topics=tuple(_to_bytes(topic) for topic in topics),
            data=_to_bytes(get("data")),
            block_number=_to_optional_int(get("blockNumber")),
            transaction_hash=_to_optional_hex(get("transactionHash")),
            log_index=_to_optional_int(get("logIndex")),
        )

    def __str__(self) -> str:
        tx = f"{self.transaction_hash[:10]}..." if self.transaction_hash else "?"
        return f"Log(block={self.block_number}, tx={tx}, index={self.log_index})"


@dataclass(frozen=True, slots=True)
class UserOperationEvent:
    """A decoded EntryPoint UserOperationEvent.

    Attributes:
        user_op_hash: 0x-prefixed hex of the 32-byte user operation hash
        sender: Checksummed address of the account that sent the operation
        paymaster: Checksummed paymaster address (zero address if unsponsored)
        nonce: Account nonce of the operation
        success: Whether the operation executed successfully
        actual_gas_cost: Gas cost actually paid, in wei
        actual_gas_used: Gas actually consumed
    """

    user_op_hash: str
    sender: str
    paymaster: str
    nonce: int
    success: bool
    actual_gas_cost: int
    actual_gas_used: int

    def __str__(self) -> str:
        return (
            f"UserOperationEvent(hash={self.user_op_hash[:10]}..., "
            f"sender={self.sender[:8]}..., "
            f"nonce={self.nonce}, success={self.success})"
        )

    @property
    def unique_key(self) -> tuple[str, int]:
        """Natural key used to deduplicate stored events."""
        return (self.user_op_hash, self.nonce)

    @property
    def is_sponsored(self) -> bool:
        return self.paymaster != ZERO_ADDRESS

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "user_op_hash": self.user_op_hash,
            "sender": self.sender,
            "paymaster": self.paymaster,
            "nonce": self.nonce,
            "success": self.success,
            "actual_gas_cost": self.actual_gas_cost,
            "actual_gas_used": self.actual_gas_used,
        }


class InsertOutcome(Enum):
    """Result of an idempotent write."""
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


class IndexerState(Enum):
    """Lifecycle state of the indexer."""
    CONNECTING = "connecting"
    BACKFILLING = "backfilling"
    SUBSCRIBING = "subscribing"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(slots=True)
class IngestionStats:
    """Counters for one ingestion phase."""

    logs_seen: int = 0
    inserted: int = 0
    duplicates: int = 0
    decode_failures: int = 0
    last_block: int | None = None

    def as_dict(self) -> dict[str, int | None]:
        return {
            "logs_seen": self.logs_seen,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "decode_failures": self.decode_failures,
            "last_block": self.last_block,
        }
