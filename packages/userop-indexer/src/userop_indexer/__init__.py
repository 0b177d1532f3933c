"""
UserOperationEvent indexer package.

Backfills and follows ERC-4337 EntryPoint UserOperationEvents into a
relational store, deduplicated on (userOpHash, nonce).
"""

from .config import IndexerConfig
from .decoder import USER_OPERATION_EVENT_TOPIC, decode_user_operation_event
from .indexer import UserOperationIndexer
from .models import InsertOutcome, LogEnvelope, UserOperationEvent
from .sink import EventSink

__all__ = [
    "IndexerConfig",
    "UserOperationIndexer",
    "EventSink",
    "LogEnvelope",
    "UserOperationEvent",
    "InsertOutcome",
    "USER_OPERATION_EVENT_TOPIC",
    "decode_user_operation_event",
]
__version__ = "0.1.0"
