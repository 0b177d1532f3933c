#!/usr/bin/env python3
"""Event processing module for the UserOperationEvent indexer.

This module handles the per-log step shared by the backfill and live phases:
decode the raw log, persist the decoded event, and keep metrics on the
outcome. Malformed logs are reported and dropped; storage failures propagate.
"""

import logging

from .decoder import decode_user_operation_event
from .errors import DecodeError
from .models import InsertOutcome, IngestionStats, LogEnvelope, UserOperationEvent
from .sink import EventSink

# Get logger for this module
logger = logging.getLogger(__name__)


class EventProcessor:
    """Decodes and persists UserOperationEvent logs.

    This class is responsible for:
    - Decoding raw logs into UserOperationEvent records
    - Reporting and skipping logs that fail to decode
    - Handing decoded events to the sink exactly once per delivery
    - Maintaining metrics on processed logs
    """

    def __init__(self, sink: EventSink) -> None:
        """Initialize the EventProcessor.

        Args:
            sink: Storage sink for decoded events
        """
        self.sink = sink
        self.stats = IngestionStats()

    def reset_stats(self) -> IngestionStats:
        """Start a new metrics window and return the previous one."""
        previous = self.stats
        self.stats = IngestionStats()
        return previous

    async def process_log(self, envelope: LogEnvelope, source: str = "log") -> UserOperationEvent | None:
        """Decode a raw log and persist the resulting event.

        Args:
            envelope: The raw log
            source: Label used in log messages (e.g. "historical", "live")

        Returns:
            The decoded event, or None if the log could not be decoded

        Raises:
            PersistenceError: If the event could not be stored
        """
        self.stats.logs_seen += 1

        try:
            event, block_number = decode_user_operation_event(envelope)
        except DecodeError as e:
            self.stats.decode_failures += 1
            logger.warning(f"Error decoding {source} event {envelope}: {e}")
            return None

        logger.info(f"{source.capitalize()} event: {event} at block {block_number}")

        outcome = await self.sink.persist(event, block_number)
        if outcome is InsertOutcome.INSERTED:
            self.stats.inserted += 1
        else:
            self.stats.duplicates += 1

        self.stats.last_block = block_number
        return event

    def get_metrics(self) -> dict[str, int | None]:
        """Get current processing metrics."""
        return self.stats.as_dict()

    def log_metrics(self, label: str = "EventProcessor") -> None:
        """Log current processing metrics."""
        metrics = self.get_metrics()
        logger.info(
            f"{label} Metrics: "
            f"Seen={metrics['logs_seen']}, "
            f"Inserted={metrics['inserted']}, "
            f"Duplicates={metrics['duplicates']}, "
            f"Invalid={metrics['decode_failures']}, "
            f"LastBlock={metrics['last_block']}"
        )
