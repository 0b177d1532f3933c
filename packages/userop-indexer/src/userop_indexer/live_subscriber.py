#!/usr/bin/env python3
"""Live ingestion of newly mined UserOperationEvents."""

import logging

from .errors import SubscriptionError
from .event_processor import EventProcessor
from .models import IngestionStats
from .utils.chain_client import ChainClient

logger = logging.getLogger(__name__)


class LiveSubscriber:
    """
    Consumes the live log stream one item at a time, decoding and persisting each.

    The stream has no natural end: ``run`` returns only after ``stop`` is
    called, and otherwise exits by raising SubscriptionError (connection
    lost or stream ended) or PersistenceError (storage failure). ``stop`` is
    honoured between logs; process shutdown cancels the running task instead.
    """

    METRICS_LOG_INTERVAL = 10  # logs between metrics reports

    def __init__(
        self,
        chain: ChainClient,
        processor: EventProcessor,
        contract_address: str,
        topic0: bytes,
    ) -> None:
        """
        Initialize the LiveSubscriber.

        Args:
            chain: Node access providing the live log stream
            processor: Decode-and-persist step applied to each log
            contract_address: Address of the contract emitting the event
            topic0: Event signature hash
        """
        self.chain = chain
        self.processor = processor
        self.contract_address = contract_address
        self.topic0 = topic0
        self.from_block: int | None = None
        self.is_running = False

    async def run(self, from_block: int) -> IngestionStats:
        """
        Ingest live logs starting at ``from_block`` until stopped.

        Args:
            from_block: First block to ingest logs for

        Returns:
            Counters for the live phase (only reached after ``stop``)

        Raises:
            SubscriptionError: If the underlying stream fails or ends
            PersistenceError: If any decoded event could not be stored
        """
        self.from_block = from_block
        self.is_running = True
        self.processor.reset_stats()

        logger.info(f"Listening for new events from block {from_block}")

        stream = self.chain.subscribe_logs(self.contract_address, self.topic0, from_block)
        try:
            async for envelope in stream:
                await self.processor.process_log(envelope, source="live")

                if self.processor.stats.logs_seen % self.METRICS_LOG_INTERVAL == 0:
                    self.processor.log_metrics("Live")

                if not self.is_running:
                    logger.info("Live subscription stopped")
                    break
            else:
                raise SubscriptionError("Log subscription ended unexpectedly")
        finally:
            self.is_running = False
            await stream.aclose()

        return self.processor.stats

    def stop(self) -> None:
        """Ask the subscription loop to exit after the current log."""
        logger.info("Stopping live subscription")
        self.is_running = False
