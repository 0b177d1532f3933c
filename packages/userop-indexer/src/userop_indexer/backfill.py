#!/usr/bin/env python3
"""Historical backfill of UserOperationEvents over a closed block range."""

import logging

from .event_processor import EventProcessor
from .models import IngestionStats
from .utils.chain_client import ChainClient, iter_block_ranges

logger = logging.getLogger(__name__)


class BackfillRunner:
    """
    Fetches historical logs in a bounded range, decoding and persisting each.

    Decode failures are reported and skipped. Persistence failures abort the
    whole run; the caller may retry from the same start block since writes
    are idempotent.
    """

    def __init__(
        self,
        chain: ChainClient,
        processor: EventProcessor,
        contract_address: str,
        topic0: bytes,
        batch_size: int = 2000,
    ) -> None:
        """
        Initialize the BackfillRunner.

        Args:
            chain: Node access used for historical log queries
            processor: Decode-and-persist step applied to each log
            contract_address: Address of the contract emitting the event
            topic0: Event signature hash
            batch_size: Maximum number of blocks per log query
        """
        self.chain = chain
        self.processor = processor
        self.contract_address = contract_address
        self.topic0 = topic0
        self.batch_size = batch_size

    async def run(self, from_block: int, to_block: int) -> IngestionStats:
        """
        Process every matching log in ``[from_block, to_block]``.

        Args:
            from_block: First block of the range (inclusive)
            to_block: Last block of the range (inclusive)

        Returns:
            Counters for the processed range

        Raises:
            PersistenceError: If any decoded event could not be stored
        """
        self.processor.reset_stats()

        if from_block > to_block:
            logger.info(f"Nothing to backfill: start block {from_block} is past head {to_block}")
            return self.processor.stats

        logger.info(f"Fetching historical events from block {from_block} to {to_block}")

        previous_block: int | None = None
        for chunk_start, chunk_end in iter_block_ranges(from_block, to_block, self.batch_size):
            logs = await self.chain.get_logs(
                self.contract_address, self.topic0, chunk_start, chunk_end
            )
            if logs:
                logger.info(f"Found {len(logs)} historical logs in blocks {chunk_start}-{chunk_end}")

            for envelope in logs:
                block = envelope.block_number
                if previous_block is not None and block is not None and block < previous_block:
                    logger.warning(
                        f"Historical logs out of block order: {block} after {previous_block}"
                    )
                if block is not None:
                    previous_block = block

                await self.processor.process_log(envelope, source="historical")

        self.processor.log_metrics("Backfill")
        return self.processor.stats
