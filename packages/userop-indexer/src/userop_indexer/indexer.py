import asyncio
import logging

from .backfill import BackfillRunner
from .config import IndexerConfig
from .decoder import USER_OPERATION_EVENT_TOPIC
from .errors import IndexerError, SetupError
from .event_processor import EventProcessor
from .live_subscriber import LiveSubscriber
from .models import IndexerState
from .sink import EventSink
from .utils.chain_client import CONNECTION_ERRORS, ChainClient

# Get logger for this module
logger = logging.getLogger(__name__)

# Failures while opening node or storage access
SETUP_ERRORS = (*CONNECTION_ERRORS, IndexerError)


class UserOperationIndexer:
    """
    Indexer that backfills EntryPoint UserOperationEvents from a start block
    to the chain head, then follows new blocks over a live subscription.

    States: CONNECTING -> BACKFILLING -> SUBSCRIBING, with FAILED as the
    terminal state for setup, storage and subscription errors. A cancelled
    run ends in STOPPED.
    """

    def __init__(
        self,
        config: IndexerConfig,
        chain: ChainClient | None = None,
        sink: EventSink | None = None,
    ) -> None:
        """
        Initialize the indexer with configuration.

        :param config: Indexer configuration object
        :param chain: Node access (built from config if not given)
        :param sink: Event store (built from config if not given)
        """
        self.config = config
        self.state = IndexerState.CONNECTING
        self.error: BaseException | None = None

        self.chain = chain or ChainClient(
            rpc_url=config.chain.rpc_url,
            request_timeout=config.ingestion.request_timeout,
            max_retries=config.ingestion.connect_retries,
            batch_size=config.ingestion.backfill_batch_size,
        )
        self.sink = sink or EventSink.from_url(config.database.url)
        self.event_processor = EventProcessor(self.sink)

        contract_address = config.chain.entry_point_address
        self.backfill_runner = BackfillRunner(
            chain=self.chain,
            processor=self.event_processor,
            contract_address=contract_address,
            topic0=USER_OPERATION_EVENT_TOPIC,
            batch_size=config.ingestion.backfill_batch_size,
        )
        self.live_subscriber = LiveSubscriber(
            chain=self.chain,
            processor=self.event_processor,
            contract_address=contract_address,
            topic0=USER_OPERATION_EVENT_TOPIC,
        )

    def _transition(self, state: IndexerState) -> None:
        logger.info(f"Indexer state: {self.state.value} -> {state.value}")
        self.state = state

    async def connect(self) -> None:
        """
        Establish node and storage access and make sure the schema exists.

        :raises SetupError: If either collaborator is unreachable
        """
        try:
            await self.chain.connect()
            await asyncio.to_thread(self.sink.ping)
            await asyncio.to_thread(self.sink.create_schema)
        except SETUP_ERRORS as e:
            raise SetupError(f"Indexer setup failed: {e}") from e
        logger.info("Node and database connections verified")

    async def ingest(self) -> None:
        """
        Backfill ``[start_block, head]`` then stream from ``head + 1``.

        The block cursor lives only in this method and is handed to each
        phase by argument.
        """
        start_block = self.config.ingestion.start_block

        self._transition(IndexerState.BACKFILLING)
        head = await self.chain.get_current_block_height()
        await self.backfill_runner.run(start_block, head)

        # Past-head start blocks are streamed from as configured
        live_from = max(head + 1, start_block)

        self._transition(IndexerState.SUBSCRIBING)
        await self.live_subscriber.run(live_from)

    async def run(self) -> None:
        """
        Main entry point for the indexer.

        Runs until cancelled. Any failure moves the indexer to
        FAILED and is re-raised for the process to report and exit non-zero.
        """
        logger.info("Starting UserOperationEvent indexer...")
        self.config.log_config()

        try:
            self.state = IndexerState.CONNECTING
            await self.connect()
            await self.ingest()
            self._transition(IndexerState.STOPPED)

        except asyncio.CancelledError:
            self._transition(IndexerState.STOPPED)
            raise
        except Exception as e:
            self.error = e
            self._transition(IndexerState.FAILED)
            logger.error(f"Indexer failed: {e}", exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Release the node connection and the database engine."""
        logger.info("Cleaning up...")
        await self.chain.disconnect()
        self.sink.close()
        logger.info("Indexer stopped")
