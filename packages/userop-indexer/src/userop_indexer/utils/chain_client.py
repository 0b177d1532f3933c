"""
Chain client for historical and live log access.

Provides WebSocket-based access to an EVM node: current block height,
historical log queries and a live log subscription exposed as an async iterator.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator
from enum import Enum

from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception
from web3.providers import WebSocketProvider
from web3.types import FilterParams
from websockets.exceptions import WebSocketException

from ..errors import SubscriptionError
from ..models import LogEnvelope

# Errors raised by the provider when the node connection is lost or unusable
CONNECTION_ERRORS = (ConnectionError, OSError, asyncio.TimeoutError, WebSocketException, Web3Exception)


class ConnectionState(Enum):
    """Connection state for the chain client."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def convert_to_websocket_url(http_url: str) -> str:
    """Convert an HTTP RPC URL to its WebSocket equivalent."""
    if http_url.startswith("https://"):
        return http_url.replace("https://", "wss://", 1)
    if http_url.startswith("http://"):
        return http_url.replace("http://", "ws://", 1)
    return http_url


def iter_block_ranges(from_block: int, to_block: int, batch_size: int) -> Iterator[tuple[int, int]]:
    """Split ``[from_block, to_block]`` into contiguous chunks of at most ``batch_size`` blocks."""
    if batch_size <= 0:
        raise ValueError(f"Batch size must be positive, got {batch_size}")

    start = from_block
    while start <= to_block:
        end = min(start + batch_size - 1, to_block)
        yield start, end
        start = end + 1


class ChainClient:
    """
    Client for reading logs from a blockchain node over WebSocket.

    Features:
    - Connection with bounded retries and exponential backoff at startup
    - Historical log queries by address, topic0 and block range
    - Live log subscription that resumes from a given block

    Losing the connection after startup is not retried here; it surfaces as
    SubscriptionError to the caller.
    """

    def __init__(
        self,
        rpc_url: str,
        request_timeout: int = 60,
        max_retries: int = 5,
        batch_size: int = 2000,
    ) -> None:
        """
        Initialize the ChainClient.

        Args:
            rpc_url: Node endpoint (http(s) URLs are converted to ws(s))
            request_timeout: Per-request timeout in seconds
            max_retries: Maximum connection attempts at startup
            batch_size: Maximum number of blocks per catch-up log query
        """
        self.websocket_url = convert_to_websocket_url(rpc_url)
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.batch_size = batch_size

        self.connection_state = ConnectionState.DISCONNECTED
        self.async_w3: AsyncWeb3 | None = None
        self.subscription_id: str | None = None

        # Retry configuration
        self.base_delay = 1
        self.max_delay = 60

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def connect(self) -> None:
        """Open the WebSocket connection to the node.

        Raises:
            ConnectionError: If no connection could be made within max_retries
        """
        retry_count = 0

        while True:
            try:
                self.connection_state = ConnectionState.CONNECTING
                self.logger.info(f"Connecting to WebSocket: {self.websocket_url}")

                self.async_w3 = await AsyncWeb3(
                    WebSocketProvider(
                        self.websocket_url,
                        request_timeout=self.request_timeout,
                        subscription_response_queue_size=10000,
                    )
                )
                self.connection_state = ConnectionState.CONNECTED

                block_number = await self.async_w3.eth.block_number
                self.logger.info(f"Connected to node. Latest block: {block_number}")
                return

            except CONNECTION_ERRORS as e:
                retry_count += 1
                if retry_count >= self.max_retries:
                    self.logger.error("Max WebSocket connection attempts reached")
                    self.connection_state = ConnectionState.FAILED
                    raise ConnectionError(
                        f"Failed to connect to {self.websocket_url}: {e}"
                    ) from e

                delay = min(self.base_delay * (2 ** retry_count), self.max_delay)
                self.logger.warning(
                    f"WebSocket connection failed (attempt {retry_count}/{self.max_retries}): {e}"
                )
                self.logger.info(f"Retrying in {delay} seconds...")
                await asyncio.sleep(delay)

    def _require_connection(self) -> AsyncWeb3:
        if self.async_w3 is None or self.connection_state is not ConnectionState.CONNECTED:
            raise ConnectionError("ChainClient is not connected")
        return self.async_w3

    async def get_current_block_height(self) -> int:
        """Return the latest block number known to the node."""
        w3 = self._require_connection()
        return await w3.eth.block_number

    async def get_logs(
        self,
        address: str,
        topic0: bytes,
        from_block: int,
        to_block: int,
    ) -> list[LogEnvelope]:
        """Fetch logs for one contract and event signature in a closed block range.

        Args:
            address: Contract address emitting the event
            topic0: Event signature hash
            from_block: First block of the range (inclusive)
            to_block: Last block of the range (inclusive)

        Returns:
            Log envelopes in the order returned by the node
        """
        w3 = self._require_connection()
        filter_params: FilterParams = {
            "address": Web3.to_checksum_address(address),
            "topics": [Web3.to_hex(topic0)],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        logs = await w3.eth.get_logs(filter_params)
        return [LogEnvelope.from_log_receipt(log) for log in logs]

    async def subscribe_logs(
        self,
        address: str,
        topic0: bytes,
        from_block: int,
    ) -> AsyncIterator[LogEnvelope]:
        """
        Yield matching logs from ``from_block`` onwards, indefinitely.

        ``eth_subscribe`` only delivers logs mined after the subscription is
        created, so the subscription is opened first and any blocks between
        ``from_block`` and the current head are replayed with ``eth_getLogs``
        in ``batch_size`` chunks before the live stream is consumed. Live logs
        below ``from_block`` are dropped; replay/stream overlap is left to the consumer's dedup.

        Args:
            address: Contract address emitting the event
            topic0: Event signature hash
            from_block: First block to deliver logs for

        Raises:
            SubscriptionError: If the connection fails or the stream ends
        """
        w3 = self._require_connection()
        checksum_address = Web3.to_checksum_address(address)

        try:
            self.subscription_id = await w3.eth.subscribe(
                "logs",
                {"address": checksum_address, "topics": [Web3.to_hex(topic0)]},
            )
            self.logger.info(
                f"Subscribed to logs on {checksum_address} "
                f"(subscription {self.subscription_id}, from block {from_block})"
            )

            head = await w3.eth.block_number
            if head >= from_block:
                self.logger.info(f"Replaying blocks {from_block}-{head} missed before subscribing")
                for chunk_start, chunk_end in iter_block_ranges(from_block, head, self.batch_size):
                    for envelope in await self.get_logs(address, topic0, chunk_start, chunk_end):
                        yield envelope

            async for response in w3.socket.process_subscriptions():
                envelope = LogEnvelope.from_log_receipt(response["result"])
                if envelope.block_number is not None and envelope.block_number < from_block:
                    self.logger.debug(f"Dropping live log below start block: {envelope}")
                    continue
                yield envelope

        except CONNECTION_ERRORS as e:
            self.connection_state = ConnectionState.FAILED
            raise SubscriptionError(f"Log subscription failed: {e}") from e

        raise SubscriptionError("Log subscription ended unexpectedly")

    async def disconnect(self) -> None:
        """Unsubscribe and close the connection."""
        self.logger.info("Disconnecting chain client...")

        try:
            if self.async_w3 and self.subscription_id:
                await self.async_w3.eth.unsubscribe(self.subscription_id)

            if self.async_w3:
                await self.async_w3.provider.disconnect()

        except CONNECTION_ERRORS as e:
            self.logger.warning(f"Error during cleanup: {e}")
        finally:
            self.connection_state = ConnectionState.DISCONNECTED
            self.async_w3 = None
            self.subscription_id = None
