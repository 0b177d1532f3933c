"""Shared fixtures for indexer tests."""

import pytest
from web3 import Web3

from userop_indexer.decoder import USER_OPERATION_EVENT_TOPIC
from userop_indexer.errors import SubscriptionError
from userop_indexer.models import LogEnvelope
from userop_indexer.sink import EventSink

USER_OP_HASH = bytes.fromhex("ab" * 32)
SENDER = Web3.to_checksum_address("0x742d35cc6634c0532925a3b844bc9e7595f0beb7")
PAYMASTER = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"


def _pad_address(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def _word(value: int) -> bytes:
    return value.to_bytes(32, byteorder="big")


@pytest.fixture
def make_envelope():
    """Factory for well-formed UserOperationEvent log envelopes."""
    def _make(
        nonce: int = 2,
        success: bool = True,
        actual_gas_cost: int = 50000,
        actual_gas_used: int = 42000,
        block_number: int | None = 100,
        user_op_hash: bytes = USER_OP_HASH,
        sender: str = SENDER,
        paymaster: str = PAYMASTER,
        log_index: int = 0,
    ) -> LogEnvelope:
        data = _word(nonce) + _word(int(success)) + _word(actual_gas_cost) + _word(actual_gas_used)
        return LogEnvelope(
            topics=(
                USER_OPERATION_EVENT_TOPIC,
                user_op_hash,
                _pad_address(sender),
                _pad_address(paymaster),
            ),
            data=data,
            block_number=block_number,
            transaction_hash="0x" + "cd" * 32,
            log_index=log_index,
        )
    return _make


@pytest.fixture
def sink(tmp_path):
    """EventSink backed by a SQLite file with the schema created."""
    event_sink = EventSink.from_url(
        f"sqlite:///{tmp_path / 'events.db'}",
        connect_args={"check_same_thread": False},
    )
    event_sink.create_schema()
    yield event_sink
    event_sink.close()


class FakeChain:
    """In-memory stand-in for ChainClient.

    Historical logs are served from ``historical`` filtered by block range;
    the live stream yields ``live`` in order and then either raises
    SubscriptionError (``live_error``) or ends.
    """

    def __init__(self, head: int, historical=None, live=None, live_error: bool = True):
        self.head = head
        self.historical = list(historical or [])
        self.live = list(live or [])
        self.live_error = live_error
        self.connected = False
        self.get_logs_calls: list[tuple[int, int]] = []
        self.subscribe_from: int | None = None
        self.subscribe_address: str | None = None
        self.subscribe_topic0: bytes | None = None

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def get_current_block_height(self) -> int:
        return self.head

    async def get_logs(self, address, topic0, from_block, to_block):
        self.get_logs_calls.append((from_block, to_block))
        return [
            log for log in self.historical
            if log.block_number is None or from_block <= log.block_number <= to_block
        ]

    async def subscribe_logs(self, address, topic0, from_block):
        self.subscribe_address = address
        self.subscribe_topic0 = topic0
        self.subscribe_from = from_block
        for envelope in self.live:
            yield envelope
        if self.live_error:
            raise SubscriptionError("connection closed")


@pytest.fixture
def fake_chain_factory():
    return FakeChain
