#!/usr/bin/env python3
"""Tests for the UserOperationIndexer orchestration."""

import asyncio
import dataclasses
from unittest.mock import AsyncMock, call, patch

import pytest
from websockets.exceptions import InvalidURI

from userop_indexer.config import ChainConfig, DatabaseConfig, IndexerConfig, IngestionConfig
from userop_indexer.errors import PersistenceError, SetupError, SubscriptionError
from userop_indexer.indexer import UserOperationIndexer
from userop_indexer.models import IndexerState


@pytest.fixture
def make_config(tmp_path):
    def _make(start_block: int = 100, batch_size: int = 2000) -> IndexerConfig:
        return IndexerConfig(
            chain=ChainConfig(rpc_url="ws://localhost:8546"),
            database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'events.db'}"),
            ingestion=IngestionConfig(start_block=start_block, backfill_batch_size=batch_size),
        )
    return _make


class TestUserOperationIndexer:
    """Test suite for the indexer state machine."""

    @pytest.mark.asyncio
    async def test_end_to_end_single_historical_event(self, make_config, sink, make_envelope, fake_chain_factory):
        """Start = head = 100 with one historical log; live phase starts at 101."""
        envelope = make_envelope(nonce=0x2, success=True, actual_gas_cost=50000, actual_gas_used=42000, block_number=100)
        chain = fake_chain_factory(head=100, historical=[envelope])
        indexer = UserOperationIndexer(make_config(start_block=100), chain=chain, sink=sink)

        with pytest.raises(SubscriptionError):
            await indexer.run()

        assert sink.count_events() == 1
        row = sink.get_event("0x" + "ab" * 32, 0x2)
        assert row["success"] is True
        assert row["actual_gas_cost"] == 50000
        assert row["actual_gas_used"] == 42000
        assert row["block_number"] == 100
        assert chain.subscribe_from == 101
        assert chain.get_logs_calls == [(100, 100)]

    @pytest.mark.asyncio
    async def test_boundary_continuity(self, make_config, sink, make_envelope, fake_chain_factory):
        """Backfill covers [start, head] and the live phase starts at head + 1."""
        historical = [make_envelope(nonce=n, block_number=b) for n, b in enumerate([50, 75, 99])]
        live = [make_envelope(nonce=10, block_number=100)]
        chain = fake_chain_factory(head=99, historical=historical, live=live)
        indexer = UserOperationIndexer(make_config(start_block=50, batch_size=20), chain=chain, sink=sink)

        with pytest.raises(SubscriptionError):
            await indexer.run()

        assert chain.get_logs_calls == [(50, 69), (70, 89), (90, 99)]
        assert chain.subscribe_from == 100
        assert sink.count_events() == 4

    @pytest.mark.asyncio
    async def test_overlap_at_boundary_is_deduplicated(self, make_config, sink, make_envelope, fake_chain_factory):
        """A log delivered by both phases is stored once."""
        envelope = make_envelope(block_number=100)
        chain = fake_chain_factory(head=100, historical=[envelope], live=[envelope])
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        with pytest.raises(SubscriptionError):
            await indexer.run()

        assert sink.count_events() == 1

    @pytest.mark.asyncio
    async def test_state_transitions_to_failed_on_subscription_loss(self, make_config, sink, fake_chain_factory):
        chain = fake_chain_factory(head=100)
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)
        states = []

        original = indexer._transition

        def record(state):
            states.append(state)
            original(state)

        indexer._transition = record

        with pytest.raises(SubscriptionError):
            await indexer.run()

        assert states == [IndexerState.BACKFILLING, IndexerState.SUBSCRIBING, IndexerState.FAILED]
        assert indexer.state is IndexerState.FAILED
        assert isinstance(indexer.error, SubscriptionError)
        assert chain.connected is False

    @pytest.mark.asyncio
    async def test_backfill_persistence_failure_fails_indexer(self, make_config, sink, make_envelope, fake_chain_factory):
        """A storage failure during backfill never reaches the live phase."""
        chain = fake_chain_factory(head=100, historical=[make_envelope(block_number=100)])
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        with patch.object(sink, "persist", AsyncMock(side_effect=PersistenceError("disk full"))):
            with pytest.raises(PersistenceError):
                await indexer.run()

        assert indexer.state is IndexerState.FAILED
        assert chain.subscribe_from is None

    @pytest.mark.asyncio
    async def test_setup_failure_on_node(self, make_config, sink, fake_chain_factory):
        chain = fake_chain_factory(head=100)
        chain.connect = AsyncMock(side_effect=ConnectionError("node unreachable"))
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        with pytest.raises(SetupError):
            await indexer.run()

        assert indexer.state is IndexerState.FAILED
        assert chain.get_logs_calls == []

    @pytest.mark.asyncio
    async def test_setup_failure_on_websocket_error(self, make_config, sink, fake_chain_factory):
        """Errors from the websocket layer are reported as setup failures."""
        chain = fake_chain_factory(head=100)
        chain.connect = AsyncMock(side_effect=InvalidURI("ws://bad host", "not a valid URI"))
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        with pytest.raises(SetupError) as exc_info:
            await indexer.run()

        assert isinstance(exc_info.value.__cause__, InvalidURI)
        assert indexer.state is IndexerState.FAILED

    @pytest.mark.asyncio
    async def test_storage_setup_runs_in_worker_thread(self, make_config, sink, fake_chain_factory):
        """Blocking database checks do not run on the event loop."""
        indexer = UserOperationIndexer(make_config(), chain=fake_chain_factory(head=100), sink=sink)

        with patch("userop_indexer.indexer.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            await indexer.connect()

        assert to_thread.call_args_list == [call(sink.ping), call(sink.create_schema)]

    @pytest.mark.asyncio
    async def test_setup_failure_on_database(self, make_config, sink, fake_chain_factory):
        chain = fake_chain_factory(head=100)
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        with patch.object(sink, "ping", side_effect=PersistenceError("connection refused")):
            with pytest.raises(SetupError) as exc_info:
                await indexer.run()

        assert isinstance(exc_info.value.__cause__, PersistenceError)
        assert indexer.state is IndexerState.FAILED

    @pytest.mark.asyncio
    async def test_live_stream_end_fails_indexer(self, make_config, sink, make_envelope, fake_chain_factory):
        """A live stream that ends by itself is a failure, not a clean stop."""
        chain = fake_chain_factory(head=100, live=[make_envelope(block_number=101)], live_error=False)
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        with pytest.raises(SubscriptionError, match="ended unexpectedly"):
            await indexer.run()

        assert indexer.state is IndexerState.FAILED
        assert sink.count_events() == 1

    def test_chain_client_uses_backfill_batch_size(self, make_config, sink):
        """Catch-up queries on the live phase share the backfill block limit."""
        indexer = UserOperationIndexer(make_config(batch_size=250), sink=sink)

        assert indexer.chain.batch_size == 250
        assert indexer.backfill_runner.batch_size == 250

    @pytest.mark.asyncio
    async def test_start_block_past_head(self, make_config, sink, fake_chain_factory):
        """Nothing is backfilled and the live phase starts at the configured block."""
        chain = fake_chain_factory(head=100)
        indexer = UserOperationIndexer(make_config(start_block=150), chain=chain, sink=sink)

        with pytest.raises(SubscriptionError):
            await indexer.run()

        assert chain.get_logs_calls == []
        assert chain.subscribe_from == 150

    @pytest.mark.asyncio
    async def test_malformed_historical_log_does_not_fail(self, make_config, sink, make_envelope, fake_chain_factory):
        bad = dataclasses.replace(make_envelope(block_number=100), data=b"\x01")
        chain = fake_chain_factory(head=100, historical=[bad, make_envelope(nonce=3, block_number=100)])
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        with pytest.raises(SubscriptionError):
            await indexer.run()

        assert indexer.state is IndexerState.FAILED
        assert sink.count_events() == 1
        assert chain.subscribe_from == 101

    @pytest.mark.asyncio
    async def test_cancellation_stops_cleanly(self, make_config, sink, fake_chain_factory):
        """Cancelling the running indexer leaves it STOPPED, not FAILED."""
        chain = fake_chain_factory(head=100)

        async def never_ending(address, topic0, from_block):
            chain.subscribe_from = from_block
            await asyncio.Event().wait()
            yield  # pragma: no cover

        chain.subscribe_logs = never_ending
        indexer = UserOperationIndexer(make_config(), chain=chain, sink=sink)

        task = asyncio.create_task(indexer.run())
        while chain.subscribe_from is None:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert indexer.state is IndexerState.STOPPED
        assert chain.connected is False
