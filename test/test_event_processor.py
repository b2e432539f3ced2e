#!/usr/bin/env python3
"""Tests for the EventProcessor class."""

import asyncio
from collections import OrderedDict
from unittest.mock import AsyncMock, patch

import pytest

from conftest import ONE, USER, make_log
from deposit_relay.deposit_aggregator import DepositAggregator
from deposit_relay.event_processor import EventProcessor
from deposit_relay.ledger_writer import LedgerWriter
from deposit_relay.models import ClaimHistory, EventMeta, PaymentType
from deposit_relay.record_builder import RecordBuilder
from deposit_relay.utils.event_decoder import EventDecoder

TRANSACTIONS = LedgerWriter.TABLE
DEPOSITS = DepositAggregator.TABLE


def _processor(backend, chain_name: str = "ETH", dedupe_window: int = 10_000) -> EventProcessor:
    return EventProcessor(
        chain_name=chain_name,
        decoder=EventDecoder(chain_name),
        builder=RecordBuilder(),
        ledger=LedgerWriter(backend, retry_count=3, retry_delay=0),
        aggregator=DepositAggregator(backend),
        dedupe_window=dedupe_window
    )


class TestEventProcessor:
    """Test suite for EventProcessor."""

    @pytest.mark.asyncio
    async def test_native_purchase_then_claim(self, backend):
        """A purchase and a claim produce two ledger rows and one aggregate."""
        processor = _processor(backend, "BSC")

        await processor.handle_log(make_log(
            "BoughtWithNative", [USER, 2 * ONE, 5 * ONE, 1_700_000_000],
            tx_hash="0x" + "01" * 32, block_number=100
        ))
        await processor.handle_log(make_log(
            "claimHistory", [USER, ONE, 1_700_000_100],
            tx_hash="0x" + "02" * 32, block_number=101
        ))

        rows = backend.tables[TRANSACTIONS]
        assert [row["event_name"] for row in rows] == ["BoughtWithNative", "claimHistory"]
        assert [row["payment_type"] for row in rows] == ["native", "claim"]
        assert [row["block_number"] for row in rows] == [100, 101]
        assert rows[0]["deposit_amount"] == "2.000000"
        assert rows[1]["deposit_amount"] == "0.000000"

        [aggregate] = backend.tables[DEPOSITS]
        assert aggregate["address"] == USER
        assert aggregate["total_native_deposit"] == "2.000000"
        assert aggregate["total_usdt_deposit"] == "0.000000"
        assert aggregate["total_token_amount"] == "6.000000"
        assert processor.events_processed == 2

    @pytest.mark.asyncio
    async def test_usdt_purchase_on_bsc(self, backend):
        processor = _processor(backend, "BSC")

        record = await processor.handle_log(make_log(
            "BoughtWithUSDT", [USER, 1_500_000_000_000_000_000, 3 * ONE, 1_700_000_000]
        ))

        assert record.payment_type is PaymentType.USDT
        assert record.deposit_amount == "1.500000"
        [aggregate] = backend.tables[DEPOSITS]
        assert aggregate["total_usdt_deposit"] == "1.500000"
        assert aggregate["total_native_deposit"] == "0.000000"

    @pytest.mark.asyncio
    async def test_duplicate_log_is_dropped(self, backend):
        """A redelivered log is not written or counted twice."""
        processor = _processor(backend)
        log = make_log("BoughtWithNative", [USER, ONE, ONE, 1_700_000_000])

        assert await processor.handle_log(log) is not None
        assert await processor.handle_log(log) is None

        assert len(backend.tables[TRANSACTIONS]) == 1
        assert backend.tables[DEPOSITS][0]["total_native_deposit"] == "1.000000"
        assert processor.events_duplicated == 1

    @pytest.mark.asyncio
    async def test_same_transaction_different_log_index(self, backend):
        """Two events in one transaction are distinct occurrences."""
        processor = _processor(backend)
        tx_hash = "0x" + "03" * 32

        await processor.handle_log(make_log("BoughtWithNative", [USER, ONE, ONE, 0], tx_hash=tx_hash, log_index=0))
        await processor.handle_log(make_log("BoughtWithNative", [USER, ONE, ONE, 0], tx_hash=tx_hash, log_index=1))

        assert len(backend.tables[TRANSACTIONS]) == 2
        assert processor.events_duplicated == 0

    @pytest.mark.asyncio
    async def test_undecodable_log_does_not_stop_processing(self, backend):
        processor = _processor(backend)
        bad = make_log("claimHistory", [USER, ONE, 0])
        bad["topics"] = []

        assert await processor.handle_log(bad) is None
        assert await processor.handle_log(make_log("claimHistory", [USER, ONE, 0])) is not None

        assert processor.events_invalid == 1
        assert processor.events_processed == 1
        assert len(backend.tables[TRANSACTIONS]) == 1

    @pytest.mark.asyncio
    async def test_ledger_failure_does_not_block_aggregate(self, backend):
        """Exhausted ledger retries still let the aggregate update."""
        backend.insert_failures = 3
        processor = _processor(backend)

        record = await processor.handle_log(make_log("BoughtWithNative", [USER, 2 * ONE, 5 * ONE, 0]))

        assert record is not None
        assert backend.tables[TRANSACTIONS] == []
        assert backend.tables[DEPOSITS][0]["total_native_deposit"] == "2.000000"
        assert processor.ledger_failures == 1
        assert processor.aggregate_failures == 0

    @pytest.mark.asyncio
    async def test_aggregate_failure_does_not_block_ledger(self, backend):
        backend.upsert_failures = 1
        processor = _processor(backend)

        await processor.handle_log(make_log("BoughtWithNative", [USER, 2 * ONE, 5 * ONE, 0]))

        assert len(backend.tables[TRANSACTIONS]) == 1
        assert backend.tables[DEPOSITS] == []
        assert processor.aggregate_failures == 1
        assert processor.ledger_failures == 0

    @pytest.mark.asyncio
    async def test_processing_continues_after_ledger_failure(self, backend):
        backend.insert_failures = 3
        processor = _processor(backend)

        await processor.handle_log(make_log("claimHistory", [USER, ONE, 0], tx_hash="0x" + "04" * 32))
        await processor.handle_log(make_log("claimHistory", [USER, ONE, 0], tx_hash="0x" + "05" * 32))

        assert [row["transaction_hash"] for row in backend.tables[TRANSACTIONS]] == ["0x" + "05" * 32]
        assert backend.tables[DEPOSITS][0]["total_token_amount"] == "2.000000"

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_contained(self):
        """Errors raised by a collaborator are counted, not propagated."""
        ledger = AsyncMock()
        ledger.append.side_effect = RuntimeError("bug")
        aggregator = AsyncMock()
        aggregator.apply_delta.return_value = True
        processor = EventProcessor("ETH", EventDecoder("ETH"), RecordBuilder(), ledger, aggregator)

        record = await processor.handle_log(make_log("claimHistory", [USER, ONE, 0]))

        assert record is not None
        assert processor.ledger_failures == 1
        aggregator.apply_delta.assert_awaited_once()
        _, kwargs = aggregator.apply_delta.await_args
        assert kwargs["payment_type"] is PaymentType.CLAIM
        assert kwargs["native_delta"] == 0
        assert kwargs["usdt_delta"] == 0
        assert kwargs["token_delta"] == "1.000000"

    @pytest.mark.asyncio
    async def test_concurrent_events_for_one_address(self, backend):
        """Events processed concurrently all reach the aggregate."""
        processor = _processor(backend)
        logs = [
            make_log("BoughtWithNative", [USER, ONE, 2 * ONE, 0], tx_hash=f"0x{i:064x}")
            for i in range(1, 6)
        ]

        await asyncio.gather(*(processor.handle_log(log) for log in logs))

        assert len(backend.tables[TRANSACTIONS]) == 5
        [aggregate] = backend.tables[DEPOSITS]
        assert aggregate["total_native_deposit"] == "5.000000"
        assert aggregate["total_token_amount"] == "10.000000"

    @pytest.mark.asyncio
    async def test_build_failure_leaves_event_retryable(self, backend):
        """An event whose record cannot be built is not remembered as processed."""
        processor = _processor(backend)
        log = make_log("claimHistory", [USER, ONE, 0])

        with patch.object(processor.builder, "build", side_effect=OverflowError("date value out of range")):
            assert await processor.handle_log(log) is None

        assert processor.events_invalid == 1
        assert len(processor.processed_events) == 0
        assert backend.tables[TRANSACTIONS] == []

        assert await processor.handle_log(log) is not None
        assert processor.events_duplicated == 0
        assert len(backend.tables[TRANSACTIONS]) == 1

    @pytest.mark.asyncio
    async def test_dedupe_window_evicts_oldest(self, backend):
        processor = _processor(backend, dedupe_window=2)
        events = [
            ClaimHistory(user=USER, amount=ONE, timestamp=0,
                         meta=EventMeta("ETH", f"0x{i:064x}", block_number=i))
            for i in range(3)
        ]

        for event in events:
            await processor.process_event(event)

        assert isinstance(processor.processed_events, OrderedDict)
        assert list(processor.processed_events) == [events[1].unique_key, events[2].unique_key]

        # The evicted occurrence is accepted again
        assert await processor.process_event(events[0]) is not None
        assert processor.events_processed == 4

    @pytest.mark.asyncio
    async def test_metrics(self, backend):
        processor = _processor(backend)
        await processor.handle_log(make_log("claimHistory", [USER, ONE, 0]))

        metrics = processor.get_metrics()

        assert metrics["events_processed"] == 1
        assert metrics["cache_size"] == 1
        processor.log_metrics()
