#!/usr/bin/env python3
"""Event processing module for the deposit relay.

This module handles the decoding, deduplication and persistence of presale
contract logs for one chain: each log becomes a ledger record and an update
of the sender's running deposit totals.
"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any

from .deposit_aggregator import DepositAggregator
from .errors import EventDecodeError
from .ledger_writer import LedgerWriter
from .models import PaymentType, PresaleEvent, TransactionRecord
from .record_builder import RecordBuilder
from .utils.event_decoder import EventDecoder

# Get logger for this module
logger = logging.getLogger(__name__)


class EventProcessor:
    """Processes presale contract logs for one chain.

    This class is responsible for:
    - Decoding raw logs into typed events
    - Dropping redelivered event occurrences
    - Building the transaction record
    - Writing the record and updating the aggregate independently
    - Maintaining metrics on processed events
    """

    def __init__(
        self,
        chain_name: str,
        decoder: EventDecoder,
        builder: RecordBuilder,
        ledger: LedgerWriter,
        aggregator: DepositAggregator,
        dedupe_window: int = 10_000
    ) -> None:
        """Initialize the EventProcessor.

        Args:
            chain_name: Name of the chain the logs come from
            decoder: Decoder for the presale contract logs
            builder: Builds ledger records from events
            ledger: Writer for the transaction ledger
            aggregator: Updater for per-address deposit totals
            dedupe_window: Maximum number of events to track for deduplication
        """
        self.chain_name = chain_name
        self.decoder = decoder
        self.builder = builder
        self.ledger = ledger
        self.aggregator = aggregator
        self.dedupe_window = dedupe_window

        # Deduplication cache using OrderedDict for O(1) lookups
        self.processed_events: OrderedDict[tuple[str, str, str, int], None] = OrderedDict()

        # Metrics tracking
        self.events_processed = 0
        self.events_duplicated = 0
        self.events_invalid = 0
        self.ledger_failures = 0
        self.aggregate_failures = 0

    async def handle_log(self, log: Mapping[str, Any]) -> TransactionRecord | None:
        """Decode and persist one log.

        Never raises: decode failures and persistence failures are logged
        and counted so the caller can keep processing later logs.

        Args:
            log: Log receipt delivered by the transport

        Returns:
            The record built for the event, or None if it was skipped
        """
        try:
            event = self.decoder.decode(log)
        except EventDecodeError as e:
            self.events_invalid += 1
            logger.error(f"[{self.chain_name}] Dropping undecodable log: {e}")
            return None
        except Exception as e:
            self.events_invalid += 1
            logger.error(f"[{self.chain_name}] Error decoding log: {e}", exc_info=True)
            return None

        return await self.process_event(event)

    async def process_event(self, event: PresaleEvent) -> TransactionRecord | None:
        """Persist one decoded event.

        The ledger append and the aggregate update run concurrently and
        independently: a failure of one neither blocks nor rolls back the
        other.

        Args:
            event: Decoded presale event

        Returns:
            The record built for the event, or None if it was skipped
        """
        if self._is_duplicate(event):
            self.events_duplicated += 1
            logger.debug(f"[{self.chain_name}] Duplicate event detected: {event.unique_key}")
            return None

        try:
            record = self.builder.build(event)
        except Exception as e:
            self.events_invalid += 1
            logger.error(f"[{self.chain_name}] Failed to build record: {e}", exc_info=True)
            return None
        self._mark_processed(event)

        logger.info(
            f"[{self.chain_name}] {record.event_name.value} event: user={record.address}, "
            f"deposit={record.deposit_amount}, tokens={record.token_amount}, "
            f"tx={record.transaction_hash}"
        )

        ledger_result, aggregate_result = await asyncio.gather(
            self.ledger.append(record),
            self.aggregator.apply_delta(
                record.address,
                native_delta=record.deposit_amount if record.payment_type is PaymentType.NATIVE else 0,
                token_delta=record.token_amount,
                usdt_delta=record.deposit_amount if record.payment_type is PaymentType.USDT else 0,
                payment_type=record.payment_type
            ),
            return_exceptions=True
        )

        if ledger_result is not True:
            self.ledger_failures += 1
            if isinstance(ledger_result, BaseException):
                logger.error(
                    f"[{self.chain_name}] Unexpected ledger error for {record.transaction_hash}: "
                    f"{ledger_result!r}"
                )
        if aggregate_result is not True:
            self.aggregate_failures += 1
            if isinstance(aggregate_result, BaseException):
                logger.error(
                    f"[{self.chain_name}] Unexpected aggregate error for {record.address}: "
                    f"{aggregate_result!r}"
                )

        self.events_processed += 1
        return record

    def _is_duplicate(self, event: PresaleEvent) -> bool:
        return event.unique_key in self.processed_events

    def _mark_processed(self, event: PresaleEvent) -> None:
        """Remember an event occurrence, evicting the oldest past the window."""
        if len(self.processed_events) >= self.dedupe_window:
            self.processed_events.popitem(last=False)
        self.processed_events[event.unique_key] = None

    def get_metrics(self) -> dict[str, int]:
        """Get current processing metrics.

        Returns:
            Dictionary of metric names to values
        """
        return {
            "events_processed": self.events_processed,
            "events_duplicated": self.events_duplicated,
            "events_invalid": self.events_invalid,
            "ledger_failures": self.ledger_failures,
            "aggregate_failures": self.aggregate_failures,
            "cache_size": len(self.processed_events)
        }

    def log_metrics(self) -> None:
        """Log current processing metrics."""
        metrics = self.get_metrics()
        logger.info(
            f"[{self.chain_name}] EventProcessor Metrics: "
            f"Processed={metrics['events_processed']}, "
            f"Duplicates={metrics['events_duplicated']}, "
            f"Invalid={metrics['events_invalid']}, "
            f"LedgerFailures={metrics['ledger_failures']}, "
            f"AggregateFailures={metrics['aggregate_failures']}, "
            f"Cache={metrics['cache_size']}/{self.dedupe_window}"
        )
