#!/usr/bin/env python3
"""Append-only writer for the ``user_transactions`` ledger.

Each record is inserted once. Transient backend failures are retried a fixed
number of times with a fixed delay; after that the record is logged and
dropped so event processing can continue.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from .errors import BackendError
from .models import TransactionRecord

if TYPE_CHECKING:
    from .utils.supabase_utility import SupabaseUtility

logger = logging.getLogger(__name__)


class LedgerWriter:
    """Writes transaction records to the ledger table."""

    TABLE: str = "user_transactions"

    def __init__(
        self,
        backend: "SupabaseUtility",
        retry_count: int = 3,
        retry_delay: float = 1.0
    ) -> None:
        """
        Initialize the LedgerWriter.

        Args:
            backend: Supabase client used for inserts
            retry_count: Total insert attempts per record
            retry_delay: Seconds to wait between attempts
        """
        if retry_count < 1:
            raise ValueError(f"retry_count must be at least 1, got {retry_count}")
        self.backend = backend
        self.retry_count = retry_count
        self.retry_delay = retry_delay

        self.records_written = 0
        self.records_failed = 0

    async def append(self, record: TransactionRecord) -> bool:
        """
        Append a record to the ledger.

        No deduplication happens here; a redelivered event that reaches this
        point is written again.

        Args:
            record: The record to insert

        Returns:
            True if the record was written, False once all attempts failed
        """
        logger.debug(f"Appending {record}")

        for attempt in range(1, self.retry_count + 1):
            try:
                await self.backend.insert(self.TABLE, [record.to_row()])
            except BackendError as e:
                if attempt < self.retry_count:
                    logger.warning(
                        f"Ledger insert failed (attempt {attempt}/{self.retry_count}) "
                        f"for {record.transaction_hash}: {e}"
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                self.records_failed += 1
                logger.error(
                    f"Error logging transaction {record.transaction_hash} "
                    f"on {record.chain_name} after {self.retry_count} attempts: {e}"
                )
                return False

            self.records_written += 1
            logger.info(f"Transaction logged: {record.event_name.value} for user {record.address}")
            return True

        return False
