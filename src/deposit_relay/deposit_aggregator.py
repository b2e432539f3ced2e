#!/usr/bin/env python3
"""Per-address running deposit totals.

Each event updates the ``user_deposits`` row of its address with a
read-modify-write: fetch the current totals, add the event's deltas and
upsert the full row keyed by address. The backend offers no atomic
increment, so two updates for the same address that interleave between the
read and the upsert would lose one delta. Updates are therefore serialized
per address with an ``asyncio.Lock``; updates for different addresses still
run concurrently.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from .amounts import parse_decimal
from .errors import BackendError
from .models import DepositAggregate, PaymentType, canonical_address

if TYPE_CHECKING:
    from .utils.supabase_utility import SupabaseUtility

logger = logging.getLogger(__name__)


class AddressLocks:
    """Keyed asyncio locks, one per address in use.

    A lock is dropped once no task holds or waits for it, so the table only
    grows with the number of addresses being updated concurrently.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, address: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(address, asyncio.Lock())
        self._users[address] = self._users.get(address, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[address] -= 1
            if self._users[address] == 0:
                del self._users[address]
                del self._locks[address]

    def __len__(self) -> int:
        return len(self._locks)


class DepositAggregator:
    """Maintains one running-total row per user address."""

    TABLE: str = "user_deposits"
    CONFLICT_COLUMN: str = "address"

    def __init__(self, backend: "SupabaseUtility") -> None:
        """
        Initialize the DepositAggregator.

        Args:
            backend: Supabase client used for reads and upserts
        """
        self.backend = backend
        self.locks = AddressLocks()

        self.updates_applied = 0
        self.updates_failed = 0

    async def apply_delta(
        self,
        address: str,
        native_delta: Any,
        token_delta: Any,
        usdt_delta: Any,
        payment_type: PaymentType
    ) -> bool:
        """
        Add one event's amounts to the totals of an address.

        Deltas are decimal strings (or numbers) in human units. Only the
        delta matching ``payment_type`` is applied to the currency totals;
        the token delta is always applied.

        Args:
            address: User address in any letter case
            native_delta: Native-currency deposit
            token_delta: Tokens bought or claimed
            usdt_delta: USDT deposit
            payment_type: native, usdt or claim

        Returns:
            True if the totals were updated, False if the backend failed
        """
        key = canonical_address(address)
        async with self.locks.hold(key):
            try:
                aggregate = await self._read_modify_write(
                    key,
                    parse_decimal(native_delta),
                    parse_decimal(token_delta),
                    parse_decimal(usdt_delta),
                    payment_type
                )
            except BackendError as e:
                self.updates_failed += 1
                logger.error(f"Error updating user deposit for {key}: {e}")
                return False

        self.updates_applied += 1
        row = aggregate.to_row()
        logger.info(
            f"User deposit updated for {key}: "
            f"native={row['total_native_deposit']}, "
            f"usdt={row['total_usdt_deposit']}, "
            f"tokens={row['total_token_amount']}"
        )
        return True

    async def _read_modify_write(
        self,
        address: str,
        native_delta: Decimal,
        token_delta: Decimal,
        usdt_delta: Decimal,
        payment_type: PaymentType
    ) -> DepositAggregate:
        """Unguarded update step; callers must hold the address lock."""
        current = await self.get(address)
        if current is None:
            current = DepositAggregate.empty(address)

        updated = current.with_delta(native_delta, token_delta, usdt_delta, payment_type)
        await self.backend.upsert(self.TABLE, updated.to_row(), on_conflict=self.CONFLICT_COLUMN)
        return updated

    async def get(self, address: str) -> DepositAggregate | None:
        """Fetch the current totals for an address, or None if absent."""
        row = await self.backend.select_one(self.TABLE, {"address": canonical_address(address)})
        if row is None:
            return None
        return DepositAggregate.from_row(row)
