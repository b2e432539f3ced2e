#!/usr/bin/env python3
"""Maps decoded presale events to transaction records.

The builder is a pure transform: it performs no I/O and relies only on the
already-decoded event and the metadata supplied by the transport.
"""

from collections.abc import Mapping
from datetime import datetime, timezone

from .amounts import TOKEN_DECIMALS, ZERO_AMOUNT, deposit_decimals, normalize_amount
from .models import (
    BoughtWithNative,
    BoughtWithUSDT,
    ClaimHistory,
    PaymentType,
    PresaleEvent,
    TransactionRecord,
    canonical_address,
)


def block_time(timestamp: int) -> datetime:
    """Convert an on-chain epoch-seconds timestamp to an aware UTC datetime."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


class RecordBuilder:
    """Builds ``TransactionRecord`` objects from presale events."""

    def __init__(self, usdt_decimals_overrides: Mapping[str, int] | None = None) -> None:
        """
        Args:
            usdt_decimals_overrides: Per-chain USDT decimals replacing the defaults
        """
        self.usdt_decimals_overrides = dict(usdt_decimals_overrides or {})

    def build(self, event: PresaleEvent) -> TransactionRecord:
        """Build the ledger record for one event occurrence.

        Args:
            event: Decoded event variant

        Returns:
            TransactionRecord ready to be appended to the ledger
        """
        meta = event.meta
        match event:
            case BoughtWithNative():
                payment_type = PaymentType.NATIVE
                deposit = normalize_amount(
                    event.token_deposit,
                    deposit_decimals(meta.chain_name, event.event_name)
                )
            case BoughtWithUSDT():
                payment_type = PaymentType.USDT
                deposit = normalize_amount(
                    event.token_deposit,
                    deposit_decimals(
                        meta.chain_name,
                        event.event_name,
                        self.usdt_decimals_overrides
                    )
                )
            case ClaimHistory():
                payment_type = PaymentType.CLAIM
                deposit = ZERO_AMOUNT
            case _:
                raise TypeError(f"Unsupported event type: {type(event).__name__}")

        return TransactionRecord(
            address=canonical_address(event.user),
            transaction_hash=meta.transaction_hash,
            chain_name=meta.chain_name,
            event_name=event.event_name,
            payment_type=payment_type,
            deposit_amount=deposit,
            token_amount=normalize_amount(event.amount, TOKEN_DECIMALS),
            block_number=meta.block_number,
            block_timestamp=block_time(event.timestamp)
        )
