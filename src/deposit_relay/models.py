#!/usr/bin/env python3
"""Data models for the deposit relay.

This module provides immutable data classes for the three presale contract
events, the transaction records written to ``user_transactions`` and the
per-address running totals kept in ``user_deposits``.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from .amounts import DECIMAL_CONTEXT, format_amount, parse_decimal


class EventName(str, Enum):
    """Names of the presale contract events the relay subscribes to."""
    BOUGHT_WITH_NATIVE = "BoughtWithNative"
    BOUGHT_WITH_USDT = "BoughtWithUSDT"
    CLAIM_HISTORY = "claimHistory"


class PaymentType(str, Enum):
    """Payment axis of a transaction record."""
    NATIVE = "native"
    USDT = "usdt"
    CLAIM = "claim"


def canonical_address(address: str) -> str:
    """Return the single case form used to key and store addresses."""
    return address.strip().lower()


@dataclass(frozen=True, slots=True)
class EventMeta:
    """Where an event occurrence was observed.

    Attributes:
        chain_name: Configured name of the source chain (e.g. 'BSC')
        transaction_hash: Hash of the transaction that emitted the event
        block_number: Block number where the event was emitted
        log_index: Index of the log entry in the block
    """
    chain_name: str
    transaction_hash: str
    block_number: int
    log_index: int = 0


@dataclass(frozen=True, slots=True)
class BoughtWithNative:
    """Tokens bought with the chain's native currency."""
    user: str
    token_deposit: int
    amount: int
    timestamp: int
    meta: EventMeta

    event_name = EventName.BOUGHT_WITH_NATIVE

    @property
    def unique_key(self) -> tuple[str, str, str, int]:
        return _unique_key(self.meta, self.event_name)


@dataclass(frozen=True, slots=True)
class BoughtWithUSDT:
    """Tokens bought with USDT."""
    user: str
    token_deposit: int
    amount: int
    timestamp: int
    meta: EventMeta

    event_name = EventName.BOUGHT_WITH_USDT

    @property
    def unique_key(self) -> tuple[str, str, str, int]:
        return _unique_key(self.meta, self.event_name)


@dataclass(frozen=True, slots=True)
class ClaimHistory:
    """Purchased tokens claimed by the user."""
    user: str
    amount: int
    timestamp: int
    meta: EventMeta

    event_name = EventName.CLAIM_HISTORY

    @property
    def unique_key(self) -> tuple[str, str, str, int]:
        return _unique_key(self.meta, self.event_name)


PresaleEvent = BoughtWithNative | BoughtWithUSDT | ClaimHistory


def _unique_key(meta: EventMeta, event_name: EventName) -> tuple[str, str, str, int]:
    """Key identifying one event occurrence for deduplication."""
    return (
        meta.chain_name,
        meta.transaction_hash.lower(),
        event_name.value,
        meta.log_index
    )


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """Represents one row of the append-only ``user_transactions`` table.

    Attributes:
        address: Lowercased user address
        transaction_hash: Hash of the originating transaction
        chain_name: Source chain name
        event_name: Name of the contract event
        payment_type: native, usdt or claim
        deposit_amount: Deposit as a 6-decimal string
        token_amount: Token amount as a 6-decimal string
        block_number: Block number of the event
        block_timestamp: UTC time converted from the event timestamp
    """
    address: str
    transaction_hash: str
    chain_name: str
    event_name: EventName
    payment_type: PaymentType
    deposit_amount: str
    token_amount: str
    block_number: int
    block_timestamp: datetime

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"TransactionRecord(chain={self.chain_name}, "
            f"event={self.event_name.value}, "
            f"address={self.address[:10]}..., "
            f"block={self.block_number})"
        )

    def to_row(self) -> dict[str, Any]:
        """Convert to a ``user_transactions`` row."""
        return {
            "address": self.address,
            "transaction_hash": self.transaction_hash,
            "chain_name": self.chain_name,
            "event_name": self.event_name.value,
            "payment_type": self.payment_type.value,
            "deposit_amount": self.deposit_amount,
            "token_amount": self.token_amount,
            "block_number": self.block_number,
            "block_timestamp": self.block_timestamp.isoformat()
        }


@dataclass(frozen=True, slots=True)
class DepositAggregate:
    """Running deposit totals for one address (``user_deposits`` row)."""
    address: str
    total_native_deposit: Decimal
    total_usdt_deposit: Decimal
    total_token_amount: Decimal
    last_updated: datetime | None = None

    @classmethod
    def empty(cls, address: str) -> "DepositAggregate":
        """All-zero totals for an address with no row yet."""
        zero = Decimal(0)
        return cls(canonical_address(address), zero, zero, zero)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DepositAggregate":
        """Build an aggregate from a row returned by the backend.

        Totals may come back as JSON numbers, strings or null.
        """
        last_updated = row.get("last_updated")
        if isinstance(last_updated, str):
            try:
                last_updated = datetime.fromisoformat(last_updated.replace("Z", "+00:00"))
            except ValueError:
                # Python 3.10 rejects PostgREST's variable-width fractions
                last_updated = None
        return cls(
            address=canonical_address(row["address"]),
            total_native_deposit=parse_decimal(row.get("total_native_deposit")),
            total_usdt_deposit=parse_decimal(row.get("total_usdt_deposit")),
            total_token_amount=parse_decimal(row.get("total_token_amount")),
            last_updated=last_updated
        )

    def with_delta(
        self,
        native_delta: Decimal,
        token_delta: Decimal,
        usdt_delta: Decimal,
        payment_type: PaymentType
    ) -> "DepositAggregate":
        """Return new totals after one event.

        Only the currency axis matching ``payment_type`` moves; the token
        total always does.
        """
        native = self.total_native_deposit
        usdt = self.total_usdt_deposit
        match payment_type:
            case PaymentType.NATIVE:
                native = DECIMAL_CONTEXT.add(native, native_delta)
            case PaymentType.USDT:
                usdt = DECIMAL_CONTEXT.add(usdt, usdt_delta)
        return replace(
            self,
            total_native_deposit=native,
            total_usdt_deposit=usdt,
            total_token_amount=DECIMAL_CONTEXT.add(self.total_token_amount, token_delta),
            last_updated=datetime.now(timezone.utc)
        )

    def to_row(self) -> dict[str, Any]:
        """Convert to a ``user_deposits`` row for upsert."""
        last_updated = self.last_updated or datetime.now(timezone.utc)
        return {
            "address": self.address,
            "total_native_deposit": format_amount(self.total_native_deposit),
            "total_usdt_deposit": format_amount(self.total_usdt_deposit),
            "total_token_amount": format_amount(self.total_token_amount),
            "last_updated": last_updated.isoformat()
        }
