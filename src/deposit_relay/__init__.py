"""
Deposit relay package.

Multi-chain presale event relay that records purchases and claims in
Supabase.
"""

from .config import RelayConfig
from .deposit_aggregator import DepositAggregator
from .event_processor import EventProcessor
from .fleet import FleetCoordinator
from .ledger_writer import LedgerWriter
from .models import DepositAggregate, PaymentType, TransactionRecord
from .record_builder import RecordBuilder
from .subscription_manager import SubscriptionManager

__all__ = [
    "RelayConfig",
    "FleetCoordinator",
    "SubscriptionManager",
    "EventProcessor",
    "RecordBuilder",
    "LedgerWriter",
    "DepositAggregator",
    "TransactionRecord",
    "DepositAggregate",
    "PaymentType",
]
__version__ = "0.1.0"
