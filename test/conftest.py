"""Shared fixtures and fakes for the deposit relay tests."""

import asyncio
from collections import defaultdict
from typing import Any

import pytest
from eth_abi import encode
from web3.types import HexBytes

from deposit_relay.config import ChainConfig, MonitoringConfig
from deposit_relay.deposit_aggregator import DepositAggregator
from deposit_relay.errors import BackendError
from deposit_relay.ledger_writer import LedgerWriter
from deposit_relay.record_builder import RecordBuilder
from deposit_relay.subscription_manager import SubscriptionManager
from deposit_relay.utils.event_decoder import PRESALE_EVENTS_ABI, event_topic

USER = "0xabcdef0123456789abcdef0123456789abcdef01"
CONTRACT = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"
ONE = 10 ** 18


class FakeBackend:
    """In-memory stand-in for SupabaseUtility.

    Every call yields to the event loop once before touching the data, like
    a network round trip would.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.insert_failures = 0
        self.select_failures = 0
        self.upsert_failures = 0
        self.insert_attempts = 0
        self.probe_ok = True
        self.closed = False

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        await asyncio.sleep(0)
        self.insert_attempts += 1
        if self.insert_failures:
            self.insert_failures -= 1
            raise BackendError("connection reset", 503)
        self.tables[table].extend(dict(row) for row in rows)

    async def select_one(self, table: str, filters: dict[str, Any], columns: str = "*") -> dict[str, Any] | None:
        await asyncio.sleep(0)
        if self.select_failures:
            self.select_failures -= 1
            raise BackendError("timeout")
        for row in self.tables[table]:
            if all(row.get(column) == value for column, value in filters.items()):
                return dict(row)
        return None

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> None:
        await asyncio.sleep(0)
        if self.upsert_failures:
            self.upsert_failures -= 1
            raise BackendError("upstream unavailable", 502)
        rows = self.tables[table]
        for index, existing in enumerate(rows):
            if existing[on_conflict] == row[on_conflict]:
                rows[index] = {**existing, **row}
                return
        rows.append(dict(row))

    async def probe(self, table: str) -> bool:
        return self.probe_ok

    async def close(self) -> None:
        self.closed = True


def _abi(name: str) -> dict[str, Any]:
    return next(entry for entry in PRESALE_EVENTS_ABI if entry["name"] == name)


def make_log(
    event_name: str,
    values: list[Any],
    tx_hash: str = "0x" + "ab" * 32,
    block_number: int = 100,
    log_index: int = 0
) -> dict[str, Any]:
    """Build a formatted log receipt as returned by eth_getLogs."""
    event_abi = _abi(event_name)
    types = [arg["type"] for arg in event_abi["inputs"]]
    return {
        "address": CONTRACT,
        "blockHash": HexBytes("0x" + "11" * 32),
        "blockNumber": block_number,
        "data": HexBytes(encode(types, values)),
        "logIndex": log_index,
        "topics": [HexBytes(event_topic(event_abi))],
        "transactionHash": HexBytes(tx_hash),
        "transactionIndex": 0,
    }


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


class FakeTransport:
    """Delivers a fixed list of logs, then returns, raises or blocks."""

    def __init__(self, logs=(), chain_id: int = 1, connect_error=None, listen_error=None, block=False):
        self.logs = list(logs)
        self.chain_id = chain_id
        self.connect_error = connect_error
        self.listen_error = listen_error
        self.block = block
        self.stopped = False

    async def connect(self) -> int:
        if self.connect_error:
            raise self.connect_error
        return self.chain_id

    async def listen(self, callback) -> None:
        for log in self.logs:
            await callback(log)
        if self.listen_error:
            raise self.listen_error
        if self.block:
            await asyncio.Event().wait()

    async def stop(self) -> None:
        self.stopped = True


def make_manager(backend: FakeBackend, transport: FakeTransport, name: str = "ETH") -> SubscriptionManager:
    """Subscription manager wired to a fake backend and transport."""
    manager = SubscriptionManager.create(
        ChainConfig(name=name, rpc_url="https://rpc.example", contract_address=CONTRACT),
        MonitoringConfig(),
        RecordBuilder(),
        LedgerWriter(backend, retry_delay=0),
        DepositAggregator(backend)
    )
    manager.transport = transport
    return manager
