"""
Decoding of presale contract logs into typed event variants.

Logs are decoded at the transport boundary so the rest of the relay only
ever sees ``BoughtWithNative``, ``BoughtWithUSDT`` or ``ClaimHistory``.
"""

import logging
from collections.abc import Mapping
from typing import Any

from web3 import Web3
from web3.types import EventData, HexBytes

from ..errors import EventDecodeError
from ..models import (
    BoughtWithNative,
    BoughtWithUSDT,
    ClaimHistory,
    EventMeta,
    EventName,
    PresaleEvent,
)

logger = logging.getLogger(__name__)


def _event_abi(name: str, inputs: list[tuple[str, str]]) -> dict[str, Any]:
    return {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": kind, "name": arg, "type": kind}
            for arg, kind in inputs
        ],
        "name": name,
        "type": "event"
    }


PRESALE_EVENTS_ABI: list[dict[str, Any]] = [
    _event_abi(
        EventName.BOUGHT_WITH_NATIVE.value,
        [("user", "address"), ("tokenDeposit", "uint256"), ("amount", "uint256"), ("timestamp", "uint256")]
    ),
    _event_abi(
        EventName.BOUGHT_WITH_USDT.value,
        [("user", "address"), ("tokenDeposit", "uint256"), ("amount", "uint256"), ("timestamp", "uint256")]
    ),
    _event_abi(
        EventName.CLAIM_HISTORY.value,
        [("_user", "address"), ("_amount", "uint256"), ("_timestamp", "uint256")]
    ),
]


def event_signature(event_abi: Mapping[str, Any]) -> str:
    """Canonical signature, e.g. ``claimHistory(address,uint256,uint256)``."""
    types = ",".join(arg["type"] for arg in event_abi["inputs"])
    return f"{event_abi['name']}({types})"


def event_topic(event_abi: Mapping[str, Any]) -> str:
    """Topic0 (keccak of the signature) as a 0x-prefixed hex string."""
    return Web3.to_hex(Web3.keccak(text=event_signature(event_abi)))


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value or 0)


def _as_bytes(value: Any) -> HexBytes:
    return HexBytes(value or b"")


def normalize_log(log: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce a raw log receipt into the shape web3's decoder expects.

    Logs from ``eth_getLogs`` are already formatted, but raw subscription
    payloads may carry hex strings for numbers, topics and data.
    """
    return {
        "address": log.get("address"),
        "blockHash": _as_bytes(log.get("blockHash")),
        "blockNumber": _as_int(log.get("blockNumber")),
        "data": _as_bytes(log.get("data")),
        "logIndex": _as_int(log.get("logIndex")),
        "topics": [_as_bytes(topic) for topic in log.get("topics") or []],
        "transactionHash": _as_bytes(log.get("transactionHash")),
        "transactionIndex": _as_int(log.get("transactionIndex")),
    }


class EventDecoder:
    """Decodes presale contract logs for one chain."""

    def __init__(self, chain_name: str, abi: list[dict[str, Any]] | None = None) -> None:
        """
        Args:
            chain_name: Name stamped on every decoded event
            abi: Event ABI (defaults to the three presale events)
        """
        self.chain_name = chain_name
        self.abi = abi or PRESALE_EVENTS_ABI

        # No provider needed: the factory is only used for ABI decoding
        self._contract = Web3().eth.contract(abi=self.abi)
        self._events_by_topic: dict[bytes, Any] = {
            bytes(HexBytes(event_topic(entry))): getattr(self._contract.events, entry["name"])()
            for entry in self.abi
            if entry.get("type") == "event"
        }

    @property
    def topics(self) -> list[str]:
        """Topic0 values of all decodable events."""
        return [Web3.to_hex(topic) for topic in self._events_by_topic]

    def decode(self, log: Mapping[str, Any]) -> PresaleEvent:
        """
        Decode one log into an event variant.

        Args:
            log: Log receipt from eth_getLogs or a logs subscription

        Returns:
            The typed event

        Raises:
            EventDecodeError: If the topic is unknown or the payload is malformed
        """
        try:
            normalized = normalize_log(log)
        except (TypeError, ValueError) as e:
            raise EventDecodeError(f"Malformed log: {e}") from e

        topics = normalized["topics"]
        if not topics:
            raise EventDecodeError("Log has no topics")

        event_obj = self._events_by_topic.get(bytes(topics[0]))
        if event_obj is None:
            raise EventDecodeError(f"Unknown event topic {Web3.to_hex(topics[0])}")

        try:
            event_data: EventData = event_obj.process_log(normalized)
        except Exception as e:
            raise EventDecodeError(f"Failed to decode {event_obj.event_name}: {e}") from e

        return self._to_variant(event_data)

    def _to_variant(self, event_data: EventData) -> PresaleEvent:
        args = event_data["args"]
        meta = EventMeta(
            chain_name=self.chain_name,
            transaction_hash=Web3.to_hex(event_data["transactionHash"]),
            block_number=int(event_data["blockNumber"]),
            log_index=int(event_data["logIndex"])
        )

        match event_data["event"]:
            case EventName.BOUGHT_WITH_NATIVE.value:
                return BoughtWithNative(
                    user=args["user"],
                    token_deposit=int(args["tokenDeposit"]),
                    amount=int(args["amount"]),
                    timestamp=int(args["timestamp"]),
                    meta=meta
                )
            case EventName.BOUGHT_WITH_USDT.value:
                return BoughtWithUSDT(
                    user=args["user"],
                    token_deposit=int(args["tokenDeposit"]),
                    amount=int(args["amount"]),
                    timestamp=int(args["timestamp"]),
                    meta=meta
                )
            case EventName.CLAIM_HISTORY.value:
                return ClaimHistory(
                    user=args["_user"],
                    amount=int(args["_amount"]),
                    timestamp=int(args["_timestamp"]),
                    meta=meta
                )
            case other:
                raise EventDecodeError(f"Unsupported event {other}")
