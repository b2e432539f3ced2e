#!/usr/bin/env python3
"""Tests for decoding presale contract logs."""

import pytest
from web3 import Web3
from web3.types import HexBytes

from conftest import CONTRACT, ONE, USER, make_log
from deposit_relay.errors import EventDecodeError
from deposit_relay.models import BoughtWithNative, BoughtWithUSDT, ClaimHistory, EventName
from deposit_relay.utils.event_decoder import (
    PRESALE_EVENTS_ABI,
    EventDecoder,
    event_signature,
    normalize_log,
)


class TestEventSignatures:
    """Tests for the event ABI helpers."""

    def test_signatures(self):
        assert [event_signature(entry) for entry in PRESALE_EVENTS_ABI] == [
            "BoughtWithNative(address,uint256,uint256,uint256)",
            "BoughtWithUSDT(address,uint256,uint256,uint256)",
            "claimHistory(address,uint256,uint256)",
        ]

    def test_topics(self):
        decoder = EventDecoder("ETH")
        expected = Web3.to_hex(Web3.keccak(text="claimHistory(address,uint256,uint256)"))
        assert len(decoder.topics) == 3
        assert expected in decoder.topics


class TestEventDecoder:
    """Tests for EventDecoder.decode."""

    def test_decode_native_purchase(self):
        log = make_log(
            "BoughtWithNative", [USER, 2 * ONE, 5 * ONE, 1_700_000_000],
            tx_hash="0x" + "01" * 32, block_number=123, log_index=4
        )

        event = EventDecoder("BSC").decode(log)

        assert isinstance(event, BoughtWithNative)
        assert event.user.lower() == USER
        assert event.token_deposit == 2 * ONE
        assert event.amount == 5 * ONE
        assert event.timestamp == 1_700_000_000
        assert event.meta.chain_name == "BSC"
        assert event.meta.transaction_hash == "0x" + "01" * 32
        assert event.meta.block_number == 123
        assert event.meta.log_index == 4

    def test_decode_usdt_purchase(self):
        log = make_log("BoughtWithUSDT", [USER, 1_500_000, 3 * ONE, 1_700_000_000])

        event = EventDecoder("ETH").decode(log)

        assert isinstance(event, BoughtWithUSDT)
        assert event.event_name is EventName.BOUGHT_WITH_USDT
        assert event.token_deposit == 1_500_000

    def test_decode_claim(self):
        log = make_log("claimHistory", [USER, 7 * ONE, 1_700_000_000])

        event = EventDecoder("POLYGON").decode(log)

        assert isinstance(event, ClaimHistory)
        assert event.user.lower() == USER
        assert event.amount == 7 * ONE
        assert event.timestamp == 1_700_000_000

    def test_decode_raw_subscription_payload(self):
        """Hex-string fields from a raw subscription are accepted."""
        log = make_log("claimHistory", [USER, ONE, 1_700_000_000], block_number=100, log_index=2)
        raw = {
            **log,
            "blockHash": Web3.to_hex(log["blockHash"]),
            "blockNumber": hex(100),
            "data": Web3.to_hex(log["data"]),
            "logIndex": "0x2",
            "topics": [Web3.to_hex(topic) for topic in log["topics"]],
            "transactionHash": Web3.to_hex(log["transactionHash"]),
            "transactionIndex": "0x0",
        }

        event = EventDecoder("ETH").decode(raw)

        assert event.meta.block_number == 100
        assert event.meta.log_index == 2
        assert event.amount == ONE

    def test_unknown_topic(self):
        log = make_log("claimHistory", [USER, ONE, 0])
        log["topics"] = [HexBytes(Web3.keccak(text="Transfer(address,address,uint256)"))]

        with pytest.raises(EventDecodeError, match="Unknown event topic"):
            EventDecoder("ETH").decode(log)

    def test_log_without_topics(self):
        log = make_log("claimHistory", [USER, ONE, 0])
        log["topics"] = []

        with pytest.raises(EventDecodeError, match="no topics"):
            EventDecoder("ETH").decode(log)

    def test_truncated_data(self):
        log = make_log("BoughtWithNative", [USER, ONE, ONE, 0])
        log["data"] = HexBytes(bytes(log["data"])[:40])

        with pytest.raises(EventDecodeError, match="Failed to decode"):
            EventDecoder("ETH").decode(log)

    def test_malformed_number(self):
        log = make_log("claimHistory", [USER, ONE, 0])
        log["blockNumber"] = "not-a-number"

        with pytest.raises(EventDecodeError, match="Malformed log"):
            EventDecoder("ETH").decode(log)


def test_normalize_log_fills_missing_fields():
    normalized = normalize_log({"address": CONTRACT, "topics": ["0x" + "00" * 32]})

    assert normalized["blockNumber"] == 0
    assert normalized["logIndex"] == 0
    assert normalized["data"] == HexBytes(b"")
    assert normalized["topics"] == [HexBytes("0x" + "00" * 32)]
