"""
Polling-based event listener utility for blockchain event monitoring.

"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.providers import AsyncHTTPProvider
from web3.types import LogReceipt

LogCallback = Callable[[LogReceipt], Awaitable[Any]]


class PollingEventListener:
    """
    Utility for polling contract logs via HTTP RPC.

    Listening starts at the chain head observed on connect; earlier blocks
    are never scanned.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        topics: list[str],
        request_timeout: int = 30,
        w3: AsyncWeb3 | None = None
    ):
        """
        Initialize the polling event listener.

        Args:
            rpc_url: HTTP RPC endpoint URL
            contract_address: Address of the contract to monitor
            topics: Topic0 values of the events to fetch
            request_timeout: HTTP request timeout in seconds
            w3: Optional preconfigured AsyncWeb3 instance (used by tests)
        """
        self.rpc_url = rpc_url
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.topics = topics

        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )

        # State tracking
        self.last_processed_block: int | None = None
        self.is_running = False

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    async def connect(self) -> int:
        """
        Check the RPC endpoint and record the current head block.

        Returns:
            The chain ID of the endpoint

        Raises:
            ConnectionError: If the endpoint is unreachable
        """
        if not await self.w3.is_connected():
            raise ConnectionError(f"Failed to connect to RPC at {self.rpc_url}")

        chain_id = await self.w3.eth.chain_id
        self.last_processed_block = await self.w3.eth.block_number
        self.logger.info(
            f"Connected to chain {chain_id}, starting at block {self.last_processed_block}"
        )
        return chain_id

    async def poll_for_events(self, callback: LogCallback) -> None:
        """
        Poll for new logs since last processed block.

        Args:
            callback: Async function to call for each new log
        """
        try:
            current_block = await self.w3.eth.block_number

            if self.last_processed_block is None:
                self.last_processed_block = current_block
                return

            # Skip if no new blocks
            if current_block <= self.last_processed_block:
                return

            from_block = self.last_processed_block + 1

            logs = await self.w3.eth.get_logs({
                "address": self.contract_address,
                "fromBlock": from_block,
                "toBlock": current_block,
                "topics": [self.topics]
            })

            if logs:
                self.logger.info(
                    f"Found {len(logs)} new logs in blocks {from_block}-{current_block}"
                )
                for log in logs:
                    await callback(log)

            # Update last processed block
            self.last_processed_block = current_block

        except Exception as e:
            self.logger.error(f"Error polling for events: {e}")
            # Don't update last_processed_block on error

    async def start_polling(self, callback: LogCallback, interval: float = 4) -> None:
        """
        Start polling for logs at the specified interval.

        Args:
            callback: Async function to call when logs are received
            interval: Polling interval in seconds
        """
        if self.is_running:
            self.logger.warning("Polling already running")
            return

        self.is_running = True
        self.logger.info(
            f"Starting polling for {len(self.topics)} events "
            f"on {self.contract_address} every {interval} seconds"
        )

        # Main polling loop
        while self.is_running:
            try:
                await asyncio.sleep(interval)
                await self.poll_for_events(callback)
            except asyncio.CancelledError:
                self.logger.info("Polling cancelled")
                break

    async def stop(self) -> None:
        """Stop the polling loop."""
        self.logger.info(f"Stopping polling on {self.contract_address}")
        self.is_running = False

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the polling listener.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "last_processed_block": self.last_processed_block,
            "contract_address": self.contract_address,
            "rpc_url": self.rpc_url
        }
