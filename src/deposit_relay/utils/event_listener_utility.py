"""
Event Listener Utility for real-time blockchain event monitoring.

Provides WebSocket-based log subscriptions with automatic reconnection.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.exceptions import ProviderConnectionError
from web3.providers import WebSocketProvider
from web3.utils.subscriptions import LogsSubscription, LogsSubscriptionContext
from websockets.exceptions import ConnectionClosed

# Errors after which the connection is re-established
RECONNECT_ERRORS = (ConnectionError, OSError, ProviderConnectionError, ConnectionClosed)


class ConnectionState(Enum):
    """Connection state for event listener."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class EventListenerUtility:
    """
    Utility for listening to contract logs via WebSocket.

    Features:
    - One eth_subscribe logs subscription covering all configured topics
    - Automatic reconnection with exponential backoff
    - Connection state tracking
    """

    def __init__(
        self,
        websocket_url: str,
        contract_address: str,
        topics: list[str],
        max_retries: int = 5,
        request_timeout: int = 60
    ) -> None:
        """
        Initialize the EventListenerUtility.

        Args:
            websocket_url: WebSocket RPC endpoint URL
            contract_address: Address of the contract to subscribe to
            topics: Topic0 values of the events to receive
            max_retries: Consecutive reconnection attempts before giving up
            request_timeout: RPC request timeout in seconds
        """
        self.websocket_url = websocket_url
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.topics = topics
        self.max_retries = max_retries
        self.request_timeout = request_timeout

        # Connection state
        self.connection_state = ConnectionState.DISCONNECTED
        self.async_w3: AsyncWeb3 | None = None

        # Event processing
        self.event_callback: Callable[[Any], Awaitable[Any]] | None = None
        self.is_running = False
        self.logs_since_connect = 0

        # Retry configuration
        self.base_delay = 1
        self.max_delay = 60

        # Setup logging
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def backoff_delay(self, retry_count: int) -> int:
        """Seconds to wait before reconnection attempt ``retry_count``."""
        return min(self.base_delay * (2 ** (retry_count - 1)), self.max_delay)

    async def connect(self) -> int:
        """
        Open the WebSocket connection.

        Returns:
            The chain ID of the endpoint

        Raises:
            ConnectionError: If the connection cannot be established
        """
        self.connection_state = ConnectionState.CONNECTING
        self.logger.info(f"Connecting to WebSocket: {self.websocket_url}")
        try:
            w3 = AsyncWeb3(
                WebSocketProvider(
                    self.websocket_url,
                    request_timeout=self.request_timeout,
                    subscription_response_queue_size=10000,
                )
            )
            await w3.provider.connect()
            chain_id = await w3.eth.chain_id
        except RECONNECT_ERRORS as e:
            self.connection_state = ConnectionState.DISCONNECTED
            raise ConnectionError(f"Failed to connect to {self.websocket_url}: {e}") from e

        self.async_w3 = w3
        self.connection_state = ConnectionState.CONNECTED
        self.logger.info(f"WebSocket connected to chain {chain_id}")
        return chain_id

    async def listen(self, callback: Callable[[Any], Awaitable[Any]]) -> None:
        """
        Subscribe to the contract logs and handle them until stopped.

        Reconnects after connection failures, and after a subscription that
        ends while still running. Gives up after ``max_retries`` consecutive
        attempts without a delivered log and re-raises the last error.

        Args:
            callback: Async function to call with each log receipt
        """
        self.event_callback = callback
        self.is_running = True
        retry_count = 0

        while self.is_running:
            try:
                if self.async_w3 is None:
                    await self.connect()
                await self._subscribe_and_handle()
                if not self.is_running:
                    break
                raise ConnectionError("Subscription ended unexpectedly")

            except RECONNECT_ERRORS as e:
                await self._disconnect()
                if not self.is_running:
                    break
                # Only a subscription that delivered logs counts as recovered
                if self.logs_since_connect:
                    retry_count = 0
                    self.logs_since_connect = 0
                retry_count += 1
                if retry_count > self.max_retries:
                    self.logger.error("Max WebSocket retries reached")
                    self.connection_state = ConnectionState.FAILED
                    raise

                delay = self.backoff_delay(retry_count)
                self.logger.warning(
                    f"WebSocket connection failed (attempt {retry_count}/{self.max_retries}): {e}"
                )
                self.logger.info(f"Retrying in {delay} seconds...")
                self.connection_state = ConnectionState.RECONNECTING
                await asyncio.sleep(delay)

    async def _subscribe_and_handle(self) -> None:
        """Register the logs subscription and process messages."""
        w3 = self.async_w3
        logs_subscription = LogsSubscription(
            label=f"presale-logs-{self.contract_address}",
            address=self.contract_address,
            topics=[self.topics],
            handler=self._log_handler,
        )

        self.logger.info(f"Subscribing to {len(self.topics)} events on {self.contract_address}")
        await w3.subscription_manager.subscribe([logs_subscription])
        await w3.subscription_manager.handle_subscriptions()

    async def _log_handler(self, handler_context: LogsSubscriptionContext) -> None:
        """
        Handler for LogsSubscription results.

        Args:
            handler_context: Context containing the log receipt
        """
        self.logs_since_connect += 1
        try:
            if self.event_callback:
                await self.event_callback(handler_context.result)
        except Exception as e:
            self.logger.error(f"Error processing subscription event: {e}", exc_info=True)

    async def _disconnect(self) -> None:
        w3, self.async_w3 = self.async_w3, None
        if w3 is not None:
            try:
                await w3.provider.disconnect()
            except Exception as e:
                self.logger.warning(f"Error during disconnect: {e}")
        self.connection_state = ConnectionState.DISCONNECTED

    async def stop(self) -> None:
        """Stop listening and close the connection."""
        self.logger.info("Stopping event listener...")
        self.is_running = False
        await self._disconnect()
