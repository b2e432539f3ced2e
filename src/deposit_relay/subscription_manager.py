"""
Per-chain subscription management.

A SubscriptionManager owns the live subscription to one chain's presale
contract and hands every delivered log to its EventProcessor.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Protocol

from .config import ChainConfig, MonitoringConfig
from .deposit_aggregator import DepositAggregator
from .event_processor import EventProcessor
from .ledger_writer import LedgerWriter
from .record_builder import RecordBuilder
from .utils.event_decoder import EventDecoder
from .utils.event_listener_utility import EventListenerUtility
from .utils.polling_event_listener import PollingEventListener

logger = logging.getLogger(__name__)


class ManagerState(Enum):
    """Lifecycle state of a subscription manager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LISTENING = "listening"
    STOPPED = "stopped"
    FAILED = "failed"


class LogTransport(Protocol):
    """What a manager needs from a chain transport."""

    async def connect(self) -> int: ...

    async def listen(self, callback: Any) -> None: ...

    async def stop(self) -> None: ...


class _PollingTransport:
    """Adapts PollingEventListener to the LogTransport interface."""

    def __init__(self, listener: PollingEventListener, interval: float) -> None:
        self.listener = listener
        self.interval = interval

    async def connect(self) -> int:
        return await self.listener.connect()

    async def listen(self, callback: Any) -> None:
        await self.listener.start_polling(callback=callback, interval=self.interval)

    async def stop(self) -> None:
        await self.listener.stop()


def build_transport(chain: ChainConfig, topics: list[str], monitoring: MonitoringConfig) -> LogTransport:
    """Pick a WebSocket subscription or HTTP polling from the RPC URL scheme."""
    if chain.uses_websocket:
        return EventListenerUtility(
            websocket_url=chain.rpc_url,
            contract_address=chain.contract_address,
            topics=topics,
            max_retries=monitoring.ws_max_retries
        )
    return _PollingTransport(
        PollingEventListener(
            rpc_url=chain.rpc_url,
            contract_address=chain.contract_address,
            topics=topics,
            request_timeout=monitoring.request_timeout
        ),
        interval=monitoring.polling_interval
    )


class SubscriptionManager:
    """
    Owns one (chain, contract) subscription.

    Each delivered log is processed in its own task, so a slow backend call
    for one event never delays delivery of the next.
    """

    def __init__(
        self,
        chain: ChainConfig,
        processor: EventProcessor,
        transport: LogTransport
    ) -> None:
        """
        Initialize the SubscriptionManager.

        Args:
            chain: Chain configuration
            processor: Processor for this chain's logs
            transport: Connection delivering the contract logs
        """
        self.chain = chain
        self.processor = processor
        self.transport = transport
        self.state = ManagerState.DISCONNECTED
        self.chain_id: int | None = None

        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def create(
        cls,
        chain: ChainConfig,
        monitoring: MonitoringConfig,
        builder: RecordBuilder,
        ledger: LedgerWriter,
        aggregator: DepositAggregator
    ) -> "SubscriptionManager":
        """Wire a manager with its decoder, processor and transport."""
        decoder = EventDecoder(chain.name)
        processor = EventProcessor(
            chain_name=chain.name,
            decoder=decoder,
            builder=builder,
            ledger=ledger,
            aggregator=aggregator,
            dedupe_window=monitoring.dedupe_window
        )
        transport = build_transport(chain, decoder.topics, monitoring)
        return cls(chain, processor, transport)

    async def start(self) -> None:
        """
        Connect to the chain.

        Raises:
            Exception: Any connection error; startup failures are fatal
        """
        self.state = ManagerState.CONNECTING
        logger.info(f"[{self.chain.name}] Connecting to {self.chain.rpc_url}")
        try:
            self.chain_id = await self.transport.connect()
        except Exception:
            self.state = ManagerState.FAILED
            raise
        logger.info(f"[{self.chain.name}] Connected (chain ID {self.chain_id})")

    async def run(self) -> None:
        """Listen for logs until stopped or the transport gives up."""
        self.state = ManagerState.LISTENING
        logger.info(f"[{self.chain.name}] Listening for events on {self.chain.contract_address}...")
        try:
            await self.transport.listen(self.dispatch)
        except asyncio.CancelledError:
            self.state = ManagerState.STOPPED
            raise
        except Exception:
            self.state = ManagerState.FAILED
            raise
        self.state = ManagerState.STOPPED

    async def dispatch(self, log: Any) -> None:
        """Schedule processing of one log without waiting for it."""
        task = asyncio.create_task(self.processor.handle_log(log))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def in_flight(self) -> int:
        """Number of logs still being processed."""
        return len(self._tasks)

    async def stop(self) -> None:
        """Stop receiving logs. In-flight events are not drained."""
        logger.info(f"[{self.chain.name}] Stopping subscription")
        await self.transport.stop()
        self.state = ManagerState.STOPPED

    def get_status(self) -> dict[str, Any]:
        """Current state and processing metrics."""
        return {
            "chain": self.chain.name,
            "state": self.state.value,
            "chain_id": self.chain_id,
            "in_flight": self.in_flight,
            **self.processor.get_metrics()
        }
