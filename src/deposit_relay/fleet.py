"""
Fleet coordinator for the deposit relay.

This module contains the main service that starts one subscription manager
per configured chain and keeps them running for the process lifetime.
"""

import asyncio
import logging

from .config import RelayConfig
from .deposit_aggregator import DepositAggregator
from .ledger_writer import LedgerWriter
from .record_builder import RecordBuilder
from .subscription_manager import SubscriptionManager
from .utils.supabase_utility import SupabaseUtility

logger = logging.getLogger(__name__)


class FleetCoordinator:
    """
    Runs the subscription managers of all chains concurrently.

    This class focuses on coordination and lifecycle management; event
    handling lives in each manager's EventProcessor.
    """

    STATUS_LOG_INTERVAL = 60  # seconds
    PROBE_TABLE = LedgerWriter.TABLE

    def __init__(
        self,
        config: RelayConfig,
        backend: SupabaseUtility,
        managers: list[SubscriptionManager]
    ) -> None:
        """
        Initialize the FleetCoordinator.

        Args:
            config: Relay configuration
            backend: Shared Supabase client
            managers: One subscription manager per chain
        """
        self.config = config
        self.backend = backend
        self.managers = managers
        self.running = False

        # Async coordination
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_config(cls, config: RelayConfig) -> "FleetCoordinator":
        """
        Build the coordinator and its shared collaborators from configuration.

        The ledger writer and deposit aggregator are shared by every chain so
        that updates to one address are serialized across chains.
        """
        backend = SupabaseUtility(
            url=config.backend.url,
            api_key=config.backend.api_key,
            timeout=config.monitoring.request_timeout
        )
        builder = RecordBuilder(config.usdt_decimals_overrides)
        ledger = LedgerWriter(
            backend,
            retry_count=config.monitoring.retry_count,
            retry_delay=config.monitoring.retry_delay
        )
        aggregator = DepositAggregator(backend)

        managers = [
            SubscriptionManager.create(chain, config.monitoring, builder, ledger, aggregator)
            for chain in config.chains
        ]
        return cls(config, backend, managers)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            for manager in self.managers:
                status = manager.get_status()
                logger.info(
                    f"Status [{status['chain']}]: {status['state']}, "
                    f"{status['events_processed']} processed, "
                    f"{status['in_flight']} in flight, "
                    f"{status['ledger_failures']} ledger failures, "
                    f"{status['aggregate_failures']} aggregate failures"
                )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> None:
        """Raise the error of any chain task that has stopped."""
        for name, task in tasks.items():
            if task.done() and name != "status":
                if task.cancelled():
                    raise RuntimeError(f"{name} listener was cancelled")
                if (error := task.exception()) is not None:
                    logger.error(f"{name} listener failed: {error}", exc_info=error)
                    raise error
                raise RuntimeError(f"{name} listener stopped unexpectedly")

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop all managers and cancel their tasks."""
        for manager in self.managers:
            try:
                await manager.stop()
            except Exception as e:
                logger.warning(f"Error stopping {manager.chain.name}: {e}")

        for task in tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling
                except Exception as e:
                    logger.debug(f"Task ended with {e!r} during cleanup")

        await self.backend.close()

    async def start(self) -> None:
        """
        Probe the backend and connect every chain.

        The probe is informational only. A connection failure of any chain
        propagates and aborts startup.
        """
        await self.backend.probe(self.PROBE_TABLE)
        await asyncio.gather(*(manager.start() for manager in self.managers))
        logger.info("All event listeners are now active and listening in parallel...")

    async def run(self) -> None:
        """Main loop of the relay service."""
        self.running = True
        logger.info(f"Deposit relay starting for {len(self.managers)} chains...")

        tasks: dict[str, asyncio.Task] = {}
        try:
            await self.start()

            tasks = {
                manager.chain.name: asyncio.create_task(manager.run())
                for manager in self.managers
            }
            tasks["status"] = asyncio.create_task(self._periodic_status_logger())

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                await self._check_task_health(tasks)

        except Exception as e:
            logger.error(f"Error in main loop: {e}")
            raise
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            logger.info("Deposit relay stopped")

    def stop(self) -> None:
        """Request shutdown of the relay service."""
        self.running = False
        self.shutdown_event.set()
