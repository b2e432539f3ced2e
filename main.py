#!/usr/bin/env python3
"""Entry point for the multi-chain deposit relay service.

Loads configuration from the environment (and an optional .env file),
then subscribes to the presale contract on every configured chain.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from deposit_relay.config import RelayConfig
from deposit_relay.fleet import FleetCoordinator


async def main() -> None:
    """Main entry point for the deposit relay.

    Raises:
        SystemExit: On configuration or startup errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Deposit Relay - record presale purchases and claims from several chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  CHAINS                   - Comma-separated chain names (default: ETH,BSC,POLYGON)
  <CHAIN>_RPC_URL          - RPC endpoint per chain (http(s) polls, ws(s) subscribes)
  <CHAIN>_CONTRACT_ADDRESS - Presale contract address per chain
  <CHAIN>_USDT_DECIMALS    - Optional USDT decimals override per chain
  SUPABASE_URL             - Supabase project URL
  SUPABASE_ANON_KEY        - Supabase API key
  POLLING_INTERVAL         - Log polling interval for http endpoints (default: 4)
  RETRY_COUNT              - Ledger insert attempts (default: 3)
  RETRY_DELAY              - Seconds between ledger attempts (default: 1.0)
  LOG_LEVEL                - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path of a .env file to load (default: .env)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: LOG_LEVEL or INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    load_dotenv(args.env_file)
    setup_logging(args.log_level or os.environ.get("LOG_LEVEL", "INFO"))

    logger.info("=== Deposit Relay Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        config: RelayConfig = RelayConfig.from_env()
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables (see --help)")
        sys.exit(1)
    config.log_config()

    coordinator: FleetCoordinator | None = None
    try:
        coordinator = FleetCoordinator.from_config(config)
        await coordinator.run()

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
        if coordinator is not None:
            coordinator.stop()
        sys.exit(0)

    except Exception as e:
        logger.error(f"Error starting event listeners: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)
