#!/usr/bin/env python3
"""Configuration management for the deposit relay.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_CHAINS: tuple[str, ...] = ("ETH", "BSC", "POLYGON")


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one source chain.

    Attributes:
        name: Chain name stored with every record (e.g. 'BSC')
        rpc_url: HTTP(S) or WS(S) RPC endpoint
        contract_address: Checksummed address of the presale contract
        usdt_decimals: USDT decimals override for this chain (None = default)
    """

    name: str
    rpc_url: str
    contract_address: str
    usdt_decimals: int | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.name:
            raise ValueError("Chain name is required")

        if not self.rpc_url:
            raise ValueError(f"RPC URL is required for {self.name} ({self.name}_RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
            raise ValueError(
                f"Invalid RPC URL scheme for {self.name}: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )

        if not self.contract_address:
            raise ValueError(
                f"Contract address is required for {self.name} ({self.name}_CONTRACT_ADDRESS)"
            )

        if not Web3.is_address(self.contract_address):
            raise ValueError(
                f"Invalid contract address for {self.name}: {self.contract_address}"
            )

        # Convert to checksum address
        checksummed = Web3.to_checksum_address(self.contract_address)
        if checksummed != self.contract_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'contract_address', checksummed)

        if self.usdt_decimals is not None and not 0 <= self.usdt_decimals <= 36:
            raise ValueError(
                f"USDT decimals for {self.name} must be between 0 and 36, got {self.usdt_decimals}"
            )

    @property
    def uses_websocket(self) -> bool:
        """Whether the endpoint supports push subscriptions."""
        return urlparse(self.rpc_url).scheme in ('ws', 'wss')


@dataclass(frozen=True, slots=True)
class BackendConfig:
    """Configuration for the Supabase backend.

    Attributes:
        url: Supabase project URL
        api_key: Anon or service-role key
    """

    url: str
    api_key: str = field(repr=False)

    def __post_init__(self) -> None:
        """Validate backend configuration."""
        if not self.url:
            raise ValueError("Supabase URL is required (SUPABASE_URL)")

        parsed = urlparse(self.url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError(f"Invalid Supabase URL: {self.url}")

        if not self.api_key:
            raise ValueError("Supabase key is required (SUPABASE_ANON_KEY)")


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for event monitoring and processing."""
    polling_interval: float = 4  # seconds between log polls on HTTP endpoints
    request_timeout: int = 30  # HTTP request timeout in seconds
    retry_count: int = 3  # ledger insert attempts per record
    retry_delay: float = 1.0  # seconds between ledger insert attempts
    dedupe_window: int = 10_000  # event occurrences remembered per chain
    ws_max_retries: int = 5  # consecutive WebSocket reconnection attempts

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.polling_interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval}")
        if self.polling_interval > 300:
            raise ValueError(f"Polling interval too long (max 300s), got {self.polling_interval}")

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")

        if self.retry_count < 1:
            raise ValueError(f"Retry count must be at least 1, got {self.retry_count}")
        if self.retry_count > 10:
            raise ValueError(f"Retry count too high (max 10), got {self.retry_count}")

        if self.retry_delay < 0:
            raise ValueError(f"Retry delay must be non-negative, got {self.retry_delay}")

        if self.dedupe_window <= 0:
            raise ValueError(f"Dedupe window must be positive, got {self.dedupe_window}")

        if self.ws_max_retries < 0:
            raise ValueError(f"WebSocket retries must be non-negative, got {self.ws_max_retries}")


@dataclass(frozen=True, slots=True)
class RelayConfig:
    """Main configuration for the deposit relay.

    Attributes:
        chains: Source chains to subscribe to
        backend: Supabase connection settings
        monitoring: Settings for monitoring and event processing
    """

    chains: tuple[ChainConfig, ...]
    backend: BackendConfig
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def __post_init__(self) -> None:
        """Validate relay configuration."""
        if not self.chains:
            raise ValueError("At least one chain must be configured (CHAINS)")

        names = [chain.name for chain in self.chains]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate chain names in configuration: {', '.join(names)}")

    @property
    def usdt_decimals_overrides(self) -> dict[str, int]:
        """Per-chain USDT decimals configured explicitly."""
        return {
            chain.name: chain.usdt_decimals
            for chain in self.chains
            if chain.usdt_decimals is not None
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RelayConfig":
        """Load configuration from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            RelayConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        env = os.environ if environ is None else environ

        chain_names = [
            name.strip().upper()
            for name in env.get("CHAINS", ",".join(DEFAULT_CHAINS)).split(",")
            if name.strip()
        ]

        chains = []
        for name in chain_names:
            usdt_decimals = env.get(f"{name}_USDT_DECIMALS")
            chains.append(ChainConfig(
                name=name,
                rpc_url=env.get(f"{name}_RPC_URL", ""),
                contract_address=env.get(f"{name}_CONTRACT_ADDRESS", ""),
                usdt_decimals=_parse_int(f"{name}_USDT_DECIMALS", usdt_decimals) if usdt_decimals else None
            ))

        backend = BackendConfig(
            url=env.get("SUPABASE_URL", ""),
            api_key=env.get("SUPABASE_ANON_KEY", "")
        )

        monitoring = MonitoringConfig(
            polling_interval=_parse_float("POLLING_INTERVAL", env.get("POLLING_INTERVAL", "4")),
            request_timeout=_parse_int("REQUEST_TIMEOUT", env.get("REQUEST_TIMEOUT", "30")),
            retry_count=_parse_int("RETRY_COUNT", env.get("RETRY_COUNT", "3")),
            retry_delay=_parse_float("RETRY_DELAY", env.get("RETRY_DELAY", "1.0")),
            dedupe_window=_parse_int("DEDUPE_WINDOW", env.get("DEDUPE_WINDOW", "10000")),
            ws_max_retries=_parse_int("WS_MAX_RETRIES", env.get("WS_MAX_RETRIES", "5"))
        )

        return cls(chains=tuple(chains), backend=backend, monitoring=monitoring)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Deposit Relay Configuration")
        logger.info("=" * 60)

        for chain in self.chains:
            logger.info(f"Chain {chain.name}:")
            logger.info(f"  RPC URL: {chain.rpc_url}")
            logger.info(f"  Transport: {'websocket' if chain.uses_websocket else 'polling'}")
            logger.info(f"  Contract: {chain.contract_address}")
            if chain.usdt_decimals is not None:
                logger.info(f"  USDT Decimals: {chain.usdt_decimals}")

        logger.info("Backend:")
        logger.info(f"  Supabase URL: {self.backend.url}")
        logger.info("  Key: [CONFIGURED]")

        logger.info("Monitoring Settings:")
        logger.info(f"  Polling Interval: {self.monitoring.polling_interval} seconds")
        logger.info(f"  Request Timeout: {self.monitoring.request_timeout} seconds")
        logger.info(f"  Ledger Retries: {self.monitoring.retry_count} x {self.monitoring.retry_delay}s")
        logger.info(f"  Dedupe Window: {self.monitoring.dedupe_window}")

        logger.info("=" * 60)


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None
