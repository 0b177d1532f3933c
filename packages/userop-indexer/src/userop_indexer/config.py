#!/usr/bin/env python3
"""Configuration management for the UserOperationEvent indexer.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from dataclasses import dataclass
from typing import ClassVar
from urllib.parse import urlparse

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from web3 import Web3

from .decoder import ENTRY_POINT_V07_ADDRESS

# Get logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the source blockchain.

    Attributes:
        rpc_url: Node endpoint; http(s) URLs are converted to ws(s) on connect
        entry_point_address: Checksummed address of the EntryPoint contract
    """

    rpc_url: str
    entry_point_address: str = ENTRY_POINT_V07_ADDRESS

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http, https, ws, or wss"
            )

        if not self.entry_point_address:
            raise ValueError("EntryPoint address is required (ENTRY_POINT_ADDRESS)")

        if not Web3.is_address(self.entry_point_address):
            raise ValueError(
                f"Invalid EntryPoint address: {self.entry_point_address}"
            )

        checksummed = Web3.to_checksum_address(self.entry_point_address)
        if checksummed != self.entry_point_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'entry_point_address', checksummed)


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Configuration for the event store.

    Attributes:
        url: SQLAlchemy database URL (PostgreSQL or SQLite)
    """

    url: str

    SUPPORTED_BACKENDS: ClassVar[set[str]] = {'postgresql', 'sqlite'}

    def __post_init__(self) -> None:
        """Validate database configuration."""
        if not self.url:
            raise ValueError("Database URL is required (DATABASE_URL)")

        url = self.url
        # Plain postgres URLs (as used by libpq tools) go through psycopg 3
        if url.startswith("postgres://"):
            url = "postgresql+psycopg://" + url[len("postgres://"):]
        elif url.startswith("postgresql://"):
            url = "postgresql+psycopg://" + url[len("postgresql://"):]

        try:
            backend = make_url(url).get_backend_name()
        except ArgumentError as e:
            raise ValueError(f"Invalid database URL: {e}") from None

        if backend not in self.SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported database backend: {backend}. "
                f"Supported backends: {', '.join(sorted(self.SUPPORTED_BACKENDS))}"
            )

        if url != self.url:
            object.__setattr__(self, 'url', url)

    @property
    def safe_url(self) -> str:
        """Database URL with the password masked, for logging."""
        return make_url(self.url).render_as_string(hide_password=True)


@dataclass(frozen=True, slots=True)
class IngestionConfig:
    """Configuration for backfill and live ingestion."""
    start_block: int
    backfill_batch_size: int = 2000  # max blocks per eth_getLogs call
    request_timeout: int = 60  # websocket request timeout in seconds
    connect_retries: int = 5  # connection attempts at startup

    def __post_init__(self) -> None:
        """Validate ingestion configuration."""
        if self.start_block < 0:
            raise ValueError(f"Start block must be non-negative, got {self.start_block}")

        if self.backfill_batch_size <= 0:
            raise ValueError(
                f"Backfill batch size must be positive, got {self.backfill_batch_size}"
            )
        if self.backfill_batch_size > 100_000:
            raise ValueError(
                f"Backfill batch size too high (max 100000), got {self.backfill_batch_size}"
            )

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 300:
            raise ValueError(f"Request timeout too long (max 300s), got {self.request_timeout}")

        if self.connect_retries < 1:
            raise ValueError(f"Connect retries must be at least 1, got {self.connect_retries}")


def _int_from_env(name: str, default: str | None = None) -> int:
    raw = os.environ.get(name, default)
    if raw is None or raw == "":
        raise ValueError(f"{name} environment variable is required")
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class IndexerConfig:
    """Main configuration for the indexer.

    Attributes:
        chain: Node and contract settings
        database: Event store settings
        ingestion: Backfill and live ingestion settings
    """

    chain: ChainConfig
    database: DatabaseConfig
    ingestion: IngestionConfig

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Load configuration from environment variables.

        Returns:
            IndexerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("RPC_URL", "")
        if not rpc_url:
            raise ValueError(
                "RPC_URL environment variable is required. "
                "This should be a WebSocket (or HTTP) endpoint of an Ethereum node."
            )

        chain_config = ChainConfig(
            rpc_url=rpc_url,
            entry_point_address=os.environ.get("ENTRY_POINT_ADDRESS", ENTRY_POINT_V07_ADDRESS),
        )

        database_url = os.environ.get("DATABASE_URL", "")
        if not database_url:
            raise ValueError(
                "DATABASE_URL environment variable is required. "
                "This should be a PostgreSQL or SQLite SQLAlchemy URL."
            )

        database_config = DatabaseConfig(url=database_url)

        ingestion_config = IngestionConfig(
            start_block=_int_from_env("START_BLOCK"),
            backfill_batch_size=_int_from_env("BACKFILL_BATCH_SIZE", "2000"),
            request_timeout=_int_from_env("REQUEST_TIMEOUT", "60"),
            connect_retries=_int_from_env("CONNECT_RETRIES", "5"),
        )

        return cls(
            chain=chain_config,
            database=database_config,
            ingestion=ingestion_config,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("UserOperationEvent Indexer Configuration")
        logger.info("=" * 60)

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  EntryPoint: {self.chain.entry_point_address}")

        logger.info("Database:")
        logger.info(f"  URL: {self.database.safe_url}")

        logger.info("Ingestion Settings:")
        logger.info(f"  Start Block: {self.ingestion.start_block}")
        logger.info(f"  Backfill Batch Size: {self.ingestion.backfill_batch_size} blocks")
        logger.info(f"  Request Timeout: {self.ingestion.request_timeout} seconds")
        logger.info(f"  Connect Retries: {self.ingestion.connect_retries}")

        logger.info("=" * 60)
