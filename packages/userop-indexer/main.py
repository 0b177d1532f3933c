#!/usr/bin/env python3
"""Entry point for the UserOperationEvent indexer service.

Backfills EntryPoint UserOperationEvents from START_BLOCK to the chain head,
then follows new blocks until the process is stopped or a fatal error occurs.
"""

import argparse
import asyncio
import logging
import os
import signal
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

from userop_indexer.config import IndexerConfig
from userop_indexer.indexer import UserOperationIndexer


async def run_indexer(indexer: UserOperationIndexer) -> None:
    """Run the indexer, cancelling it cleanly on SIGINT/SIGTERM."""
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)

    await indexer.run()


async def main() -> int:
    """Main entry point for the UserOperationEvent indexer.

    Parses startup arguments, loads configuration from the environment and
    runs the indexer until it stops or fails.

    Returns:
        Process exit code: 0 on clean shutdown, 1 on any failure
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="UserOperationEvent Indexer - Store EntryPoint events in a database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RPC_URL              - Node endpoint (ws/wss, or http/https converted to ws)
  DATABASE_URL         - SQLAlchemy database URL (PostgreSQL or SQLite)
  START_BLOCK          - First block to backfill from
  ENTRY_POINT_ADDRESS  - EntryPoint contract (default: v0.7 EntryPoint)
  BACKFILL_BATCH_SIZE  - Max blocks per historical query (default: 2000)
  REQUEST_TIMEOUT      - Node request timeout in seconds (default: 60)
  CONNECT_RETRIES      - Node connection attempts at startup (default: 5)
  LOG_LEVEL            - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to a .env file to load before reading the environment (default: .env)"
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

    logger.info("=== UserOperationEvent Indexer Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        config: IndexerConfig = IndexerConfig.from_env()
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - RPC_URL: Node endpoint")
        logger.error("  - DATABASE_URL: Database URL")
        logger.error("  - START_BLOCK: First block to backfill from")
        return 1

    logger.info("Configuration loaded successfully")

    try:
        indexer: UserOperationIndexer = UserOperationIndexer(config)
        await run_indexer(indexer)

    except asyncio.CancelledError:
        logger.info("Received interrupt signal, shut down gracefully")
        return 0

    except Exception as e:
        logger.error(f"Fatal Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
