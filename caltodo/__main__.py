"""Entry point for caltodo.

Creates (or upgrades to) the current database schema:
    python -m caltodo

Or as an installed command:
    caltodo
"""

import asyncio
import sys
from typing import Optional

from caltodo.logging_config import setup_logging, get_logger

# Initialize logger for this module
logger = get_logger(__name__)


async def _create_schema(database_url: str, echo: bool) -> None:
    from caltodo.database import DatabaseManager

    db_manager = DatabaseManager(database_url, echo=echo)
    try:
        await db_manager.initialize()
    finally:
        await db_manager.close()


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point for caltodo.

    Args:
        args: Command-line arguments (defaults to sys.argv). ``--console``
              mirrors the log to stderr.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    # Initialize logging before any other operations
    setup_logging(console="--console" in args)

    from caltodo.config import Config

    try:
        db_config = Config().get_database_config()
        asyncio.run(_create_schema(db_config["url"], db_config["echo"]))
        logger.info("Database schema is up to date")
        return 0
    except KeyboardInterrupt:
        logger.info("caltodo interrupted by user (Ctrl+C)")
        return 130
    except Exception:
        logger.error("Error creating database schema", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
