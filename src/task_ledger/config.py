"""
Runtime configuration and logging setup.

Settings come from environment variables so the API server, the CLI and tests
can point at different database files without code changes.
"""

import logging
import os
from dataclasses import dataclass


DEFAULT_DB_PATH = "task_ledger.db"
DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGE_SIZE = 200

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class LedgerSettings:
    """Resolved settings for one process."""

    database_path: str = DEFAULT_DB_PATH
    log_level: str = "INFO"
    page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = DEFAULT_MAX_PAGE_SIZE
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "LedgerSettings":
        """
        Build settings from the process environment.

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        return cls(
            database_path=os.getenv("DATABASE_PATH", DEFAULT_DB_PATH),
            log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO").upper(),
            page_size=int(os.getenv("LEDGER_PAGE_SIZE", DEFAULT_PAGE_SIZE)),
            max_page_size=int(os.getenv("LEDGER_MAX_PAGE_SIZE", DEFAULT_MAX_PAGE_SIZE)),
            host=os.getenv("LEDGER_HOST", "127.0.0.1"),
            port=int(os.getenv("LEDGER_PORT", 8000)),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API server or CLI."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
