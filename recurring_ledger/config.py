"""Application configuration utilities for the recurring_ledger backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.  It also owns
the logging setup, which is the only other process-wide concern.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load any variables defined in a local .env file.
load_dotenv()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        database_file: Path to the SQLite database holding charges, ledger
            entries and exchange rates.
        database_timeout: Seconds SQLite waits on a locked database before
            giving up.  This is the only retry policy applied to storage I/O.
        job_token: Shared secret the auto-post job must be called with.  The
            job refuses to run when it is not configured.
        reporting_currency: Currency used by reports when the caller does not
            request one explicitly.
        default_currency: Currency assumed for charges stored with the legacy
            schema, which has no currency column.
        log_level: Name of the root logging level.
    """

    project_root: Path
    database_file: Optional[Path]
    database_timeout: float
    job_token: Optional[str]
    reporting_currency: str
    default_currency: str
    log_level: str

    def require_job_token(self) -> str:
        """Return the job token or fail loudly when it is not configured."""

        if not self.job_token:
            raise ConfigurationError("Missing LEDGER_JOB_TOKEN: the auto-post job cannot run")
        return self.job_token


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values.  An explicitly empty
    ``LEDGER_DB_FILE`` disables storage, which the API reports as a
    configuration failure instead of silently creating a database somewhere.
    """

    project_root = Path(__file__).resolve().parent.parent
    raw_database_file = getenv_with_default(
        "LEDGER_DB_FILE",
        project_root / "recurring_ledger.db",
    )
    database_file = Path(raw_database_file) if raw_database_file else None

    raw_timeout = getenv_with_default("LEDGER_DB_TIMEOUT", "5.0")
    try:
        database_timeout = float(raw_timeout)
    except ValueError as exc:
        raise ConfigurationError(f"LEDGER_DB_TIMEOUT must be a number, got {raw_timeout!r}") from exc

    if database_file is not None:
        # Ensure the directories exist so later code can safely create files.
        database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        database_timeout=database_timeout,
        job_token=getenv_with_default("LEDGER_JOB_TOKEN"),
        reporting_currency=getenv_with_default("LEDGER_REPORTING_CURRENCY", "USD").upper(),
        default_currency=getenv_with_default("LEDGER_DEFAULT_CURRENCY", "USD").upper(),
        log_level=getenv_with_default("LEDGER_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install a simple formatter on the root logger."""

    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings, keeping the
    return type uniform and easy to serialise.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)
