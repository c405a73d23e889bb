from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from recurring_ledger.config import AppConfig
from recurring_ledger.database import SQLiteRepository
from recurring_ledger.models import Interval, RecurringCharge
from recurring_ledger.services import LedgerService


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "ledger.db"


@pytest.fixture
def repository(db_path: Path):
    repo = SQLiteRepository(db_path)
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.fixture
def config(tmp_path: Path, db_path: Path) -> AppConfig:
    return AppConfig(
        project_root=tmp_path,
        database_file=db_path,
        database_timeout=5.0,
        job_token="secret-token",
        reporting_currency="USD",
        default_currency="USD",
        log_level="INFO",
    )


@pytest.fixture
def service(config: AppConfig, repository: SQLiteRepository) -> LedgerService:
    return LedgerService(config, repository)


@pytest.fixture
def make_charge():
    def _make(**overrides) -> RecurringCharge:
        values = dict(
            owner="user-1",
            name="Streaming",
            amount=9.99,
            currency="USD",
            interval=Interval.MONTH,
            every=1,
            next_due_date=date(2024, 1, 1),
            account_id="acct-1",
            category_id="cat-subscriptions",
            active=True,
            auto_post=True,
        )
        values.update(overrides)
        return RecurringCharge(**values)

    return _make
