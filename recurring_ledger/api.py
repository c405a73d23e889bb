"""FastAPI application exposing the recurring_ledger backend."""
from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import date
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import AppConfig, configure_logging, load_config
from .database import SQLiteRepository
from .errors import (
    ChargeNotFoundError,
    ChargeNotPostableError,
    ConfigurationError,
    InvalidChargeError,
    InvalidWindowError,
    LedgerEntryNotFoundError,
    OccurrenceLimitError,
    UnsupportedSchemaError,
)
from .models import ExchangeRateObservation, Interval, RecurringCharge, ReportingWindow
from .services import LedgerService, charge_to_payload

logger = logging.getLogger(__name__)

CURRENCY_PATTERN = "^[A-Za-z]{3}$"


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests.

    A missing storage configuration does not stop the app from starting; the
    routes that need storage answer with a configuration error instead.
    """

    config = load_config()
    configure_logging(config.log_level)
    repository: Optional[SQLiteRepository] = None
    if config.database_file is not None:
        repository = SQLiteRepository(
            config.database_file,
            timeout=config.database_timeout,
            default_currency=config.default_currency,
        )
        repository.initialise_schema()
    else:
        logger.error("No database configured; storage-backed routes will fail")

    app.state.config = config
    app.state.repository = repository
    app.state.ledger = LedgerService(config, repository) if repository is not None else None

    yield

    if repository is not None:
        repository.close()


app = FastAPI(lifespan=lifespan, title="recurring_ledger backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping -------------------------------------------------------------


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(_: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: %s", exc)
    return _error(500, exc)


@app.exception_handler(UnsupportedSchemaError)
async def schema_error_handler(_: Request, exc: UnsupportedSchemaError) -> JSONResponse:
    logger.error("Unsupported charges schema: %s", exc)
    return _error(500, exc)


@app.exception_handler(LedgerEntryNotFoundError)
@app.exception_handler(ChargeNotFoundError)
async def not_found_handler(_: Request, exc: LookupError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(ChargeNotPostableError)
async def not_postable_handler(_: Request, exc: ChargeNotPostableError) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(InvalidChargeError)
async def invalid_charge_handler(_: Request, exc: InvalidChargeError) -> JSONResponse:
    return _error(422, exc)


@app.exception_handler(InvalidWindowError)
@app.exception_handler(OccurrenceLimitError)
async def unprocessable_handler(_: Request, exc: ValueError) -> JSONResponse:
    return _error(422, exc)


# Dependency injection ------------------------------------------------------


def get_config() -> AppConfig:
    config: AppConfig = app.state.config
    return config


def get_ledger_service() -> LedgerService:
    service: Optional[LedgerService] = app.state.ledger
    if service is None:
        raise ConfigurationError("Missing LEDGER_DB_FILE: no storage configured")
    return service


def get_window(
    start: Annotated[date, Query(description="First day of the window (inclusive)")],
    end: Annotated[date, Query(description="Day after the window (exclusive)")],
) -> ReportingWindow:
    try:
        return ReportingWindow(start, end)
    except ValueError as exc:
        raise InvalidWindowError(str(exc)) from exc


# Request bodies ------------------------------------------------------------


class ChargeIn(BaseModel):
    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)
    amount: float
    currency: str = Field(pattern=CURRENCY_PATTERN)
    interval: Interval
    every: int = Field(default=1, ge=1)
    next_due_date: date
    account_id: Optional[str] = None
    category_id: Optional[str] = None
    active: bool = True
    auto_post: bool = False


class ChargeFlagsIn(BaseModel):
    active: Optional[bool] = None
    auto_post: Optional[bool] = None


class OccurrencesIn(BaseModel):
    dates: list[date] = Field(min_length=1)


class RateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    on_date: date = Field(alias="date")
    from_currency: str = Field(pattern=CURRENCY_PATTERN)
    to_currency: str = Field(pattern=CURRENCY_PATTERN)
    rate: float = Field(gt=0)


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.post("/jobs/autopost")
def run_autopost(
    as_of: Annotated[Optional[date], Query(alias="date", description="ISO calendar date, default today")] = None,
    authorization: Annotated[Optional[str], Header()] = None,
    config: Annotated[AppConfig, Depends(get_config)] = None,
) -> JSONResponse:
    """Post every due auto-post charge once and advance its schedule.

    Safe to call repeatedly and concurrently; see :mod:`recurring_ledger.autopost`.
    """

    expected = config.require_job_token()
    ledger_service = get_ledger_service()
    presented = (authorization or "").removeprefix("Bearer ").strip()
    if not secrets.compare_digest(presented.encode(), expected.encode()):
        return JSONResponse(status_code=401, content={"error": "Invalid job token"})

    result = ledger_service.run_autopost(as_of)
    return JSONResponse(content=result.to_payload())


@app.post("/charges", status_code=201)
def create_charge(
    body: ChargeIn,
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    charge = ledger_service.create_charge(
        RecurringCharge(
            owner=body.owner,
            name=body.name,
            amount=body.amount,
            currency=body.currency,
            interval=body.interval,
            every=body.every,
            next_due_date=body.next_due_date,
            account_id=body.account_id,
            category_id=body.category_id,
            active=body.active,
            auto_post=body.auto_post,
        )
    )
    return charge_to_payload(charge)


@app.get("/charges")
def list_charges(
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
    owner: Optional[str] = None,
) -> dict[str, object]:
    charges = [charge_to_payload(charge) for charge in ledger_service.list_charges(owner)]
    return {"charges": charges, "count": len(charges)}


@app.get("/charges/upcoming")
def upcoming_charges(
    window: Annotated[ReportingWindow, Depends(get_window)],
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
    currency: Annotated[Optional[str], Query(pattern=CURRENCY_PATTERN)] = None,
    owner: Optional[str] = None,
) -> dict[str, object]:
    return ledger_service.upcoming_charges(window, currency, owner)


@app.get("/charges/{charge_id}")
def get_charge(
    charge_id: str,
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    return charge_to_payload(ledger_service.get_charge(charge_id))


@app.patch("/charges/{charge_id}")
def update_charge_flags(
    charge_id: str,
    body: ChargeFlagsIn,
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    charge = ledger_service.update_flags(charge_id, active=body.active, auto_post=body.auto_post)
    return charge_to_payload(charge)


@app.get("/charges/{charge_id}/occurrences")
def charge_occurrences(
    charge_id: str,
    window: Annotated[ReportingWindow, Depends(get_window)],
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    occurrences = ledger_service.occurrences(charge_id, window)
    return {"charge_id": charge_id, "occurrences": [day.isoformat() for day in occurrences]}


@app.post("/charges/{charge_id}/charge-now")
def charge_now(
    charge_id: str,
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    return ledger_service.charge_now(charge_id).to_payload()


@app.post("/charges/{charge_id}/post")
def post_occurrences(
    charge_id: str,
    body: OccurrencesIn,
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    return ledger_service.post_occurrences(charge_id, body.dates).to_payload()


@app.get("/ledger")
def list_ledger(
    window: Annotated[ReportingWindow, Depends(get_window)],
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
    owner: Optional[str] = None,
) -> dict[str, object]:
    entries = ledger_service.list_entries(window, owner)
    return {"transactions": entries, "count": len(entries)}


@app.get("/ledger/summary")
def ledger_summary(
    window: Annotated[ReportingWindow, Depends(get_window)],
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
    currency: Annotated[Optional[str], Query(pattern=CURRENCY_PATTERN)] = None,
    owner: Optional[str] = None,
) -> dict[str, object]:
    return ledger_service.ledger_summary(window, currency, owner)


@app.delete("/ledger/{entry_id}")
def delete_ledger_entry(
    entry_id: str,
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    if not ledger_service.delete_entry(entry_id):
        raise LedgerEntryNotFoundError(entry_id)
    return {"deleted": entry_id}


@app.put("/fx/rates")
def record_rates(
    body: list[RateIn],
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    stored = ledger_service.record_rates(
        ExchangeRateObservation(
            date=item.on_date,
            from_currency=item.from_currency.upper(),
            to_currency=item.to_currency.upper(),
            rate=item.rate,
        )
        for item in body
    )
    return {"stored": stored}


@app.get("/fx/rates")
def list_rates(ledger_service: Annotated[LedgerService, Depends(get_ledger_service)]) -> dict[str, object]:
    rates = [
        {
            "date": rate.date.isoformat(),
            "from_currency": rate.from_currency,
            "to_currency": rate.to_currency,
            "rate": rate.rate,
        }
        for rate in ledger_service.list_rates()
    ]
    return {"rates": rates, "count": len(rates)}


@app.get("/fx/convert")
def convert_amount(
    amount: float,
    from_currency: Annotated[str, Query(alias="from", pattern=CURRENCY_PATTERN)],
    to_currency: Annotated[str, Query(alias="to", pattern=CURRENCY_PATTERN)],
    on_date: Annotated[date, Query(alias="date")],
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, object]:
    converted = ledger_service.convert(amount, from_currency, to_currency, on_date)
    return {
        "amount": amount,
        "from": from_currency.upper(),
        "to": to_currency.upper(),
        "date": on_date.isoformat(),
        "converted": converted,
        "fx_missing": converted is None,
    }


@app.get("/settings/reporting-currency")
def get_reporting_currency(
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, str]:
    return {"reporting_currency": ledger_service.reporting_currency()}


@app.put("/settings/reporting-currency")
def set_reporting_currency(
    currency: Annotated[str, Query(pattern=CURRENCY_PATTERN)],
    ledger_service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> dict[str, str]:
    return {"reporting_currency": ledger_service.set_reporting_currency(currency)}
