"""SQLite persistence layer for the recurring_ledger backend.

The repository provides a small, well-typed API that hides SQL details from the
rest of the code.  It relies on the standard library :mod:`sqlite3` module.
Two guarantees live here rather than in application code:

* a unique index over ``transactions(recurring_charge_id, date)`` makes
  posting a recurring charge idempotent across processes, and
* a unique constraint over ``fx_rates(date, from_currency, to_currency)``
  gives rate writes last-write-wins semantics.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from .errors import InvalidChargeError, UnsupportedSchemaError
from .intervals import frequency_to_interval, interval_to_frequency, parse_interval
from .models import (
    EntryType,
    ExchangeRateObservation,
    LedgerEntry,
    RecurringCharge,
    ReportingWindow,
)

logger = logging.getLogger(__name__)

# Maximum number of due charges fetched by a single engine pass.
DUE_CHARGES_LIMIT = 1000

_MODERN_COLUMNS = frozenset({"interval", "every", "next_charge_date"})
_LEGACY_COLUMNS = frozenset({"frequency", "next_due"})


class ChargeSchema(str, Enum):
    """Column layout of the ``subscriptions`` table."""

    MODERN = "modern"
    LEGACY = "legacy"

    @property
    def due_column(self) -> str:
        return "next_charge_date" if self is ChargeSchema.MODERN else "next_due"


class SQLiteRepository:
    """Encapsulates all SQLite access for the application.

    One connection is shared by the threads of a process and serialised with a
    lock.  Separate repositories opened on the same file behave like separate
    processes and coordinate only through SQLite itself.
    """

    def __init__(self, database_path: Path | str, timeout: float = 5.0, default_currency: str = "USD") -> None:
        self._database_path = database_path
        self._default_currency = default_currency.upper()
        self._connection = sqlite3.connect(database_path, timeout=timeout, check_same_thread=False)
        self._connection.execute("PRAGMA foreign_keys = ON;")
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._charge_schema: Optional[ChargeSchema] = None
        self._charge_columns: frozenset[str] = frozenset()

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create all tables required by the application if they do not exist.

        An existing ``subscriptions`` table is left untouched, whichever layout
        it has; :meth:`charge_schema` decides how to read it.
        """

        with self._lock:
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    name TEXT NOT NULL,
                    amount REAL NOT NULL,
                    currency TEXT NOT NULL,
                    interval TEXT NOT NULL CHECK (interval IN ('day', 'week', 'month', 'year')),
                    every INTEGER NOT NULL CHECK (every >= 1),
                    next_charge_date TEXT NOT NULL,
                    account_id TEXT,
                    category_id TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    auto_post INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    date TEXT NOT NULL,
                    amount REAL NOT NULL,
                    currency TEXT NOT NULL,
                    type TEXT NOT NULL CHECK (type IN ('income', 'expense')),
                    account_id TEXT,
                    category_id TEXT,
                    notes TEXT,
                    recurring_charge_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS transactions_charge_date_key
                    ON transactions (recurring_charge_id, date);

                CREATE TABLE IF NOT EXISTS fx_rates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    from_currency TEXT NOT NULL,
                    to_currency TEXT NOT NULL,
                    rate REAL NOT NULL CHECK (rate > 0),
                    UNIQUE (date, from_currency, to_currency)
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )
            self._connection.commit()
            self._charge_schema = None

    def charge_schema(self) -> ChargeSchema:
        """Inspect the ``subscriptions`` columns once and remember the layout.

        Raises:
            UnsupportedSchemaError: when the table is missing or carries
                neither the current nor the legacy scheduling columns.
        """

        if self._charge_schema is not None:
            return self._charge_schema
        with self._lock:
            rows = self._connection.execute("PRAGMA table_info(subscriptions)").fetchall()
        columns = {row["name"] for row in rows}
        if _MODERN_COLUMNS <= columns:
            schema = ChargeSchema.MODERN
        elif _LEGACY_COLUMNS <= columns:
            schema = ChargeSchema.LEGACY
        else:
            raise UnsupportedSchemaError(
                f"subscriptions table has neither {sorted(_MODERN_COLUMNS)} nor {sorted(_LEGACY_COLUMNS)} "
                f"(found {sorted(columns)})"
            )
        logger.debug("Detected %s charges schema in %s", schema.value, self._database_path)
        self._charge_columns = frozenset(columns)
        self._charge_schema = schema
        return schema

    def _due_clauses(self, as_of: date) -> tuple[list[str], list[object]]:
        """WHERE clauses selecting active auto-post charges due by ``as_of``.

        Legacy tables may lack the flag columns or hold NULLs in them; those
        read as active and not auto-posted, the same as :meth:`_row_to_charge`.
        """

        schema = self.charge_schema()
        clauses = [f"{schema.due_column} <= ?"]
        if "active" in self._charge_columns:
            clauses.append("COALESCE(active, 1) = 1")
        if "auto_post" in self._charge_columns:
            clauses.append("COALESCE(auto_post, 0) = 1")
        else:
            clauses.append("0 = 1")
        return clauses, [as_of.isoformat()]

    def _owner_column(self) -> str:
        self.charge_schema()
        if "owner" not in self._charge_columns and "user_id" in self._charge_columns:
            return "user_id"
        return "owner"

    # ------------------------------------------------------------------
    # Recurring charges
    # ------------------------------------------------------------------
    def insert_charge(self, charge: RecurringCharge) -> None:
        schema = self.charge_schema()
        params = {
            "id": charge.id,
            "owner": charge.owner,
            "name": charge.name,
            "amount": charge.amount,
            "account_id": charge.account_id,
            "category_id": charge.category_id,
            "active": int(charge.active),
            "auto_post": int(charge.auto_post),
        }
        if schema is ChargeSchema.MODERN:
            sql = """
                INSERT INTO subscriptions (
                    id, owner, name, amount, currency, interval, every, next_charge_date,
                    account_id, category_id, active, auto_post
                ) VALUES (
                    :id, :owner, :name, :amount, :currency, :interval, :every, :next_charge_date,
                    :account_id, :category_id, :active, :auto_post
                )
            """
            params.update(
                currency=charge.currency.upper(),
                interval=charge.interval.value,
                every=charge.every,
                next_charge_date=charge.next_due_date.isoformat(),
            )
        else:
            frequency = interval_to_frequency(charge.interval, charge.every)
            if frequency is None:
                raise InvalidChargeError(
                    f"The legacy charges schema cannot store every {charge.every} {charge.interval.value}"
                )
            owner_column = self._owner_column()
            sql = f"""
                INSERT INTO subscriptions (
                    id, {owner_column}, name, amount, frequency, next_due,
                    account_id, category_id, active, auto_post
                ) VALUES (
                    :id, :owner, :name, :amount, :frequency, :next_due,
                    :account_id, :category_id, :active, :auto_post
                )
            """
            params.update(frequency=frequency, next_due=charge.next_due_date.isoformat())
        with self._lock:
            self._connection.execute(sql, params)
            self._connection.commit()

    def get_charge(self, charge_id: str) -> Optional[RecurringCharge]:
        schema = self.charge_schema()
        with self._lock:
            row = self._connection.execute(
                "SELECT * FROM subscriptions WHERE id = ?",
                (charge_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_charge(row, schema)

    def list_charges(self, owner: Optional[str] = None) -> list[RecurringCharge]:
        schema = self.charge_schema()
        sql = "SELECT * FROM subscriptions"
        params: tuple[object, ...] = ()
        if owner is not None:
            sql += f" WHERE {self._owner_column()} = ?"
            params = (owner,)
        sql += f" ORDER BY {schema.due_column} ASC, name ASC"
        with self._lock:
            rows = self._connection.execute(sql, params).fetchall()
        return [self._row_to_charge(row, schema) for row in rows]

    def list_due_charges(self, as_of: date, limit: int = DUE_CHARGES_LIMIT) -> list[RecurringCharge]:
        """Return funded active auto-post charges due on or before ``as_of``.

        Charges without a funding account are left out before the limit is
        applied so they can never crowd out postable ones.
        """

        schema = self.charge_schema()
        clauses, params = self._due_clauses(as_of)
        clauses.append("account_id IS NOT NULL AND account_id <> ''")
        with self._lock:
            rows = self._connection.execute(
                f"""
                SELECT * FROM subscriptions
                WHERE {' AND '.join(clauses)}
                ORDER BY {schema.due_column} ASC, id ASC
                LIMIT ?
                """,
                (*params, limit),
            ).fetchall()
        return [self._row_to_charge(row, schema) for row in rows]

    def count_unfunded_due_charges(self, as_of: date) -> int:
        """Count due auto-post charges that cannot be posted for lack of an account."""

        clauses, params = self._due_clauses(as_of)
        clauses.append("(account_id IS NULL OR account_id = '')")
        with self._lock:
            row = self._connection.execute(
                f"SELECT COUNT(*) AS total FROM subscriptions WHERE {' AND '.join(clauses)}",
                params,
            ).fetchone()
        return int(row["total"])

    def advance_charge(self, charge_id: str, expected_due_date: date, new_due_date: date) -> bool:
        """Move a charge's next due date forward if nobody else has moved it.

        Returns ``False`` when the stored date no longer equals
        ``expected_due_date``, i.e. a concurrent writer advanced it first.
        """

        if new_due_date <= expected_due_date:
            raise ValueError(f"Refusing to move next due date backwards ({expected_due_date} -> {new_due_date})")
        column = self.charge_schema().due_column
        with self._lock:
            cursor = self._connection.execute(
                f"UPDATE subscriptions SET {column} = ? WHERE id = ? AND {column} = ?",
                (new_due_date.isoformat(), charge_id, expected_due_date.isoformat()),
            )
            self._connection.commit()
        return cursor.rowcount == 1

    def set_charge_flags(self, charge_id: str, *, active: Optional[bool] = None, auto_post: Optional[bool] = None) -> bool:
        assignments: list[str] = []
        params: list[object] = []
        if active is not None:
            assignments.append("active = ?")
            params.append(int(active))
        if auto_post is not None:
            assignments.append("auto_post = ?")
            params.append(int(auto_post))
        if not assignments:
            return self.get_charge(charge_id) is not None
        params.append(charge_id)
        with self._lock:
            cursor = self._connection.execute(
                f"UPDATE subscriptions SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            self._connection.commit()
        return cursor.rowcount == 1

    def _row_to_charge(self, row: sqlite3.Row, schema: ChargeSchema) -> RecurringCharge:
        keys = row.keys()
        if schema is ChargeSchema.MODERN:
            interval = parse_interval(row["interval"])
            every = int(row["every"])
            next_due = row["next_charge_date"]
        else:
            interval, every = frequency_to_interval(row["frequency"])
            next_due = row["next_due"]
        currency = row["currency"] if "currency" in keys and row["currency"] else self._default_currency
        # Legacy rows may predate the flag columns or leave them NULL.
        active = row["active"] if "active" in keys else None
        auto_post = row["auto_post"] if "auto_post" in keys else None
        # Older tables name the owner column user_id.
        owner_column = "owner" if "owner" in keys else "user_id"
        owner = row[owner_column] if owner_column in keys else None
        return RecurringCharge(
            id=str(row["id"]),
            owner="" if owner is None else str(owner),
            name=row["name"] or "",
            amount=float(row["amount"] or 0.0),
            currency=str(currency).upper(),
            interval=interval,
            every=every,
            next_due_date=_iso_to_date(next_due),
            account_id=row["account_id"],
            category_id=row["category_id"],
            active=True if active is None else bool(active),
            auto_post=bool(auto_post),
        )

    # ------------------------------------------------------------------
    # Ledger entries
    # ------------------------------------------------------------------
    def post_entries(self, entries: Iterable[LedgerEntry]) -> int:
        """Insert entries in one transaction, skipping idempotency-key collisions.

        Returns the number of rows actually written.  An entry whose
        ``(recurring_charge_id, date)`` already exists is silently dropped; the
        check is done by the unique index, so it holds across connections.
        """

        written = 0
        with self._lock, self._connection:
            for entry in entries:
                cursor = self._connection.execute(
                    """
                    INSERT INTO transactions (
                        id, owner, date, amount, currency, type, account_id,
                        category_id, notes, recurring_charge_id, created_at
                    ) VALUES (
                        :id, :owner, :date, :amount, :currency, :type, :account_id,
                        :category_id, :notes, :recurring_charge_id, :created_at
                    )
                    ON CONFLICT (recurring_charge_id, date) DO NOTHING
                    """,
                    {
                        "id": entry.id,
                        "owner": entry.owner,
                        "date": entry.date.isoformat(),
                        "amount": entry.amount,
                        "currency": entry.currency.upper(),
                        "type": entry.type.value,
                        "account_id": entry.account_id,
                        "category_id": entry.category_id,
                        "notes": entry.notes,
                        "recurring_charge_id": entry.recurring_charge_id,
                        "created_at": entry.created_at.isoformat(timespec="seconds"),
                    },
                )
                written += cursor.rowcount
        return written

    def list_entries(
        self,
        window: Optional[ReportingWindow] = None,
        owner: Optional[str] = None,
        recurring_charge_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        clauses: list[str] = []
        params: list[object] = []
        if window is not None:
            clauses.append("date >= ? AND date < ?")
            params.extend([window.start.isoformat(), window.end.isoformat()])
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner)
        if recurring_charge_id is not None:
            clauses.append("recurring_charge_id = ?")
            params.append(recurring_charge_id)
        sql = "SELECT * FROM transactions"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY date ASC, created_at ASC, id ASC"
        with self._lock:
            rows = self._connection.execute(sql, params).fetchall()
        return [_row_to_entry(row) for row in rows]

    def delete_entry(self, entry_id: str) -> bool:
        with self._lock:
            cursor = self._connection.execute("DELETE FROM transactions WHERE id = ?", (entry_id,))
            self._connection.commit()
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # FX rates
    # ------------------------------------------------------------------
    def upsert_fx_rates(self, observations: Iterable[ExchangeRateObservation]) -> int:
        """Store observations; a second write for the same pair and date wins."""

        count = 0
        with self._lock, self._connection:
            for observation in observations:
                self._connection.execute(
                    """
                    INSERT INTO fx_rates (date, from_currency, to_currency, rate)
                    VALUES (:date, :from_currency, :to_currency, :rate)
                    ON CONFLICT (date, from_currency, to_currency) DO UPDATE SET rate = excluded.rate
                    """,
                    {
                        "date": observation.date.isoformat(),
                        "from_currency": observation.from_currency.upper(),
                        "to_currency": observation.to_currency.upper(),
                        "rate": observation.rate,
                    },
                )
                count += 1
        return count

    def list_fx_rates(self, up_to: Optional[date] = None) -> list[ExchangeRateObservation]:
        sql = "SELECT date, from_currency, to_currency, rate FROM fx_rates"
        params: tuple[object, ...] = ()
        if up_to is not None:
            sql += " WHERE date <= ?"
            params = (up_to.isoformat(),)
        sql += " ORDER BY from_currency, to_currency, date"
        with self._lock:
            rows = self._connection.execute(sql, params).fetchall()
        return [
            ExchangeRateObservation(
                date=_iso_to_date(row["date"]),
                from_currency=row["from_currency"],
                to_currency=row["to_currency"],
                rate=float(row["rate"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Settings helpers
    # ------------------------------------------------------------------
    def set_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._connection.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._connection.commit()

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self._connection.execute(
                "SELECT value FROM settings WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return default
        return str(row["value"])


def _row_to_entry(row: sqlite3.Row) -> LedgerEntry:
    return LedgerEntry(
        id=row["id"],
        owner=row["owner"],
        date=_iso_to_date(row["date"]),
        amount=float(row["amount"]),
        currency=row["currency"],
        type=EntryType(row["type"]),
        account_id=row["account_id"],
        category_id=row["category_id"],
        notes=row["notes"],
        recurring_charge_id=row["recurring_charge_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _iso_to_date(value: object) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
