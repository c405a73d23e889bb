"""Exception hierarchy shared by the recurring_ledger backend."""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(LedgerError):
    """The process lacks the environment it needs to run at all."""


class UnsupportedSchemaError(LedgerError):
    """The charges table matches neither the current nor the legacy layout."""


class InvalidChargeError(LedgerError, ValueError):
    """A recurring charge definition violates a model invariant."""


class ChargeNotFoundError(LedgerError, LookupError):
    def __init__(self, charge_id: str) -> None:
        super().__init__(f"Recurring charge {charge_id!r} does not exist")
        self.charge_id = charge_id


class LedgerEntryNotFoundError(LedgerError, LookupError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Ledger entry {entry_id!r} does not exist")
        self.entry_id = entry_id


class ChargeNotPostableError(LedgerError):
    """The charge exists but cannot produce a ledger entry right now."""


class OccurrenceLimitError(LedgerError, ValueError):
    """Enumerating occurrences would take an unreasonable number of steps."""


class InvalidWindowError(LedgerError, ValueError):
    """A reporting window ends before it starts."""


__all__ = [
    "LedgerError",
    "ConfigurationError",
    "UnsupportedSchemaError",
    "InvalidChargeError",
    "ChargeNotFoundError",
    "LedgerEntryNotFoundError",
    "ChargeNotPostableError",
    "OccurrenceLimitError",
    "InvalidWindowError",
]
