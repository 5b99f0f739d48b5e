"""SplitLedger - Track shared expenses and settle the debts they create."""

__version__ = "0.1.0"

from .config import Settings, load_settings
from .db import Database, UnitOfWork
from .directory import DatabaseDirectory
from .exceptions import SplitLedgerError, describe_failure
from .models import (
    BalanceEdge,
    DirectedAmount,
    Expense,
    ExpenseRequest,
    ExpenseUpdate,
    ParticipantInput,
    Settlement,
    SettlementResult,
)
from .service import LedgerService
from .settlement import SettlementEngine
from .splits import compute_shares

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "UnitOfWork",
    "DatabaseDirectory",
    "SplitLedgerError",
    "describe_failure",
    "BalanceEdge",
    "DirectedAmount",
    "Expense",
    "ExpenseRequest",
    "ExpenseUpdate",
    "ParticipantInput",
    "Settlement",
    "SettlementResult",
    "LedgerService",
    "SettlementEngine",
    "compute_shares",
]
