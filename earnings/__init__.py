"""
Stream Earnings Ledger

This package provides:
- Stream settlement: qualifying plays become per-stream artist earnings
- An append-only ledger of earnings, tips and withdrawals
- Materialized artist balances with audit and repair against the ledger
- Withdrawals converted to any token through the SideShift exchange
- Reconciliation of withdrawal status back into the ledger
"""

from .models import (
    EntryKind,
    EntryStatus,
    Artist,
    LedgerEntry,
    StreamEvent,
    Balance,
)
from .service import LedgerService
from .settlement import SettlementService
from .withdrawal import WithdrawalService
from .analytics import AnalyticsService

__all__ = [
    "EntryKind",
    "EntryStatus",
    "Artist",
    "LedgerEntry",
    "StreamEvent",
    "Balance",
    "LedgerService",
    "SettlementService",
    "WithdrawalService",
    "AnalyticsService",
]
