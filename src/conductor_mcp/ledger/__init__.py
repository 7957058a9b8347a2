"""Append-only ledger mapping tasks to their commits."""

from .models import LedgerEntry
from .store import CommitLedger

__all__ = ["CommitLedger", "LedgerEntry"]
