"""Recurbook - recurring transaction processing for spreadsheet-backed ledgers.

This package decides which recurring rules are due, writes each due
occurrence to the ledger exactly once per cycle, and advances or retires
the rule afterwards.

Main exports:
    RecurringProcessor: Batch engine for due rules
    RecurringService: Create, edit and delete rules
"""

from .processor import BatchSummary, RecurringProcessor
from .service import RecurringService

__all__ = ["BatchSummary", "RecurringProcessor", "RecurringService"]
__version__ = "1.0.0"
