"""HouseSplit - Split household expenses, settle balances and run recurring charges."""

__version__ = "0.1.0"

from .allocator import allocate
from .charges import charge_shares, distribute_charges, quick_split
from .config import Settings, load_settings
from .db import Database
from .models import (
    Balance,
    ChargeSpec,
    Expense,
    LineItem,
    Payment,
    RecurringTemplate,
    SplitShare,
    Transfer,
)
from .service import HouseholdService
from .settlement import group_balances, pairwise_balance, settle, summarize

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "Balance",
    "ChargeSpec",
    "Expense",
    "LineItem",
    "Payment",
    "RecurringTemplate",
    "SplitShare",
    "Transfer",
    "allocate",
    "charge_shares",
    "distribute_charges",
    "quick_split",
    "group_balances",
    "pairwise_balance",
    "settle",
    "summarize",
    "HouseholdService",
]
