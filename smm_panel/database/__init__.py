"""Database package for the SMM panel."""
from .connection import Database
from .models import (
    PAYMENT_STATUSES,
    Base,
    PaymentRecord,
    Transaction,
    User,
    utc_now,
)

__all__ = [
    "Base",
    "Database",
    "PAYMENT_STATUSES",
    "PaymentRecord",
    "Transaction",
    "User",
    "utc_now",
]
