"""Core payment reconciliation logic."""
from .ledger import BalanceLedger, InsufficientFunds, InvalidAmount, LedgerError, UserNotFound
from .locks import LocalLockProvider, LockAcquisitionError, RedisLockProvider, build_lock_provider
from .phone import PhoneResult, normalize_phone, normalize_subscriber
from .reconciliation import (
    AmountUnparseable,
    InitiationResult,
    PaymentError,
    PaymentReconciler,
    PaymentValidationError,
    WebhookOutcome,
)
from .staging import DuplicateOrder, PaymentStagingStore, generate_order_id

__all__ = [
    "AmountUnparseable",
    "BalanceLedger",
    "DuplicateOrder",
    "InitiationResult",
    "InsufficientFunds",
    "InvalidAmount",
    "LedgerError",
    "LocalLockProvider",
    "LockAcquisitionError",
    "PaymentError",
    "PaymentReconciler",
    "PaymentStagingStore",
    "PaymentValidationError",
    "PhoneResult",
    "RedisLockProvider",
    "UserNotFound",
    "WebhookOutcome",
    "build_lock_provider",
    "generate_order_id",
    "normalize_phone",
    "normalize_subscriber",
]
