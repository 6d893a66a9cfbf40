"""SQLAlchemy database models for the payment reconciliation flow."""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")

MONEY = Numeric(18, 2)

PAYMENT_STATUSES = ("PENDING", "COMPLETED", "FAILED")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Panel user.

    Registration and authentication live elsewhere; only the fields the
    ledger and the payment flow read are mapped here.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    __table_args__ = (CheckConstraint("balance >= 0", name="non_negative_balance"),)

    @validates("email")
    def normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(id={self.id}, email={self.email}, balance={self.balance})>"


class Transaction(Base):
    """
    Balance ledger entries.

    Append-only: every balance change writes exactly one row whose
    balance_after snapshots the user's balance once the change is applied.
    A gateway credit also stores the order id it settles; the unique index
    on order_id allows at most one credit per payment, whatever reference
    the gateway reported.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint("type IN ('credit', 'debit')", name="valid_transaction_type"),
        Index("uq_transactions_reference", "reference", unique=True),
        Index("uq_transactions_order_id", "order_id", unique=True),
        Index("idx_transactions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(id={self.id}, user_id={self.user_id}, type={self.type}, "
            f"amount={self.amount}, balance_after={self.balance_after})>"
        )


class PaymentRecord(Base):
    """
    Payment staging records (the payment bin).

    Tracks one payment attempt from initiation to a terminal status. Rows
    expire 24 hours after creation regardless of status; this is bounded
    staging, not an audit trail.
    """

    __tablename__ = "payment_bin"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    meta: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED')",
            name="valid_payment_status",
        ),
        Index("idx_payment_bin_expires_at", "expires_at"),
        Index("idx_payment_bin_status_created", "status", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "email": self.email,
            "phone": self.phone,
            "status": self.status,
            "reference": self.reference,
            "metadata": self.meta or {},
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def __repr__(self) -> str:
        """String representation of PaymentRecord."""
        return f"<PaymentRecord(order_id={self.order_id}, status={self.status})>"
