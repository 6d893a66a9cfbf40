"""
Balance ledger.

Every balance change is a read-modify-write of ``users.balance`` plus one
appended Transaction row, committed together while holding the per-user
lock. ``balance_after`` on each row is therefore the exact balance right
after that entry was applied.

Idempotent credits (``credit_once``) layer two more guards on top of the
lock: a lookup for an existing Transaction with the same order id (or
reference, when no order id is given), and the unique indexes on
``transactions.order_id`` and ``transactions.reference``.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smm_panel.database.models import Transaction, User
from smm_panel.monitoring.metrics import metrics

from .locks import LockProvider

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


class LedgerError(Exception):
    """Base exception for ledger errors."""

    pass


class InvalidAmount(LedgerError):
    """Amount is not a positive finite number."""

    pass


class InsufficientFunds(LedgerError):
    """Debit larger than the available balance."""

    def __init__(self, user_id: int, balance: Decimal, amount: Decimal):
        super().__init__(
            f"User {user_id} has {balance} available, cannot debit {amount}"
        )
        self.user_id = user_id
        self.balance = balance
        self.amount = amount


class UserNotFound(LedgerError):
    """No user with the given id or email."""

    pass


def to_money(amount: Any) -> Decimal:
    """
    Coerce an amount to a 2-place Decimal.

    Raises:
        InvalidAmount: If the amount is not positive and finite
    """
    if isinstance(amount, bool):
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    value = value.quantize(CENT)
    if value <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount!r}")
    return value


class BalanceLedger:
    """Append-only ledger over user balances."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_provider: LockProvider,
    ):
        """
        Initialize ledger.

        Args:
            session_factory: SQLAlchemy async session factory
            lock_provider: Per-user lock provider
        """
        self.session_factory = session_factory
        self.lock_provider = lock_provider

    @staticmethod
    def lock_key(user_id: int) -> str:
        return f"ledger:user:{user_id}"

    async def credit(self, user_id: int, amount: Any, reference: str) -> Transaction:
        """
        Add funds to a user's balance.

        Args:
            user_id: User to credit
            amount: Positive amount
            reference: Free-text reference, unique across the ledger

        Returns:
            Transaction: The appended entry

        Raises:
            InvalidAmount: If amount is not positive and finite
            UserNotFound: If the user does not exist
        """
        value = to_money(amount)
        async with self.lock_provider.hold(self.lock_key(user_id)):
            return await self._apply(user_id, "credit", value, reference)

    async def debit(self, user_id: int, amount: Any, reference: str) -> Transaction:
        """
        Remove funds from a user's balance.

        Raises:
            InvalidAmount: If amount is not positive and finite
            UserNotFound: If the user does not exist
            InsufficientFunds: If amount exceeds the balance
        """
        value = to_money(amount)
        async with self.lock_provider.hold(self.lock_key(user_id)):
            return await self._apply(user_id, "debit", value, reference)

    async def credit_once(
        self,
        user_id: int,
        amount: Any,
        reference: str,
        order_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Credit unless the payment was already applied.

        With ``order_id`` the order id alone decides, so a payment is
        credited once even when the gateway reports different references.

        Args:
            user_id: User to credit
            amount: Positive amount
            reference: Ledger reference
            order_id: Payment the credit settles

        Returns:
            Optional[Transaction]: The new entry, or None if already applied
        """
        value = to_money(amount)
        async with self.lock_provider.hold(self.lock_key(user_id)):
            if order_id is not None:
                applied = await self.has_order_credit(order_id)
            else:
                applied = await self.has_reference(reference)
            if applied:
                metrics.record_duplicate_credit()
                logger.info(
                    "ledger_credit_already_applied",
                    user_id=user_id,
                    reference=reference,
                    order_id=order_id,
                )
                return None
            try:
                return await self._apply(user_id, "credit", value, reference, order_id)
            except IntegrityError:
                # Unique index caught a concurrent writer
                metrics.record_duplicate_credit()
                logger.warning(
                    "ledger_credit_reference_conflict",
                    user_id=user_id,
                    reference=reference,
                    order_id=order_id,
                )
                return None

    async def _apply(
        self,
        user_id: int,
        entry_type: str,
        amount: Decimal,
        reference: str,
        order_id: Optional[str] = None,
    ) -> Transaction:
        # Caller holds the per-user lock
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(User).where(User.id == user_id).with_for_update()
                )
                user = result.scalar_one_or_none()
                if user is None:
                    raise UserNotFound(f"User {user_id} not found")

                balance = Decimal(user.balance)
                if entry_type == "debit":
                    if amount > balance:
                        raise InsufficientFunds(user_id, balance, amount)
                    new_balance = balance - amount
                else:
                    new_balance = balance + amount

                user.balance = new_balance
                entry = Transaction(
                    user_id=user_id,
                    type=entry_type,
                    amount=amount,
                    balance_after=new_balance,
                    reference=reference,
                    order_id=order_id,
                )
                session.add(entry)

        metrics.record_ledger_entry(entry_type)
        logger.info(
            "ledger_entry_written",
            user_id=user_id,
            type=entry_type,
            amount=str(amount),
            balance_after=str(new_balance),
            reference=reference,
        )
        return entry

    async def has_reference(self, reference: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(exists().where(Transaction.reference == reference))
            )
            return bool(result.scalar())

    async def has_order_credit(self, order_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(exists().where(Transaction.order_id == order_id))
            )
            return bool(result.scalar())

    async def find_user_by_email(self, email: str) -> Optional[User]:
        """Look up a user by email, case-insensitively."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )
            return result.scalar_one_or_none()

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_balance(self, user_id: int) -> Decimal:
        """
        Current balance of a user.

        Raises:
            UserNotFound: If the user does not exist
        """
        user = await self.get_user(user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return Decimal(user.balance)

    async def recent_transactions(self, user_id: int, limit: int = 10) -> List[Transaction]:
        """Latest ledger entries for a user, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.created_at.desc(), Transaction.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
