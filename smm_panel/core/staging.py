"""
Payment staging store.

Holds one PaymentRecord per payment attempt, keyed by the generated order
id. The order id is the idempotency key for the whole flow, so inserts are
atomic and reject duplicates. Records expire 24 hours after creation
whatever their status.
"""
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smm_panel.database.models import PAYMENT_STATUSES, PaymentRecord, Transaction, utc_now

logger = structlog.get_logger(__name__)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class StagingError(Exception):
    """Base exception for staging store errors."""

    pass


class DuplicateOrder(StagingError):
    """Raised when a record with the same order id already exists."""

    def __init__(self, order_id: str):
        super().__init__(f"Payment record {order_id} already exists")
        self.order_id = order_id


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_order_id(
    discriminator: str,
    prefix: str = "SPOTIORD",
    timestamp_ms: Optional[int] = None,
) -> str:
    """
    Generate a human-traceable order id.

    Format: {prefix}-{BASE36 millisecond timestamp}-{last 6 discriminator chars}

    Args:
        discriminator: Caller-supplied discriminator, usually the phone digits
        prefix: Prefix tag
        timestamp_ms: Override for the timestamp (milliseconds since epoch)

    Returns:
        str: Order id, e.g. ``SPOTIORD-MH243OKD-345678``
    """
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    return f"{prefix}-{to_base36(timestamp_ms)}-{discriminator[-6:]}"


class PaymentStagingStore:
    """
    Persistence for payment staging records.

    ``update`` is the only path that mutates a record after creation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_hours: int = 24,
    ):
        """
        Initialize staging store.

        Args:
            session_factory: SQLAlchemy async session factory
            ttl_hours: Hours before a record expires
        """
        self.session_factory = session_factory
        self.ttl = timedelta(hours=ttl_hours)

    async def create(
        self,
        order_id: str,
        email: str,
        phone: str,
        metadata: Optional[Dict[str, Any]] = None,
        status: str = "PENDING",
    ) -> PaymentRecord:
        """
        Insert a new staging record.

        Args:
            order_id: Generated order id
            email: Requester email captured at initiation
            phone: Canonical phone number
            metadata: Opaque payload (gateway name, requested amount)
            status: Initial status

        Returns:
            PaymentRecord: The committed record

        Raises:
            DuplicateOrder: If the order id is already taken
        """
        now = utc_now()
        record = PaymentRecord(
            order_id=order_id,
            email=email,
            phone=phone,
            status=status,
            meta=metadata or {},
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )

        async with self.session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.warning("staging_record_duplicate", order_id=order_id)
                raise DuplicateOrder(order_id) from e

        logger.info("staging_record_created", order_id=order_id, status=status)
        return record

    async def find_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        """Return the unexpired record for ``order_id``, if any."""
        async with self.session_factory() as session:
            stmt = select(PaymentRecord).where(
                PaymentRecord.order_id == order_id,
                PaymentRecord.expires_at > utc_now(),
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def update(
        self,
        order_id: str,
        status: Optional[str] = None,
        reference: Optional[str] = None,
        updated_at: Optional[datetime] = None,
    ) -> Optional[PaymentRecord]:
        """
        Apply a status notification to a record.

        Last write wins. ``None`` keeps the stored value.

        Args:
            order_id: Order id of the record
            status: New status
            reference: Gateway reference
            updated_at: Update timestamp (defaults to now)

        Returns:
            Optional[PaymentRecord]: The updated record, None if unknown or expired
        """
        if status is not None and status not in PAYMENT_STATUSES:
            logger.warning("staging_unknown_status", order_id=order_id, status=status)
            status = None

        async with self.session_factory() as session:
            stmt = select(PaymentRecord).where(
                PaymentRecord.order_id == order_id,
                PaymentRecord.expires_at > utc_now(),
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()
            if record is None:
                return None

            if status is not None:
                record.status = status
            if reference:
                record.reference = reference
            record.updated_at = updated_at or utc_now()
            await session.commit()

        logger.info(
            "staging_record_updated",
            order_id=order_id,
            status=record.status,
            reference=record.reference,
        )
        return record

    async def delete(self, order_id: str) -> bool:
        """Remove a record whose initiation was rejected."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(PaymentRecord).where(PaymentRecord.order_id == order_id)
            )
            await session.commit()

        deleted = result.rowcount > 0
        logger.info("staging_record_deleted", order_id=order_id, deleted=deleted)
        return deleted

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """
        Delete every record past its expiry.

        Args:
            now: Reference time (defaults to now)

        Returns:
            int: Number of records deleted
        """
        async with self.session_factory() as session:
            result = await session.execute(
                delete(PaymentRecord).where(PaymentRecord.expires_at <= (now or utc_now()))
            )
            await session.commit()

        purged = result.rowcount or 0
        if purged:
            logger.info("staging_records_purged", count=purged)
        return purged

    async def list_stale_pending(
        self, older_than: timedelta, limit: int = 50
    ) -> List[PaymentRecord]:
        """
        List unexpired PENDING records created more than ``older_than`` ago.

        Args:
            older_than: Minimum record age
            limit: Max records returned

        Returns:
            List[PaymentRecord]: Oldest first
        """
        now = utc_now()
        async with self.session_factory() as session:
            stmt = (
                select(PaymentRecord)
                .where(
                    PaymentRecord.status == "PENDING",
                    PaymentRecord.created_at <= now - older_than,
                    PaymentRecord.expires_at > now,
                )
                .order_by(PaymentRecord.created_at)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_unsettled_completed(
        self, older_than: timedelta, limit: int = 50
    ) -> List[PaymentRecord]:
        """
        List unexpired COMPLETED records with no ledger credit.

        These are payments whose settlement failed after the status was
        applied (gateway down, amount not confirmed, user missing).

        Args:
            older_than: Minimum time since the last update
            limit: Max records returned

        Returns:
            List[PaymentRecord]: Least recently updated first
        """
        now = utc_now()
        credited = exists().where(Transaction.order_id == PaymentRecord.order_id)
        async with self.session_factory() as session:
            stmt = (
                select(PaymentRecord)
                .where(
                    PaymentRecord.status == "COMPLETED",
                    PaymentRecord.updated_at <= now - older_than,
                    PaymentRecord.expires_at > now,
                    ~credited,
                )
                .order_by(PaymentRecord.updated_at)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
