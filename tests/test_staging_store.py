"""
Tests for the payment staging store.
"""
import re
from datetime import timedelta

import pytest

from smm_panel.core.ledger import BalanceLedger
from smm_panel.core.staging import (
    DuplicateOrder,
    PaymentStagingStore,
    generate_order_id,
    to_base36,
)
from smm_panel.database import Database, User


class TestGenerateOrderId:
    """Test suite for order id generation."""

    @pytest.mark.unit
    def test_format(self) -> None:
        order_id = generate_order_id("255712345678")

        assert re.match(r"^SPOTIORD-[0-9A-Z]+-345678$", order_id)

    @pytest.mark.unit
    def test_timestamp_is_base36(self) -> None:
        assert generate_order_id("712345678", timestamp_ms=36**3) == "SPOTIORD-1000-345678"
        assert generate_order_id("712345678", prefix="TEST", timestamp_ms=35) == "TEST-Z-345678"

    @pytest.mark.unit
    def test_to_base36(self) -> None:
        assert to_base36(0) == "0"
        assert to_base36(35) == "Z"
        assert to_base36(36) == "10"
        assert int(to_base36(1_700_000_000_000), 36) == 1_700_000_000_000


class TestPaymentStagingStore:
    """Test suite for staging record persistence."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_and_find(self, store: PaymentStagingStore) -> None:
        created = await store.create(
            order_id="SPOTIORD-A-345678",
            email="jane@example.com",
            phone="+255712345678",
            metadata={"gateway": "ZenoPay", "amount": "1000"},
        )

        record = await store.find_by_order_id("SPOTIORD-A-345678")

        assert record is not None
        assert record.status == "PENDING"
        assert record.reference is None
        assert record.meta == {"gateway": "ZenoPay", "amount": "1000"}
        assert created.expires_at - created.created_at == timedelta(hours=24)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_order_id_is_rejected(self, store: PaymentStagingStore) -> None:
        await store.create(order_id="DUP", email="a@example.com", phone="+255712345678")

        with pytest.raises(DuplicateOrder) as exc_info:
            await store.create(order_id="DUP", email="b@example.com", phone="+255712345678")

        assert exc_info.value.order_id == "DUP"
        record = await store.find_by_order_id("DUP")
        assert record.email == "a@example.com"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_unknown_returns_none(self, store: PaymentStagingStore) -> None:
        assert await store.find_by_order_id("missing") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_is_last_write_wins(self, store: PaymentStagingStore) -> None:
        await store.create(order_id="UPD", email="a@example.com", phone="+255712345678")

        await store.update("UPD", status="COMPLETED", reference="REF1")
        await store.update("UPD", status="FAILED")

        record = await store.find_by_order_id("UPD")
        assert record.status == "FAILED"
        assert record.reference == "REF1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_ignores_unknown_status(self, store: PaymentStagingStore) -> None:
        await store.create(order_id="ODD", email="a@example.com", phone="+255712345678")

        record = await store.update("ODD", status="SETTLED", reference="REF9")

        assert record.status == "PENDING"
        assert record.reference == "REF9"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_unknown_returns_none(self, store: PaymentStagingStore) -> None:
        assert await store.update("missing", status="COMPLETED") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete(self, store: PaymentStagingStore) -> None:
        await store.create(order_id="DEL", email="a@example.com", phone="+255712345678")

        assert await store.delete("DEL") is True
        assert await store.find_by_order_id("DEL") is None
        assert await store.delete("DEL") is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_records_are_absent(self, database: Database) -> None:
        expiring = PaymentStagingStore(database.session_factory, ttl_hours=0)
        await expiring.create(order_id="OLD", email="a@example.com", phone="+255712345678")

        assert await expiring.find_by_order_id("OLD") is None
        assert await expiring.update("OLD", status="COMPLETED") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_purge_expired(self, database: Database, store: PaymentStagingStore) -> None:
        expiring = PaymentStagingStore(database.session_factory, ttl_hours=0)
        await expiring.create(order_id="OLD-1", email="a@example.com", phone="+255712345678")
        await expiring.create(order_id="OLD-2", email="a@example.com", phone="+255712345678")
        await store.create(order_id="FRESH", email="a@example.com", phone="+255712345678")

        assert await store.purge_expired() == 2
        assert await store.purge_expired() == 0
        assert await store.find_by_order_id("FRESH") is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_stale_pending(self, store: PaymentStagingStore) -> None:
        await store.create(order_id="P-1", email="a@example.com", phone="+255712345678")
        await store.create(order_id="P-2", email="a@example.com", phone="+255712345678")
        await store.create(order_id="DONE", email="a@example.com", phone="+255712345678")
        await store.update("DONE", status="COMPLETED")

        stale = await store.list_stale_pending(timedelta(0), limit=10)
        assert [record.order_id for record in stale] == ["P-1", "P-2"]

        assert len(await store.list_stale_pending(timedelta(0), limit=1)) == 1
        assert await store.list_stale_pending(timedelta(hours=1)) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_list_unsettled_completed(
        self, store: PaymentStagingStore, ledger: BalanceLedger, user: User
    ) -> None:
        for order_id in ("C-1", "C-2", "C-PAID", "P-1"):
            await store.create(order_id=order_id, email="jane@example.com", phone="+255712345678")
        for order_id in ("C-1", "C-2", "C-PAID"):
            await store.update(order_id, status="COMPLETED")
        await ledger.credit_once(user.id, 1000, "ZENO:REF1:C-PAID", order_id="C-PAID")

        unsettled = await store.list_unsettled_completed(timedelta(0), limit=10)
        assert [record.order_id for record in unsettled] == ["C-1", "C-2"]

        assert len(await store.list_unsettled_completed(timedelta(0), limit=1)) == 1
        assert await store.list_unsettled_completed(timedelta(hours=1)) == []
