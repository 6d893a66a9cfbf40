"""
Tests for the balance ledger.
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError

from smm_panel.core.ledger import (
    BalanceLedger,
    InsufficientFunds,
    InvalidAmount,
    UserNotFound,
    to_money,
)
from smm_panel.database import Database, Transaction, User

from conftest import count_rows, create_user


class TestCreditDebit:
    """Test suite for balance mutations."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_credit_appends_entry_with_snapshot(
        self, ledger: BalanceLedger, user: User
    ) -> None:
        entry = await ledger.credit(user.id, 1000, "ZENO:REF1:A")

        assert entry.type == "credit"
        assert entry.amount == Decimal("1000.00")
        assert entry.balance_after == Decimal("3500.00")
        assert await ledger.get_balance(user.id) == Decimal("3500.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_debit(self, ledger: BalanceLedger, user: User) -> None:
        entry = await ledger.debit(user.id, Decimal("499.50"), "ORDER:1")

        assert entry.type == "debit"
        assert entry.balance_after == Decimal("2000.50")
        assert await ledger.get_balance(user.id) == Decimal("2000.50")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_debit_whole_balance(self, ledger: BalanceLedger, user: User) -> None:
        entry = await ledger.debit(user.id, "2500", "ORDER:2")

        assert entry.balance_after == Decimal("0.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_insufficient_funds_changes_nothing(
        self, ledger: BalanceLedger, user: User, database: Database
    ) -> None:
        with pytest.raises(InsufficientFunds) as exc_info:
            await ledger.debit(user.id, 2500.01, "ORDER:3")

        assert exc_info.value.balance == Decimal("2500.00")
        assert await ledger.get_balance(user.id) == Decimal("2500.00")
        assert await count_rows(database, Transaction) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, "0.001", "abc", "NaN", "Infinity", float("inf"), True])
    async def test_invalid_amounts(
        self, ledger: BalanceLedger, user: User, database: Database, amount: object
    ) -> None:
        with pytest.raises(InvalidAmount):
            await ledger.credit(user.id, amount, "BAD")

        assert await count_rows(database, Transaction) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger: BalanceLedger) -> None:
        with pytest.raises(UserNotFound):
            await ledger.credit(999, 100, "NOBODY")

        with pytest.raises(UserNotFound):
            await ledger.get_balance(999)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reference_is_unique(self, ledger: BalanceLedger, user: User) -> None:
        await ledger.credit(user.id, 100, "SAME")

        with pytest.raises(IntegrityError):
            await ledger.credit(user.id, 100, "SAME")

        assert await ledger.get_balance(user.id) == Decimal("2600.00")


class TestCreditOnce:
    """Test suite for idempotent credits."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_credit_is_skipped(
        self, ledger: BalanceLedger, user: User, database: Database
    ) -> None:
        first = await ledger.credit_once(user.id, 1000, "ZENO:REF1:A")
        second = await ledger.credit_once(user.id, 1000, "ZENO:REF1:A")

        assert first is not None
        assert second is None
        assert await ledger.get_balance(user.id) == Decimal("3500.00")
        assert await count_rows(database, Transaction) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unique_index_is_the_last_guard(
        self, ledger: BalanceLedger, user: User
    ) -> None:
        await ledger.credit_once(user.id, 1000, "ZENO:REF1:A")
        ledger.has_reference = AsyncMock(return_value=False)

        assert await ledger.credit_once(user.id, 1000, "ZENO:REF1:A") is None
        assert await ledger.get_balance(user.id) == Decimal("3500.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_order_id_decides_whatever_the_reference(
        self, ledger: BalanceLedger, user: User, database: Database
    ) -> None:
        first = await ledger.credit_once(user.id, 1000, "ZENO:PUSH:A", order_id="A")
        second = await ledger.credit_once(user.id, 1000, "ZENO:REF1:A", order_id="A")

        assert first is not None
        assert first.order_id == "A"
        assert second is None
        assert await ledger.has_order_credit("A")
        assert await ledger.get_balance(user.id) == Decimal("3500.00")
        assert await count_rows(database, Transaction) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_order_id_index_is_the_last_guard(
        self, ledger: BalanceLedger, user: User
    ) -> None:
        await ledger.credit_once(user.id, 1000, "ZENO:PUSH:A", order_id="A")
        ledger.has_order_credit = AsyncMock(return_value=False)

        assert await ledger.credit_once(user.id, 1000, "ZENO:REF2:A", order_id="A") is None
        assert await ledger.get_balance(user.id) == Decimal("3500.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_has_reference(self, ledger: BalanceLedger, user: User) -> None:
        assert not await ledger.has_reference("ZENO:REF1:A")

        await ledger.credit(user.id, 1000, "ZENO:REF1:A")

        assert await ledger.has_reference("ZENO:REF1:A")


class TestQueries:
    """Test suite for ledger reads."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_find_user_by_email_ignores_case(
        self, ledger: BalanceLedger, user: User
    ) -> None:
        found = await ledger.find_user_by_email("  JANE@Example.com ")

        assert found is not None
        assert found.id == user.id
        assert await ledger.find_user_by_email("nobody@example.com") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mixed_case_email_is_stored_lower_case(
        self, ledger: BalanceLedger, database: Database
    ) -> None:
        created = await create_user(database, email=" Mixed.Case@Example.COM ")

        found = await ledger.find_user_by_email("mixed.case@example.com")

        assert created.email == "mixed.case@example.com"
        assert found is not None
        assert found.id == created.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_legacy_mixed_case_row_is_found(
        self, ledger: BalanceLedger, database: Database
    ) -> None:
        async with database.session_factory() as session:
            await session.execute(
                insert(User).values(
                    name="Legacy",
                    email="Legacy@Example.com",
                    phone="+255712345678",
                    balance=Decimal("0"),
                )
            )
            await session.commit()

        found = await ledger.find_user_by_email("legacy@example.com")

        assert found is not None
        assert found.name == "Legacy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_recent_transactions_newest_first(
        self, ledger: BalanceLedger, user: User, database: Database
    ) -> None:
        other = await create_user(database, email="other@example.com")
        for i in range(12):
            await ledger.credit(user.id, 10, f"TOPUP:{i}")
        await ledger.credit(other.id, 10, "TOPUP:other")

        entries = await ledger.recent_transactions(user.id)

        assert len(entries) == 10
        assert [e.reference for e in entries[:2]] == ["TOPUP:11", "TOPUP:10"]
        assert entries[0].balance_after == Decimal("2620.00")
        assert all(e.user_id == user.id for e in entries)
        assert len(await ledger.recent_transactions(user.id, limit=3)) == 3


class TestToMoney:
    """Test suite for amount coercion."""

    @pytest.mark.unit
    def test_rounds_to_cents(self) -> None:
        assert to_money("1000") == Decimal("1000.00")
        assert to_money(12.345) == Decimal("12.34")
