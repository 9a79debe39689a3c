"""Tests for interest accrual on balances and savings goals."""

import asyncio
import pathlib
import sys
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from kidledger import interest, ledger
from kidledger.crud import create_child, create_goal
from kidledger.database import make_sessionmaker
from kidledger.exceptions import NotFound, StorageUnavailable, ValidationError
from kidledger.models import Child, Goal

TODAY = date(2024, 3, 15)
LONG_AGO = datetime(2024, 1, 1, 10, 0)


async def _setup_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return make_sessionmaker(engine)


async def _child_with_config(session, name, rate="10", minimum="5"):
    child = await create_child(session, Child(name=name))
    await interest.upsert_config(
        session, child.id, monthly_rate=rate, minimum_balance=minimum
    )
    return child


def test_interest_on_settled_balance():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _child_with_config(session, "Ana")
            await ledger.post_transaction(
                session, child.id, "earning", 1000, created_at=LONG_AGO
            )

            result = await interest.accrue_interest(session, child.id, TODAY)
            assert result.interest.amount == Decimal("100.00")
            assert result.interest.kind == "interest"
            assert result.eligible_balance == Decimal("1000.00")
            assert child.balance == Decimal("1100.00")
            assert child.total_earned == Decimal("1100.00")
            config = await interest.get_config(session, child.id)
            assert config.last_interest_date == TODAY

    asyncio.run(run())


def test_thirty_day_boundary():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _child_with_config(session, "Bia")
            await ledger.post_transaction(
                session,
                child.id,
                "earning",
                100,
                created_at=datetime.combine(TODAY - timedelta(days=31), time(9)),
            )
            await ledger.post_transaction(
                session,
                child.id,
                "earning",
                50,
                created_at=datetime.combine(TODAY - timedelta(days=30), time(0, 0, 1)),
            )

            result = await interest.accrue_interest(session, child.id, TODAY)
            assert result.eligible_balance == Decimal("100.00")
            assert result.interest.amount == Decimal("10.00")

    asyncio.run(run())


def test_recent_inflows_and_spending():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _child_with_config(session, "Caio", rate="5")
            await ledger.post_transaction(
                session, child.id, "earning", 100, created_at=LONG_AGO
            )
            await ledger.post_transaction(
                session, child.id, "allowance", 20, created_at=datetime(2024, 3, 10)
            )
            await ledger.post_transaction(
                session, child.id, "spending", 50, created_at=datetime(2024, 3, 11)
            )

            result = await interest.accrue_interest(session, child.id, TODAY)
            # balance 70 minus 20 received in the last 30 days
            assert result.eligible_balance == Decimal("50.00")
            assert result.interest.amount == Decimal("2.50")

    asyncio.run(run())


def test_below_minimum_posts_nothing():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _child_with_config(session, "Dani")
            child_id = child.id
            await ledger.post_transaction(session, child_id, "earning", 4, created_at=LONG_AGO)

            result = await interest.accrue_interest(session, child_id, TODAY)
            assert result.interest is None
            assert result.skipped_reason == "eligible balance below minimum"
            assert child.balance == Decimal("4.00")
            config = await interest.get_config(session, child_id)
            assert config.last_interest_date is None

            await ledger.post_transaction(
                session, child_id, "earning", 100, created_at=datetime(2024, 3, 14)
            )
            result = await interest.accrue_interest(session, child_id, TODAY)
            assert result.eligible_balance == Decimal("4.00")
            assert result.posted is False

    asyncio.run(run())


def test_inactive_or_missing_config_is_noop():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await create_child(session, Child(name="Eva"))
            await ledger.post_transaction(session, child.id, "earning", 500, created_at=LONG_AGO)
            result = await interest.accrue_interest(session, child.id, TODAY)
            assert result.posted is False
            assert result.skipped_reason == "no active interest config"

            await interest.upsert_config(session, child.id, monthly_rate=10)
            await interest.deactivate_config(session, child.id)
            result = await interest.accrue_interest(session, child.id, TODAY)
            assert result.posted is False
            assert child.balance == Decimal("500.00")

    asyncio.run(run())


def test_goal_interest():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _child_with_config(session, "Fabi")
            await ledger.post_transaction(session, child.id, "earning", 200, created_at=LONG_AGO)
            old_goal = await create_goal(
                session,
                Goal(
                    child_id=child.id,
                    title="Bike",
                    target_amount=Decimal("500"),
                    current_amount=Decimal("100"),
                    created_at=datetime(2024, 2, 1),
                ),
            )
            new_goal = await create_goal(
                session,
                Goal(
                    child_id=child.id,
                    title="Game",
                    target_amount=Decimal("60"),
                    current_amount=Decimal("3"),
                    created_at=datetime(2024, 3, 10),
                ),
            )

            result = await interest.accrue_interest(session, child.id, TODAY)
            assert result.interest.amount == Decimal("20.00")
            assert len(result.goal_interest) == 1
            goal_tx = result.goal_interest[0]
            assert goal_tx.kind == "goal_interest"
            assert goal_tx.direction == "credit"
            assert goal_tx.amount == Decimal("10.00")
            assert goal_tx.related_goal_id == old_goal.id
            assert old_goal.current_amount == Decimal("110.00")
            assert new_goal.current_amount == Decimal("3.00")
            assert child.balance == Decimal("230.00")
            assert child.total_earned == Decimal("230.00")
            assert await ledger.calculate_balance(session, child.id) == Decimal("230.00")
            assert (await ledger.verify_balance(session, child.id))["matches"] is True

    asyncio.run(run())


def test_interest_applies_once_per_month():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _child_with_config(session, "Gabi")
            await ledger.post_transaction(session, child.id, "earning", 1000, created_at=LONG_AGO)

            first = await interest.accrue_interest(session, child.id, TODAY)
            assert first.posted
            again = await interest.accrue_interest(session, child.id, date(2024, 3, 31))
            assert again.posted is False
            assert again.skipped_reason == "already applied this month"
            assert child.balance == Decimal("1100.00")

            next_month = await interest.accrue_interest(session, child.id, date(2024, 4, 15))
            assert next_month.posted
            assert next_month.interest.amount == Decimal("100.00")

    asyncio.run(run())


def test_accrue_all_reports_each_child():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            rich = await _child_with_config(session, "Hugo")
            poor = await _child_with_config(session, "Iris")
            await create_child(session, Child(name="No config"))
            await ledger.post_transaction(session, rich.id, "earning", 100, created_at=LONG_AGO)
            await ledger.post_transaction(session, poor.id, "earning", 1, created_at=LONG_AGO)

            summary = await interest.accrue_all(session, TODAY)
            assert summary["total_children"] == 2
            assert summary["total_interest_applied"] == Decimal("10.00")
            statuses = {r["child_id"]: r["status"] for r in summary["results"]}
            assert statuses == {rich.id: "success", poor.id: "skipped"}

    asyncio.run(run())


def test_config_defaults_and_validation():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await create_child(session, Child(name="Joao"))
            with pytest.raises(NotFound):
                await interest.get_config(session, child.id)

            config = await interest.upsert_config(session, child.id)
            assert config.monthly_rate == Decimal("9.9")
            assert config.minimum_balance == Decimal("5.00")
            assert config.compound_frequency == "monthly"
            assert config.is_active is True

            config = await interest.upsert_config(session, child.id, monthly_rate="2.5")
            assert config.monthly_rate == Decimal("2.5")
            assert config.minimum_balance == Decimal("5.00")

            with pytest.raises(ValidationError):
                await interest.upsert_config(session, child.id, monthly_rate=101)
            with pytest.raises(ValidationError):
                await interest.upsert_config(session, child.id, minimum_balance=-1)
            with pytest.raises(ValidationError):
                await interest.upsert_config(session, child.id, compound_frequency="hourly")

    asyncio.run(run())


def test_rate_validation_and_preview():
    assert interest.validate_rate("9.9") == Decimal("9.9")
    assert interest.validate_rate(0) == Decimal("0")
    with pytest.raises(ValidationError):
        interest.validate_rate(-1)
    with pytest.raises(ValidationError):
        interest.validate_rate("abc")

    preview = interest.calculate_preview(1000, 10)
    assert preview == {
        "daily": Decimal("3.29"),
        "weekly": Decimal("23.08"),
        "monthly": Decimal("100.00"),
        "yearly": Decimal("1200.00"),
    }


def test_config_reads_raise_storage_unavailable():
    async def run():
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        TestSession = make_sessionmaker(engine)
        async with TestSession() as session:
            child = await _child_with_config(session, "Kiko")
            child_id = child.id

        async with engine.begin() as conn:
            await conn.exec_driver_sql(
                "ALTER TABLE interestconfig RENAME TO interestconfig_offline"
            )

        async with TestSession() as session:
            with pytest.raises(StorageUnavailable):
                await interest.get_config(session, child_id)
            with pytest.raises(StorageUnavailable):
                await interest.upsert_config(session, child_id, monthly_rate="5")
            with pytest.raises(StorageUnavailable):
                await interest.accrue_all(session, TODAY)
            # a single accrual runs inside its own unit of work
            with pytest.raises(StorageUnavailable):
                await interest.accrue_interest(session, child_id, TODAY)

    asyncio.run(run())
