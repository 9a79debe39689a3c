"""Tests for installment loans and loan requests."""

import asyncio
import pathlib
import sys
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from kidledger import crud, ledger, loans
from kidledger.crud import create_child
from kidledger.database import make_sessionmaker
from kidledger.exceptions import (
    AlreadyPaid,
    InsufficientBalance,
    InvalidState,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from kidledger.models import Child, LoanInstallment, LoanStatus

TODAY = date(2024, 1, 31)


async def _setup_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return make_sessionmaker(engine)


async def _setup_file_db(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'loans.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine, make_sessionmaker(engine)


async def _funded_child(session, name, amount):
    child = await create_child(session, Child(name=name))
    if amount:
        await ledger.post_transaction(session, child.id, "earning", amount)
    return child


def test_split_installments_sums_to_total():
    assert loans.split_installments(Decimal("100.00"), 3) == [
        Decimal("33.33"),
        Decimal("33.33"),
        Decimal("33.34"),
    ]
    assert loans.split_installments(Decimal("250.00"), 4) == [Decimal("62.50")] * 4
    assert loans.split_installments(Decimal("10.00"), 1) == [Decimal("10.00")]
    with pytest.raises(ValidationError):
        loans.split_installments(Decimal("0.05"), 10)
    # 1.00 / 201 rounds to 0.00, which would schedule empty installments
    with pytest.raises(ValidationError):
        loans.split_installments(Decimal("1.00"), 201)
    with pytest.raises(ValidationError):
        loans.split_installments(Decimal("10.00"), 0)


def test_create_loan_schedule():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _funded_child(session, "Ana", 0)
            loan = await loans.create_loan(session, child.id, None, "100", 3, today=TODAY)
            assert loan.status == "active"
            assert loan.installment_amount == Decimal("33.33")
            assert loan.paid_amount == Decimal("0.00")
            installments = sorted(loan.installments, key=lambda i: i.installment_number)
            assert [i.amount for i in installments] == [
                Decimal("33.33"),
                Decimal("33.33"),
                Decimal("33.34"),
            ]
            assert sum(i.amount for i in installments) == Decimal("100.00")
            assert [i.due_date for i in installments] == [
                date(2024, 2, 29),
                date(2024, 3, 31),
                date(2024, 4, 30),
            ]
            # creating a loan does not touch the balance
            assert child.balance == Decimal("0.00")

    asyncio.run(run())


def test_paying_every_installment_pays_off_loan():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _funded_child(session, "Bia", 300)
            loan = await loans.create_loan(session, child.id, None, "250.00", 4, today=TODAY)
            by_number = {i.installment_number: i.id for i in loan.installments}

            # any order is accepted
            for number in (3, 1, 4):
                paid = await loans.pay_installment(session, by_number[number], "allowance")
                assert paid.status == "paid"
                assert paid.paid_from == "allowance"
                assert paid.paid_date is not None
            loan = await crud.get_loan(session, loan.id)
            assert loan.status == "active"
            assert loan.paid_amount == Decimal("187.50")

            await loans.pay_installment(session, by_number[2], "gift")
            loan = await crud.get_loan(session, loan.id)
            assert loan.status == LoanStatus.PAID_OFF
            assert loan.paid_amount == Decimal("250.00")
            assert child.balance == Decimal("50.00")
            assert child.total_spent == Decimal("250.00")

            payments = await ledger.get_transactions(session, child.id, kind="spending")
            assert len(payments) == 4
            assert {tx.category for tx in payments} == {"loan_payment"}

    asyncio.run(run())


def test_double_payment_rejected():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _funded_child(session, "Caio", 100)
            child_id = child.id
            loan = await loans.create_loan(session, child_id, None, 60, 2, today=TODAY)
            first_id = loan.installments[0].id
            await loans.pay_installment(session, first_id)
            with pytest.raises(AlreadyPaid):
                await loans.pay_installment(session, first_id)
            child = await session.get(Child, child_id)
            assert child.balance == Decimal("70.00")
            with pytest.raises(NotFound):
                await loans.pay_installment(session, 999)
            with pytest.raises(ValidationError):
                await loans.pay_installment(session, first_id, "lottery")

    asyncio.run(run())


def test_failed_payment_changes_nothing():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _funded_child(session, "Dani", 10)
            child_id = child.id
            loan = await loans.create_loan(session, child_id, None, 100, 3, today=TODAY)
            loan_id = loan.id
            installment_id = loan.installments[0].id

            with pytest.raises(InsufficientBalance):
                await loans.pay_installment(session, installment_id)

            installment = await session.get(LoanInstallment, installment_id)
            assert installment.status == "pending"
            assert installment.paid_date is None
            loan = await crud.get_loan(session, loan_id)
            assert loan.paid_amount == Decimal("0.00")
            assert loan.status == "active"
            child = await session.get(Child, child_id)
            assert child.balance == Decimal("10.00")

    asyncio.run(run())


def test_cancel_loan():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _funded_child(session, "Eva", 100)
            loan = await loans.create_loan(session, child.id, None, 40, 2, today=TODAY)
            loan_id = loan.id
            first_id, second_id = sorted(i.id for i in loan.installments)
            await loans.pay_installment(session, first_id)

            cancelled = await loans.cancel_loan(session, loan_id)
            assert cancelled.status == "cancelled"
            # no refund of what was already paid
            assert cancelled.paid_amount == Decimal("20.00")

            with pytest.raises(InvalidState):
                await loans.cancel_loan(session, loan_id)
            with pytest.raises(InvalidState):
                await loans.pay_installment(session, second_id)
            with pytest.raises(NotFound):
                await loans.cancel_loan(session, 999)

    asyncio.run(run())


def test_display_status_and_badges():
    pending = LoanInstallment(
        loan_id=1, installment_number=1, amount=Decimal("5"), due_date=date(2024, 2, 1)
    )
    paid = LoanInstallment(
        loan_id=1,
        installment_number=2,
        amount=Decimal("5"),
        due_date=date(2024, 2, 1),
        status="paid",
    )
    assert loans.installment_display_status(pending, date(2024, 2, 1)) == "pending"
    assert loans.installment_display_status(pending, date(2024, 2, 2)) == "overdue"
    assert loans.installment_display_status(paid, date(2024, 3, 1)) == "paid"

    assert loans.loan_status_badge("active") == "ongoing"
    assert loans.loan_status_badge("paid_off") == "success"
    assert loans.loan_status_badge("cancelled") == "aborted"


def test_loan_request_flow():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _funded_child(session, "Fabi", 0)
            child_id = child.id
            request = await loans.create_loan_request(session, child_id, "New bike", "90")
            assert request.status == "pending"
            assert request.category == "loan"
            request_id = request.id

            loan = await loans.approve_loan_request(
                session, request_id, 3, "pay it back", today=TODAY
            )
            assert loan.purchase_request_id == request_id
            assert loan.total_amount == Decimal("90.00")
            assert len(loan.installments) == 3
            request = await crud.get_purchase_request(session, request_id)
            assert request.status == "approved"
            assert request.parent_note == "pay it back"

            with pytest.raises(InvalidState):
                await loans.approve_loan_request(session, request_id, 3)

            other = await loans.create_loan_request(session, child_id, "Game", 30)
            rejected = await loans.reject_loan_request(session, other.id, "not now")
            assert rejected.status == "rejected"

            requests = await loans.get_loan_requests(session, child_id)
            assert {r.status for r in requests} == {"approved", "rejected"}
            assert len(await loans.get_loans_by_child(session, child_id)) == 1

            with pytest.raises(ValidationError):
                await loans.create_loan_request(session, child_id, " ", 10)
            with pytest.raises(NotFound):
                await loans.approve_loan_request(session, 999, 2)

    asyncio.run(run())


def test_loan_details():
    async def run():
        TestSession = await _setup_db()
        async with TestSession() as session:
            child = await _funded_child(session, "Gabi", 50)
            loan = await loans.create_loan(session, child.id, None, 30, 3, today=TODAY)
            second = sorted(loan.installments, key=lambda i: i.installment_number)[1]
            await loans.pay_installment(session, second.id)

            details = await loans.get_loan_details(session, loan.id, today=date(2024, 3, 5))
            assert details["badge"] == "ongoing"
            assert details["remaining_amount"] == Decimal("20.00")
            assert details["paid_installments"] == 1
            assert details["pending_installments"] == 2
            assert details["next_due_date"] == date(2024, 2, 29)
            assert [i["display_status"] for i in details["installments"]] == [
                "overdue",
                "paid",
                "pending",
            ]

    asyncio.run(run())


def test_concurrent_payments_of_one_installment_charge_once(tmp_path):
    async def run():
        engine, TestSession = await _setup_file_db(tmp_path)
        async with TestSession() as setup:
            child = await _funded_child(setup, "Hugo", 100)
            child_id = child.id
            loan = await loans.create_loan(setup, child_id, None, 100, 2, today=TODAY)
            loan_id = loan.id
            first_id = min(i.id for i in loan.installments)

        async def pay(installment_id):
            async with TestSession() as session:
                paid = await loans.pay_installment(session, installment_id)
                return paid.status

        outcomes = await asyncio.gather(
            pay(first_id), pay(first_id), return_exceptions=True
        )
        assert sorted(type(o).__name__ for o in outcomes) == ["AlreadyPaid", "str"]

        async with TestSession() as session:
            child = await session.get(Child, child_id)
            assert child.balance == Decimal("50.00")
            payments = await ledger.get_transactions(session, child_id, kind="spending")
            assert len(payments) == 1
            loan = await crud.get_loan(session, loan_id)
            assert loan.paid_amount == Decimal("50.00")
            assert loan.status == "active"
        await engine.dispose()

    asyncio.run(run())


def test_concurrent_payments_of_different_installments_pay_off_loan(tmp_path):
    async def run():
        engine, TestSession = await _setup_file_db(tmp_path)
        async with TestSession() as setup:
            child = await _funded_child(setup, "Iris", 100)
            child_id = child.id
            loan = await loans.create_loan(setup, child_id, None, 100, 2, today=TODAY)
            loan_id = loan.id
            first_id, second_id = sorted(i.id for i in loan.installments)

        async def pay(installment_id):
            async with TestSession() as session:
                await loans.pay_installment(session, installment_id)

        await asyncio.gather(pay(first_id), pay(second_id))

        async with TestSession() as session:
            loan = await crud.get_loan(session, loan_id)
            assert loan.paid_amount == Decimal("100.00")
            assert loan.status == "paid_off"
            assert {i.status for i in loan.installments} == {"paid"}
            child = await session.get(Child, child_id)
            assert child.balance == Decimal("0.00")
            assert (await ledger.verify_balance(session, child_id))["matches"] is True
        await engine.dispose()

    asyncio.run(run())


def test_installment_loaded_earlier_is_reread_before_payment(tmp_path):
    async def run():
        engine, TestSession = await _setup_file_db(tmp_path)
        async with TestSession() as setup:
            child = await _funded_child(setup, "Joao", 100)
            child_id = child.id
            loan = await loans.create_loan(setup, child_id, None, 60, 2, today=TODAY)
            loan_id = loan.id
            first_id, second_id = sorted(i.id for i in loan.installments)

        async with TestSession() as stale, TestSession() as other:
            cached = await crud.get_loan(stale, loan_id)
            assert cached.paid_amount == Decimal("0.00")
            await loans.pay_installment(other, first_id)

            with pytest.raises(AlreadyPaid):
                await loans.pay_installment(stale, first_id)
            await loans.pay_installment(stale, second_id)
            loan = await crud.get_loan(stale, loan_id)
            assert loan.paid_amount == Decimal("60.00")
            assert loan.status == "paid_off"
            child = await stale.get(Child, child_id, populate_existing=True)
            assert child.balance == Decimal("40.00")
        await engine.dispose()

    asyncio.run(run())


def test_loan_reads_raise_storage_unavailable():
    async def run():
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        TestSession = make_sessionmaker(engine)
        async with TestSession() as session:
            child = await _funded_child(session, "Kiko", 50)
            child_id = child.id
            loan = await loans.create_loan(session, child_id, None, 20, 2, today=TODAY)
            loan_id = loan.id
            installment_id = loan.installments[0].id

        async with engine.begin() as conn:
            await conn.exec_driver_sql("ALTER TABLE loan RENAME TO loan_offline")

        async with TestSession() as session:
            with pytest.raises(StorageUnavailable):
                await loans.get_loan_details(session, loan_id)
            with pytest.raises(StorageUnavailable):
                await loans.get_loans_by_child(session, child_id)
            with pytest.raises(StorageUnavailable):
                await loans.pay_installment(session, installment_id)
            with pytest.raises(StorageUnavailable):
                await loans.cancel_loan(session, loan_id)

        async with engine.begin() as conn:
            await conn.exec_driver_sql("ALTER TABLE loan_offline RENAME TO loan")

        async with TestSession() as session:
            child = await session.get(Child, child_id)
            assert child.balance == Decimal("50.00")

    asyncio.run(run())
