from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from lending.core.config import settings
from lending.core.exceptions import (
    AlreadyCancelledError,
    AlreadyPaidError,
    CannotCancelPaidError,
    DuplicateFineError,
    FineCancelledError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    NotPaidError,
)
from lending.models.fine import Fine, FineStatus, FineType
from lending.models.loan import LoanStatus
from lending.services import fine_service
from lending.services.fine_service import (
    MAX_FINE_AMOUNT,
    cancel_fine,
    create_fine,
    delete_fine,
    get_fine,
    late_fee,
    list_fines,
    overdue_days,
    pay_fine,
    reverse_fine,
    total_collected,
    total_pending,
)

from conftest import TODAY, add_loan


RATE = Decimal(settings.DAILY_FINE_RATE)


async def overdue_loan(session, days_late=10, member_id=1):
    return await add_loan(
        session,
        member_id=member_id,
        borrow_date=TODAY - timedelta(days=days_late + 14),
        due_date=TODAY - timedelta(days=days_late),
        status=LoanStatus.OVERDUE,
    )


def test_overdue_days_never_negative():
    assert overdue_days(date(2026, 1, 10), date(2026, 1, 5)) == 0
    assert overdue_days(date(2026, 1, 10), date(2026, 1, 10)) == 0
    assert overdue_days(date(2026, 1, 10), date(2026, 1, 13)) == 3


def test_late_fee_is_rate_times_days():
    assert late_fee(date(2026, 1, 1), date(2026, 1, 11), rate=Decimal("10.00")) == Decimal("100.00")
    assert late_fee(date(2026, 1, 1), date(2026, 1, 4), rate=Decimal("0.333")) == Decimal("1.00")
    assert late_fee(date(2026, 1, 1), date(2025, 12, 1), rate=Decimal("10.00")) == Decimal("0.00")


async def test_late_fine_priced_from_due_date(session):
    loan = await overdue_loan(session, days_late=10)

    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)

    assert fine.status == FineStatus.PENDING
    assert fine.member_id == loan.member_id
    assert fine.amount == (RATE * 10).quantize(Decimal("0.01"))
    assert fine.paid_at is None
    assert fine.issued_at is not None


async def test_late_fine_reissue_reprices_in_place(session):
    loan = await overdue_loan(session, days_late=10)
    first = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)

    second = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY + timedelta(days=1))

    assert second.id == first.id
    assert second.amount == (RATE * 11).quantize(Decimal("0.01"))
    assert len(await list_fines(session, loan_id=loan.id)) == 1


async def test_paid_late_fine_is_repriced_and_stays_paid(session):
    loan = await overdue_loan(session, days_late=2)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    await pay_fine(session, fine.id)

    repriced = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY + timedelta(days=1))

    assert repriced.id == fine.id
    assert repriced.status == FineStatus.PAID
    assert repriced.amount == (RATE * 3).quantize(Decimal("0.01"))


async def test_fine_for_loan_not_yet_due_is_zero(session):
    loan = await add_loan(session, due_date=TODAY + timedelta(days=4))

    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)

    assert fine.amount == Decimal("0.00")


async def test_explicit_amount_is_used(session):
    loan = await overdue_loan(session)

    fine = await create_fine(session, loan.id, FineType.DAMAGED_ITEM, amount=Decimal("42.5"), today=TODAY)

    assert fine.amount == Decimal("42.50")
    assert fine.fine_type == FineType.DAMAGED_ITEM


async def test_negative_amount_rejected(session):
    loan = await overdue_loan(session)

    with pytest.raises(InvalidAmountError):
        await create_fine(session, loan.id, FineType.LOST_ITEM, amount=Decimal("-1"), today=TODAY)

    assert await list_fines(session) == []


async def test_fine_for_unknown_loan(session):
    with pytest.raises(NotFoundError):
        await create_fine(session, 999, FineType.LATE_RETURN, today=TODAY)


async def test_second_damage_fine_is_a_duplicate(session):
    loan = await overdue_loan(session)
    await create_fine(session, loan.id, FineType.DAMAGED_ITEM, amount=Decimal("20"), today=TODAY)

    with pytest.raises(DuplicateFineError):
        await create_fine(session, loan.id, FineType.DAMAGED_ITEM, amount=Decimal("30"), today=TODAY)

    fines = await list_fines(session, loan_id=loan.id)
    assert len(fines) == 1
    assert fines[0].amount == Decimal("20.00")


async def test_paid_damage_fine_still_blocks_a_new_one(session):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.DAMAGED_ITEM, amount=Decimal("20"), today=TODAY)
    await pay_fine(session, fine.id)

    with pytest.raises(DuplicateFineError):
        await create_fine(session, loan.id, FineType.DAMAGED_ITEM, amount=Decimal("20"), today=TODAY)


async def test_different_types_coexist(session):
    loan = await overdue_loan(session)
    await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    await create_fine(session, loan.id, FineType.LOST_ITEM, amount=Decimal("500"), today=TODAY)

    assert len(await list_fines(session, loan_id=loan.id)) == 2


async def test_cancelled_fine_frees_the_slot(session):
    loan = await overdue_loan(session)
    old = await create_fine(session, loan.id, FineType.DAMAGED_ITEM, amount=Decimal("20"), today=TODAY)
    await cancel_fine(session, old.id)

    new = await create_fine(session, loan.id, FineType.DAMAGED_ITEM, amount=Decimal("15"), today=TODAY)

    assert new.id != old.id
    assert new.status == FineStatus.PENDING
    assert (await get_fine(session, old.id)).status == FineStatus.CANCELLED
    active = [f for f in await list_fines(session, loan_id=loan.id) if f.status != FineStatus.CANCELLED]
    assert [f.id for f in active] == [new.id]


async def test_cancelled_late_fine_is_replaced_not_repriced(session):
    loan = await overdue_loan(session, days_late=1)
    old = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    await cancel_fine(session, old.id)

    new = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY + timedelta(days=1))

    assert new.id != old.id
    assert (await get_fine(session, old.id)).amount == (RATE * 1).quantize(Decimal("0.01"))


async def test_database_rejects_two_active_fines_of_one_type(session):
    loan = await overdue_loan(session)
    session.add_all(
        [
            Fine(member_id=1, loan_id=loan.id, amount=Decimal("1"), fine_type=FineType.LOST_ITEM),
            Fine(member_id=1, loan_id=loan.id, amount=Decimal("2"), fine_type=FineType.LOST_ITEM),
        ]
    )
    with pytest.raises(IntegrityError):
        await session.commit()
    await session.rollback()


async def test_pay_sets_paid_at(session):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    paid_at = datetime(2026, 3, 11, 9, 30, tzinfo=timezone.utc)

    paid = await pay_fine(session, fine.id, now=paid_at)

    assert paid.status == FineStatus.PAID
    # SQLite hands back naive values; PostgreSQL keeps the zone
    assert paid.paid_at.replace(tzinfo=timezone.utc) == paid_at


async def test_pay_twice_rejected(session):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    await pay_fine(session, fine.id)

    with pytest.raises(AlreadyPaidError):
        await pay_fine(session, fine.id)


async def test_pay_cancelled_rejected(session):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    await cancel_fine(session, fine.id)

    with pytest.raises(FineCancelledError):
        await pay_fine(session, fine.id)


async def test_cancel_rules(session):
    loan = await overdue_loan(session)
    pending = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    paid = await create_fine(session, loan.id, FineType.LOST_ITEM, amount=Decimal("50"), today=TODAY)
    await pay_fine(session, paid.id)

    cancelled = await cancel_fine(session, pending.id)
    assert cancelled.status == FineStatus.CANCELLED
    assert cancelled.paid_at is None

    with pytest.raises(AlreadyCancelledError):
        await cancel_fine(session, pending.id)
    with pytest.raises(CannotCancelPaidError):
        await cancel_fine(session, paid.id)


async def test_reverse_paid_fine(session):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    await pay_fine(session, fine.id)

    reversed_fine = await reverse_fine(session, fine.id)

    assert reversed_fine.status == FineStatus.PENDING
    assert reversed_fine.paid_at is None


async def test_reverse_requires_paid(session):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)

    with pytest.raises(NotPaidError):
        await reverse_fine(session, fine.id)

    await cancel_fine(session, fine.id)
    with pytest.raises(NotPaidError):
        await reverse_fine(session, fine.id)


def test_lifecycle_errors_are_invalid_state():
    assert issubclass(AlreadyPaidError, InvalidStateError)
    assert issubclass(CannotCancelPaidError, InvalidStateError)
    assert issubclass(NotPaidError, InvalidStateError)


async def test_transitions_on_unknown_fine(session):
    for operation in (pay_fine, cancel_fine, reverse_fine):
        with pytest.raises(NotFoundError):
            await operation(session, 4242)


async def test_delete_fine(session):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)

    assert await delete_fine(session, fine.id) is True
    assert await delete_fine(session, fine.id) is False
    with pytest.raises(NotFoundError):
        await get_fine(session, fine.id)


async def test_totals_follow_the_rows(session):
    loan_a = await overdue_loan(session, member_id=1)
    loan_b = await overdue_loan(session, member_id=2)
    a1 = await create_fine(session, loan_a.id, FineType.DAMAGED_ITEM, amount=Decimal("10.25"), today=TODAY)
    await create_fine(session, loan_a.id, FineType.LOST_ITEM, amount=Decimal("5.50"), today=TODAY)
    b1 = await create_fine(session, loan_b.id, FineType.DAMAGED_ITEM, amount=Decimal("7"), today=TODAY)
    b2 = await create_fine(session, loan_b.id, FineType.LOST_ITEM, amount=Decimal("3"), today=TODAY)

    await pay_fine(session, a1.id)
    await cancel_fine(session, b2.id)

    assert await total_pending(session) == Decimal("12.50")
    assert await total_pending(session, member_id=1) == Decimal("5.50")
    assert await total_pending(session, member_id=2) == Decimal("7.00")
    assert await total_collected(session) == Decimal("10.25")

    await reverse_fine(session, a1.id)
    await delete_fine(session, b1.id)

    assert await total_pending(session) == Decimal("15.75")
    assert await total_collected(session) == Decimal("0.00")


async def test_totals_empty(session):
    assert await total_pending(session) == Decimal("0.00")
    assert await total_pending(session, member_id=3) == Decimal("0.00")
    assert await total_collected(session) == Decimal("0.00")


async def test_list_fines_by_status_and_member(session):
    loan_a = await overdue_loan(session, member_id=1)
    loan_b = await overdue_loan(session, member_id=2)
    fa = await create_fine(session, loan_a.id, FineType.LATE_RETURN, today=TODAY)
    await create_fine(session, loan_b.id, FineType.LATE_RETURN, today=TODAY)
    await pay_fine(session, fa.id)

    assert [f.id for f in await list_fines(session, status=FineStatus.PAID)] == [fa.id]
    assert len(await list_fines(session, status=FineStatus.PENDING)) == 1
    assert len(await list_fines(session, member_id=2)) == 1


async def test_default_timestamps_are_utc_aware(session):
    loan = await overdue_loan(session)

    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    paid = await pay_fine(session, fine.id)

    for stamp in (fine.issued_at, paid.paid_at):
        assert stamp is not None
        if stamp.tzinfo is not None:
            assert stamp.utcoffset() == timedelta(0)


async def test_amount_above_column_range_rejected(session):
    loan = await overdue_loan(session)

    for amount in (Decimal("1e30"), Decimal("123456789012.34"), MAX_FINE_AMOUNT + Decimal("0.01")):
        with pytest.raises(InvalidAmountError):
            await create_fine(session, loan.id, FineType.LOST_ITEM, amount=amount, today=TODAY)

    assert await list_fines(session) == []


async def test_non_finite_amount_rejected(session):
    loan = await overdue_loan(session)

    for amount in (Decimal("NaN"), Decimal("Infinity")):
        with pytest.raises(InvalidAmountError):
            await create_fine(session, loan.id, FineType.LOST_ITEM, amount=amount, today=TODAY)


async def test_largest_amount_accepted(session):
    loan = await overdue_loan(session)

    fine = await create_fine(session, loan.id, FineType.LOST_ITEM, amount=MAX_FINE_AMOUNT, today=TODAY)

    assert fine.amount == MAX_FINE_AMOUNT


async def test_lost_insert_race_is_a_duplicate(session, monkeypatch):
    loan = await overdue_loan(session)
    loan_id = loan.id
    first = await create_fine(session, loan_id, FineType.DAMAGED_ITEM, amount=Decimal("20"), today=TODAY)
    first_id = first.id

    # the competing request read "no active fine" before the first one committed
    async def nothing_active(session, loan_id, fine_type):
        return None

    monkeypatch.setattr(fine_service, "find_active_fine", nothing_active)

    with pytest.raises(DuplicateFineError):
        await create_fine(session, loan_id, FineType.DAMAGED_ITEM, amount=Decimal("30"), today=TODAY)

    monkeypatch.undo()
    fines = await list_fines(session, loan_id=loan_id)
    assert [f.id for f in fines] == [first_id]
    assert fines[0].amount == Decimal("20.00")
    assert fines[0].status == FineStatus.PENDING


async def test_lost_late_fine_race_reprices_the_winner(session, monkeypatch):
    loan = await overdue_loan(session, days_late=10)
    loan_id = loan.id
    winner = await create_fine(session, loan_id, FineType.LATE_RETURN, today=TODAY)
    winner_id = winner.id
    real_find = fine_service.find_active_fine
    calls = []

    async def stale_then_real(session, loan_id, fine_type):
        calls.append(loan_id)
        if len(calls) == 1:
            return None
        return await real_find(session, loan_id, fine_type)

    monkeypatch.setattr(fine_service, "find_active_fine", stale_then_real)

    fine = await create_fine(session, loan_id, FineType.LATE_RETURN, today=TODAY + timedelta(days=2))

    assert fine.id == winner_id
    assert fine.amount == (RATE * 12).quantize(Decimal("0.01"))
    assert len(calls) == 2
    monkeypatch.undo()
    assert len(await list_fines(session, loan_id=loan_id)) == 1


async def test_late_fine_cancelled_between_read_and_reprice(session, monkeypatch):
    loan = await overdue_loan(session, days_late=1)
    loan_id = loan.id
    old = await create_fine(session, loan_id, FineType.LATE_RETURN, today=TODAY)
    old_id = old.id
    stale = Fine(
        id=old_id,
        member_id=1,
        loan_id=loan_id,
        amount=old.amount,
        fine_type=FineType.LATE_RETURN,
        status=FineStatus.PENDING,
    )
    await cancel_fine(session, old_id)

    async def stale_read(session, loan_id, fine_type):
        return stale

    monkeypatch.setattr(fine_service, "find_active_fine", stale_read)

    new = await create_fine(session, loan_id, FineType.LATE_RETURN, today=TODAY + timedelta(days=1))
    new_id = new.id

    monkeypatch.undo()
    assert new_id != old_id
    assert new.status == FineStatus.PENDING
    assert new.amount == (RATE * 2).quantize(Decimal("0.01"))
    old_row = await get_fine(session, old_id)
    assert old_row.status == FineStatus.CANCELLED
    assert old_row.amount == (RATE * 1).quantize(Decimal("0.01"))


async def test_pay_over_a_stale_read_reports_current_state(session, monkeypatch):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LATE_RETURN, today=TODAY)
    fine_id = fine.id
    first_paid_at = datetime(2026, 3, 11, 8, 0, tzinfo=timezone.utc)
    await pay_fine(session, fine_id, now=first_paid_at)
    stale = Fine(
        id=fine_id,
        member_id=1,
        loan_id=loan.id,
        amount=fine.amount,
        fine_type=FineType.LATE_RETURN,
        status=FineStatus.PENDING,
    )
    real_get = fine_service.get_fine
    reads = []

    async def stale_first(session, fine_id):
        reads.append(fine_id)
        if len(reads) == 1:
            return stale
        return await real_get(session, fine_id)

    monkeypatch.setattr(fine_service, "get_fine", stale_first)

    with pytest.raises(AlreadyPaidError):
        await pay_fine(session, fine_id, now=datetime(2026, 3, 12, tzinfo=timezone.utc))

    monkeypatch.undo()
    row = await get_fine(session, fine_id)
    assert row.status == FineStatus.PAID
    assert row.paid_at.replace(tzinfo=timezone.utc) == first_paid_at


async def test_cancel_over_a_stale_read_reports_current_state(session, monkeypatch):
    loan = await overdue_loan(session)
    fine = await create_fine(session, loan.id, FineType.LOST_ITEM, amount=Decimal("40"), today=TODAY)
    fine_id = fine.id
    await pay_fine(session, fine_id)
    stale = Fine(
        id=fine_id,
        member_id=1,
        loan_id=loan.id,
        amount=fine.amount,
        fine_type=FineType.LOST_ITEM,
        status=FineStatus.PENDING,
    )
    real_get = fine_service.get_fine
    reads = []

    async def stale_first(session, fine_id):
        reads.append(fine_id)
        return stale if len(reads) == 1 else await real_get(session, fine_id)

    monkeypatch.setattr(fine_service, "get_fine", stale_first)

    with pytest.raises(CannotCancelPaidError):
        await cancel_fine(session, fine_id)

    monkeypatch.undo()
    assert (await get_fine(session, fine_id)).status == FineStatus.PAID
