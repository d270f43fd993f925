"""Fine Ledger: issuance, re-pricing and the pay / cancel / reverse lifecycle.

Loans are only ever read here, through ``loan_service.get_loan``.
"""

import logging
from typing import Callable, List, Optional
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lending.core.config import settings
from lending.core.exceptions import (
    NotFoundError,
    InvalidStateError,
    InvalidAmountError,
    DuplicateFineError,
    AlreadyPaidError,
    FineCancelledError,
    AlreadyCancelledError,
    CannotCancelPaidError,
    NotPaidError,
)
from lending.models.fine import Fine, FineStatus, FineType, FINE_TRANSITIONS, utcnow
from lending.services.loan_service import get_loan


logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
# largest value a Numeric(10, 2) column holds
MAX_FINE_AMOUNT = Decimal("99999999.99")


def overdue_days(due_date: date, today: date) -> int:
    return max(0, (today - due_date).days)


def late_fee(due_date: date, today: date, rate: Optional[Decimal] = None) -> Decimal:
    rate = Decimal(settings.DAILY_FINE_RATE if rate is None else rate)
    return (rate * overdue_days(due_date, today)).quantize(CENTS)


# --- READS ---

async def get_fine(session: AsyncSession, fine_id: int) -> Fine:
    fine = await session.get(Fine, fine_id, populate_existing=True)
    if not fine:
        raise NotFoundError(f"Fine not found with ID: {fine_id}")
    return fine


async def list_fines(
    session: AsyncSession,
    status: Optional[FineStatus] = None,
    member_id: Optional[int] = None,
    loan_id: Optional[int] = None,
) -> List[Fine]:
    stmt = select(Fine)
    if status is not None:
        stmt = stmt.where(Fine.status == status)
    if member_id is not None:
        stmt = stmt.where(Fine.member_id == member_id)
    if loan_id is not None:
        stmt = stmt.where(Fine.loan_id == loan_id)
    result = await session.execute(stmt.order_by(Fine.id).execution_options(populate_existing=True))
    return list(result.scalars().all())


async def find_active_fine(session: AsyncSession, loan_id: int, fine_type: FineType) -> Optional[Fine]:
    stmt = select(Fine).where(
        Fine.loan_id == loan_id,
        Fine.fine_type == fine_type,
        Fine.status != FineStatus.CANCELLED,
    )
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalars().first()


# Aggregates are recomputed from the rows on every call.
async def _sum_amount(session: AsyncSession, *criteria) -> Decimal:
    stmt = select(func.coalesce(func.sum(Fine.amount), 0)).where(*criteria)
    total = (await session.execute(stmt)).scalar_one()
    return Decimal(str(total)).quantize(CENTS)


async def total_pending(session: AsyncSession, member_id: Optional[int] = None) -> Decimal:
    criteria = [Fine.status == FineStatus.PENDING]
    if member_id is not None:
        criteria.append(Fine.member_id == member_id)
    return await _sum_amount(session, *criteria)


async def total_collected(session: AsyncSession) -> Decimal:
    return await _sum_amount(session, Fine.status == FineStatus.PAID)


# --- ISSUANCE ---

async def _reprice(session: AsyncSession, fine_id: int, amount: Decimal) -> Optional[Fine]:
    """Set a new amount on a still-active fine; None if it was cancelled meanwhile."""
    stmt = (
        update(Fine)
        .where(Fine.id == fine_id, Fine.status != FineStatus.CANCELLED)
        .values(amount=amount)
        .execution_options(synchronize_session=False)
    )
    if (await session.execute(stmt)).rowcount != 1:
        await session.rollback()
        return None
    await session.commit()
    logger.info("Late fine re-priced", extra={"fine_id": fine_id, "amount": str(amount)})
    return await get_fine(session, fine_id)


def _validate_amount(amount) -> Decimal:
    try:
        value = Decimal(amount)
    except (ArithmeticError, ValueError, TypeError) as exc:
        raise InvalidAmountError(f"Invalid fine amount: {amount!r}") from exc
    if not value.is_finite():
        raise InvalidAmountError(f"Invalid fine amount: {amount!r}")
    if value < 0:
        raise InvalidAmountError("Fine amount must not be negative")
    if value > MAX_FINE_AMOUNT:
        raise InvalidAmountError(f"Fine amount must not exceed {MAX_FINE_AMOUNT}")
    return value.quantize(CENTS)


async def create_fine(
    session: AsyncSession,
    loan_id: int,
    fine_type: FineType,
    amount: Optional[Decimal] = None,
    today: Optional[date] = None,
) -> Fine:
    """Issue a fine for a loan, or re-price the active LATE_RETURN fine.

    Without an explicit amount the fine is ``DAILY_FINE_RATE`` times the days
    past the loan's due date. A cancelled fine does not block a new one of the
    same type. Losing an insert race to another LATE_RETURN issuance re-prices
    the winner's row instead of failing.
    """
    today = today or date.today()
    explicit = _validate_amount(amount) if amount is not None else None

    loan = await get_loan(session, loan_id)
    member_id = loan.member_id
    computed = explicit if explicit is not None else late_fee(loan.due_date, today)
    if computed > MAX_FINE_AMOUNT:
        raise InvalidAmountError(f"Fine amount must not exceed {MAX_FINE_AMOUNT}")

    existing = await find_active_fine(session, loan_id, fine_type)
    if existing is not None:
        if fine_type != FineType.LATE_RETURN:
            raise DuplicateFineError(
                f"Fine already exists for loan ID: {loan_id} and TYPE: {fine_type.value}"
            )
        repriced = await _reprice(session, existing.id, computed)
        if repriced is not None:
            return repriced
        # cancelled in the meantime: the slot is free again

    fine = Fine(
        member_id=member_id,
        loan_id=loan_id,
        amount=computed,
        fine_type=fine_type,
        status=FineStatus.PENDING,
    )
    session.add(fine)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if fine_type == FineType.LATE_RETURN:
            winner = await find_active_fine(session, loan_id, fine_type)
            if winner is not None:
                repriced = await _reprice(session, winner.id, computed)
                if repriced is not None:
                    return repriced
        raise DuplicateFineError(
            f"Fine already exists for loan ID: {loan_id} and TYPE: {fine_type.value}"
        ) from exc
    await session.refresh(fine)

    logger.info(
        "Fine issued",
        extra={"fine_id": fine.id, "loan_id": loan_id, "fine_type": fine_type.value, "amount": str(computed)},
    )
    return fine


# --- LIFECYCLE ---

def _guard_pay(fine: Fine) -> None:
    if fine.status == FineStatus.PAID:
        raise AlreadyPaidError("Fine is already paid")
    if fine.status == FineStatus.CANCELLED:
        raise FineCancelledError("Cancelled fine cannot be paid")


def _guard_cancel(fine: Fine) -> None:
    if fine.status == FineStatus.CANCELLED:
        raise AlreadyCancelledError("Fine is already cancelled")
    if fine.status == FineStatus.PAID:
        raise CannotCancelPaidError("Cannot cancel a paid fine")


def _guard_reverse(fine: Fine) -> None:
    if fine.status != FineStatus.PAID:
        raise NotPaidError("Only paid fines can be reversed")


def ensure_fine_transition(fine: Fine, target: FineStatus) -> None:
    if target not in FINE_TRANSITIONS[fine.status]:
        raise InvalidStateError(
            f"Fine {fine.id} cannot move from {fine.status.value} to {target.value}"
        )


async def _transition(
    session: AsyncSession,
    fine_id: int,
    target: FineStatus,
    guard: Callable[[Fine], None],
    values: dict,
) -> Fine:
    fine = await get_fine(session, fine_id)
    guard(fine)
    ensure_fine_transition(fine, target)

    stmt = (
        update(Fine)
        .where(Fine.id == fine_id, Fine.status == fine.status)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if (await session.execute(stmt)).rowcount != 1:
        await session.rollback()
        # someone else moved it first; report against the state they left
        guard(await get_fine(session, fine_id))
        raise InvalidStateError(f"Fine {fine_id} changed state concurrently")
    await session.commit()

    logger.info("Fine status changed", extra={"fine_id": fine_id, "status": target.value})
    return await get_fine(session, fine_id)


async def pay_fine(session: AsyncSession, fine_id: int, now: Optional[datetime] = None) -> Fine:
    return await _transition(
        session, fine_id, FineStatus.PAID, _guard_pay, {"paid_at": now or utcnow()}
    )


async def cancel_fine(session: AsyncSession, fine_id: int) -> Fine:
    # paid_at is left alone; only PENDING fines can be cancelled and they have none
    return await _transition(session, fine_id, FineStatus.CANCELLED, _guard_cancel, {})


async def reverse_fine(session: AsyncSession, fine_id: int) -> Fine:
    return await _transition(session, fine_id, FineStatus.PENDING, _guard_reverse, {"paid_at": None})


async def delete_fine(session: AsyncSession, fine_id: int) -> bool:
    fine = await session.get(Fine, fine_id)
    if not fine:
        return False
    await session.delete(fine)
    await session.commit()
    logger.info("Fine deleted", extra={"fine_id": fine_id})
    return True
