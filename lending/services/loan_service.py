"""Loan Ledger: the borrow / return / overdue state machine.

The catalog's available-copy counter is changed *before* the local write, so a
failed catalog call never leaves a loan behind. Borrow compensates its decrement
when the local write fails afterwards; return does not, and the caller retries.
"""

import logging
from typing import Dict, List, Optional, Iterable
from datetime import date, timedelta

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lending.core.config import settings
from lending.core.exceptions import (
    LendingError,
    NotFoundError,
    InvalidStateError,
    LimitExceededError,
    NoCopiesAvailableError,
)
from lending.models.loan import Loan, LoanStatus, LOAN_TRANSITIONS, ACTIVE_LOAN_STATUSES
from lending.services.collaborators import CatalogClient, MemberClient


logger = logging.getLogger(__name__)


def ensure_loan_transition(loan: Loan, target: LoanStatus) -> None:
    if target not in LOAN_TRANSITIONS[loan.status]:
        if target == LoanStatus.RETURNED:
            raise InvalidStateError(f"Loan {loan.id} is not currently borrowed (status {loan.status.value})")
        raise InvalidStateError(
            f"Loan {loan.id} cannot move from {loan.status.value} to {target.value}"
        )


async def _apply_transition(
    session: AsyncSession, loan_id: int, expected: Iterable[LoanStatus], values: dict
) -> bool:
    """Conditional UPDATE; only succeeds while the row is still in one of ``expected``."""
    stmt = (
        update(Loan)
        .where(Loan.id == loan_id, Loan.status.in_(list(expected)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


# --- READS (contract used by the Fine Ledger and the reconciliation job) ---

async def get_loan(session: AsyncSession, loan_id: int) -> Loan:
    loan = await session.get(Loan, loan_id, populate_existing=True)
    if not loan:
        raise NotFoundError(f"Loan not found with ID: {loan_id}")
    return loan


async def list_loans(
    session: AsyncSession,
    status: Optional[LoanStatus] = None,
    member_id: Optional[int] = None,
    item_id: Optional[int] = None,
) -> List[Loan]:
    stmt = select(Loan)
    if status is not None:
        stmt = stmt.where(Loan.status == status)
    if member_id is not None:
        stmt = stmt.where(Loan.member_id == member_id)
    if item_id is not None:
        stmt = stmt.where(Loan.item_id == item_id)
    result = await session.execute(stmt.order_by(Loan.id).execution_options(populate_existing=True))
    return list(result.scalars().all())


async def get_loans_by_ids(session: AsyncSession, loan_ids: Iterable[int]) -> Dict[int, Loan]:
    ids = set(loan_ids)
    if not ids:
        return {}
    stmt = select(Loan).where(Loan.id.in_(ids)).execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return {loan.id: loan for loan in result.scalars().all()}


async def count_active_loans(session: AsyncSession, member_id: int) -> int:
    stmt = (
        select(func.count())
        .select_from(Loan)
        .where(Loan.member_id == member_id, Loan.status.in_(ACTIVE_LOAN_STATUSES))
    )
    return int((await session.execute(stmt)).scalar_one())


# --- WRITES ---

async def _compensate_decrement(catalog: CatalogClient, item_id: int) -> None:
    try:
        await catalog.adjust_availability(item_id, +1)
    except LendingError as exc:
        logger.error(
            "Compensating availability increment failed; catalog count is one short",
            extra={"item_id": item_id, "error": str(exc)},
        )
    else:
        logger.info("Compensated availability decrement", extra={"item_id": item_id})


async def borrow(
    session: AsyncSession,
    catalog: CatalogClient,
    members: MemberClient,
    member_id: int,
    item_id: int,
    due_date: Optional[date] = None,
    today: Optional[date] = None,
) -> Loan:
    today = today or date.today()

    active = await count_active_loans(session, member_id)
    if active >= settings.MAX_ACTIVE_LOANS:
        raise LimitExceededError(
            f"Member {member_id} has reached the maximum of {settings.MAX_ACTIVE_LOANS} active loans"
        )

    item = await catalog.get_item(item_id)
    if item.available_copies <= 0:
        raise NoCopiesAvailableError(f"No available copies for item ID: {item_id}")

    await members.get_member(member_id)

    # external side effect first; a failure here means no loan exists
    await catalog.adjust_availability(item_id, -1)

    loan = Loan(
        item_id=item_id,
        member_id=member_id,
        borrow_date=today,
        due_date=due_date or today + timedelta(days=settings.LOAN_PERIOD_DAYS),
        status=LoanStatus.BORROWED,
    )
    session.add(loan)
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Persisting loan failed after availability decrement", extra={"item_id": item_id})
        await _compensate_decrement(catalog, item_id)
        raise
    await session.refresh(loan)

    logger.info(
        "Loan created",
        extra={"loan_id": loan.id, "member_id": member_id, "item_id": item_id, "due_date": str(loan.due_date)},
    )
    return loan


async def return_loan(
    session: AsyncSession,
    catalog: CatalogClient,
    loan_id: int,
    today: Optional[date] = None,
) -> Loan:
    """Return a BORROWED or OVERDUE loan.

    If the availability increment fails the loan is left as it was and the
    caller must retry. If the increment succeeded but the local write does not
    apply, the catalog count is ahead by one; that is logged, not repaired.
    """
    today = today or date.today()
    loan = await get_loan(session, loan_id)
    ensure_loan_transition(loan, LoanStatus.RETURNED)
    item_id = loan.item_id

    await catalog.adjust_availability(item_id, +1)

    applied = await _apply_transition(
        session,
        loan_id,
        ACTIVE_LOAN_STATUSES,
        {"status": LoanStatus.RETURNED, "return_date": today},
    )
    if not applied:
        await session.rollback()
        logger.error(
            "Loan changed state during return; availability was already incremented",
            extra={"loan_id": loan_id, "item_id": item_id},
        )
        raise InvalidStateError(f"Loan {loan_id} is not currently borrowed")
    await session.commit()

    logger.info("Loan returned", extra={"loan_id": loan_id, "item_id": item_id})
    return await get_loan(session, loan_id)


async def promote_overdue(session: AsyncSession, as_of: Optional[date] = None) -> List[int]:
    """Move every BORROWED loan whose due date is before ``as_of`` to OVERDUE.

    Returns the ids this call actually changed; a second call with the same
    date returns an empty list.
    """
    as_of = as_of or date.today()
    stmt = (
        select(Loan.id)
        .where(Loan.status == LoanStatus.BORROWED, Loan.due_date < as_of)
        .order_by(Loan.id)
    )
    candidates = (await session.execute(stmt)).scalars().all()

    promoted: List[int] = []
    for loan_id in candidates:
        if await _apply_transition(session, loan_id, (LoanStatus.BORROWED,), {"status": LoanStatus.OVERDUE}):
            promoted.append(loan_id)
    await session.commit()

    logger.info("Overdue loans promoted", extra={"as_of": str(as_of), "count": len(promoted)})
    return promoted
