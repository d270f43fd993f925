from typing import List, Optional
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from lending.core.database import get_session
from lending.models.fine import Fine, FineStatus, FineType
from lending.schemas.fine import FineRead, FineTotal, MemberFineTotal
from lending.schemas.loan import LoanRead
from lending.services import fine_service, loan_service

router = APIRouter(prefix="/fines", tags=["fines"])


async def _with_loans(session: AsyncSession, fines: List[Fine]) -> List[FineRead]:
    loans = await loan_service.get_loans_by_ids(session, (f.loan_id for f in fines))
    out = []
    for fine in fines:
        item = FineRead.model_validate(fine)
        if fine.loan_id in loans:
            item.loan = LoanRead.model_validate(loans[fine.loan_id])
        out.append(item)
    return out


async def _with_loan(session: AsyncSession, fine: Fine) -> FineRead:
    return (await _with_loans(session, [fine]))[0]


# Aggregates (declared before /{fine_id} so they are matched first)
@router.get("/pending", response_model=FineTotal)
async def get_total_pending(session: AsyncSession = Depends(get_session)):
    return FineTotal(total=await fine_service.total_pending(session))


@router.get("/collected", response_model=FineTotal)
async def get_total_collected(session: AsyncSession = Depends(get_session)):
    return FineTotal(total=await fine_service.total_collected(session))


@router.get("/member/{member_id}/total", response_model=MemberFineTotal)
async def get_member_pending_total(member_id: int, session: AsyncSession = Depends(get_session)):
    total = await fine_service.total_pending(session, member_id=member_id)
    return MemberFineTotal(member_id=member_id, total_pending=total)


@router.get("", response_model=List[FineRead])
async def get_fines(
    status: Optional[FineStatus] = None,
    member_id: Optional[int] = None,
    loan_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
):
    """List fines. The notification service polls this with ``status=PENDING``."""
    fines = await fine_service.list_fines(session, status=status, member_id=member_id, loan_id=loan_id)
    return await _with_loans(session, fines)


@router.post("/{loan_id}/{fine_type}", response_model=FineRead)
async def create_fine(
    loan_id: int,
    fine_type: FineType,
    amount: Optional[Decimal] = Query(
        default=None, ge=0, le=fine_service.MAX_FINE_AMOUNT, max_digits=10, decimal_places=2
    ),
    session: AsyncSession = Depends(get_session),
):
    fine = await fine_service.create_fine(session, loan_id, fine_type, amount=amount)
    return await _with_loan(session, fine)


@router.get("/{fine_id}", response_model=FineRead)
async def get_fine(fine_id: int, session: AsyncSession = Depends(get_session)):
    return await _with_loan(session, await fine_service.get_fine(session, fine_id))


@router.put("/{fine_id}/pay", response_model=FineRead)
async def pay_fine(fine_id: int, session: AsyncSession = Depends(get_session)):
    return await _with_loan(session, await fine_service.pay_fine(session, fine_id))


@router.put("/{fine_id}/cancel", response_model=FineRead)
async def cancel_fine(fine_id: int, session: AsyncSession = Depends(get_session)):
    return await _with_loan(session, await fine_service.cancel_fine(session, fine_id))


@router.put("/{fine_id}/reverse", response_model=FineRead)
async def reverse_fine(fine_id: int, session: AsyncSession = Depends(get_session)):
    return await _with_loan(session, await fine_service.reverse_fine(session, fine_id))


@router.delete("/{fine_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_fine(fine_id: int, session: AsyncSession = Depends(get_session)):
    ok = await fine_service.delete_fine(session, fine_id)
    if not ok:
        raise HTTPException(status_code=404, detail="Fine not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
