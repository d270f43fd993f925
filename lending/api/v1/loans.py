from typing import List, Optional
from datetime import date
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from lending.core.database import get_session
from lending.models.loan import LoanStatus
from lending.schemas.loan import BorrowRequest, LoanRead, PromotionResult
from lending.services.collaborators import CatalogClient, MemberClient, get_catalog_client, get_member_client
from lending.services import loan_service

router = APIRouter(prefix="/loans", tags=["loans"])


@router.post("/borrow", response_model=LoanRead, status_code=status.HTTP_201_CREATED)
async def borrow_item(
    payload: BorrowRequest,
    session: AsyncSession = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog_client),
    members: MemberClient = Depends(get_member_client),
):
    loan = await loan_service.borrow(
        session, catalog, members, payload.member_id, payload.item_id, due_date=payload.due_date
    )
    return LoanRead.model_validate(loan)


@router.put("/{loan_id}/return", response_model=LoanRead)
async def return_item(
    loan_id: int,
    session: AsyncSession = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog_client),
):
    loan = await loan_service.return_loan(session, catalog, loan_id)
    return LoanRead.model_validate(loan)


@router.post("/update-overdue", response_model=PromotionResult)
async def update_overdue(as_of: Optional[date] = None, session: AsyncSession = Depends(get_session)):
    """Promote due-but-unreturned loans to OVERDUE as of the given date (default today)."""
    as_of = as_of or date.today()
    promoted = await loan_service.promote_overdue(session, as_of)
    return PromotionResult(as_of=as_of, promoted_loan_ids=promoted)


@router.get("", response_model=List[LoanRead])
async def get_loans(
    status: Optional[LoanStatus] = None,
    member_id: Optional[int] = None,
    item_id: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
):
    loans = await loan_service.list_loans(session, status=status, member_id=member_id, item_id=item_id)
    return [LoanRead.model_validate(l) for l in loans]


@router.get("/{loan_id}", response_model=LoanRead)
async def get_loan(loan_id: int, session: AsyncSession = Depends(get_session)):
    return LoanRead.model_validate(await loan_service.get_loan(session, loan_id))
