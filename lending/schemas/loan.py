from typing import Optional, List
from datetime import date
from pydantic import BaseModel, ConfigDict

from lending.models.loan import LoanStatus


class BorrowRequest(BaseModel):
    member_id: int
    item_id: int
    due_date: Optional[date] = None


class LoanRead(BaseModel):
    id: int
    item_id: int
    member_id: int
    borrow_date: date
    due_date: date
    return_date: Optional[date]
    status: LoanStatus

    model_config = ConfigDict(from_attributes=True)


class PromotionResult(BaseModel):
    as_of: date
    promoted_loan_ids: List[int]
