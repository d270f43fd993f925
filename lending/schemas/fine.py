from typing import Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict

from lending.models.fine import FineStatus, FineType
from lending.schemas.loan import LoanRead


class FineRead(BaseModel):
    id: int
    member_id: int
    loan_id: int
    amount: Decimal
    fine_type: FineType
    status: FineStatus
    issued_at: datetime
    paid_at: Optional[datetime]
    # the fined loan, so pollers see due and return dates without a second call
    loan: Optional[LoanRead] = None

    model_config = ConfigDict(from_attributes=True)


class FineTotal(BaseModel):
    total: Decimal


class MemberFineTotal(BaseModel):
    member_id: int
    total_pending: Decimal
