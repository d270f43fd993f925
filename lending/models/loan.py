from typing import Optional, Dict, FrozenSet
from datetime import date
from enum import Enum
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Enum as SAEnum


class LoanStatus(str, Enum):
    BORROWED = "BORROWED"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"


# Legal moves of the loan state machine. RETURNED is terminal.
LOAN_TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.BORROWED: frozenset({LoanStatus.OVERDUE, LoanStatus.RETURNED}),
    LoanStatus.OVERDUE: frozenset({LoanStatus.RETURNED}),
    LoanStatus.RETURNED: frozenset(),
}

ACTIVE_LOAN_STATUSES = (LoanStatus.BORROWED, LoanStatus.OVERDUE)


class Loan(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: int = Field(index=True)
    member_id: int = Field(index=True)
    borrow_date: date
    due_date: date
    return_date: Optional[date] = None
    status: LoanStatus = Field(
        default=LoanStatus.BORROWED,
        sa_column=Column(SAEnum(LoanStatus), nullable=False, index=True, default=LoanStatus.BORROWED),
    )

    def is_active(self) -> bool:
        return self.status in ACTIVE_LOAN_STATUSES
