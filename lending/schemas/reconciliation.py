from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field, computed_field


class LoanOutcome(BaseModel):
    loan_id: int
    ok: bool
    fine_id: Optional[int] = None
    amount: Optional[Decimal] = None
    error: Optional[str] = None


class ReconciliationReport(BaseModel):
    """Result of one reconciliation run, one outcome per overdue loan."""

    run_at: datetime
    as_of: date
    promoted_loan_ids: List[int] = Field(default_factory=list)
    promotion_error: Optional[str] = None
    outcomes: List[LoanOutcome] = Field(default_factory=list)

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)
