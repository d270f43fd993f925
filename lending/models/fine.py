from typing import Optional, Dict, FrozenSet
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, Index, Enum as SAEnum, text


class FineType(str, Enum):
    LATE_RETURN = "LATE_RETURN"
    LOST_ITEM = "LOST_ITEM"
    DAMAGED_ITEM = "DAMAGED_ITEM"


class FineStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


# PAID -> PENDING is the explicit reversal. CANCELLED is terminal for the row;
# the (loan, type) slot can be reused by a new fine.
FINE_TRANSITIONS: Dict[FineStatus, FrozenSet[FineStatus]] = {
    FineStatus.PENDING: frozenset({FineStatus.PAID, FineStatus.CANCELLED}),
    FineStatus.PAID: frozenset({FineStatus.PENDING}),
    FineStatus.CANCELLED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_ACTIVE_CLAUSE = text("status != 'CANCELLED'")


class Fine(SQLModel, table=True):
    __table_args__ = (
        # at most one non-cancelled fine per (loan, type)
        Index(
            "uq_fine_active_loan_type",
            "loan_id",
            "fine_type",
            unique=True,
            postgresql_where=_ACTIVE_CLAUSE,
            sqlite_where=_ACTIVE_CLAUSE,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    member_id: int = Field(index=True)
    loan_id: int = Field(foreign_key="loan.id", index=True)
    amount: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    fine_type: FineType = Field(sa_column=Column(SAEnum(FineType), nullable=False))
    status: FineStatus = Field(
        default=FineStatus.PENDING,
        sa_column=Column(SAEnum(FineStatus), nullable=False, index=True, default=FineStatus.PENDING),
    )
    issued_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    def is_active(self) -> bool:
        return self.status != FineStatus.CANCELLED
