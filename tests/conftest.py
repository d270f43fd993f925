import os

# must be set before lending.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import date
from typing import Dict, Optional, Set

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import lending.models  # noqa: F401
from lending.core.exceptions import CollaboratorUnavailableError, NotFoundError
from lending.models.loan import Loan, LoanStatus
from lending.schemas.collaborators import ItemRecord, MemberRecord


TODAY = date(2026, 3, 10)


class FakeCatalog:
    """In-memory stand-in for the catalog service."""

    def __init__(self) -> None:
        self.items: Dict[int, Dict[str, int]] = {}
        self.calls = []
        self.fail_adjust = False

    def add_item(self, item_id: int, copies: int) -> None:
        self.items[item_id] = {"available": copies, "total": copies}

    def available(self, item_id: int) -> int:
        return self.items[item_id]["available"]

    async def get_item(self, item_id: int) -> ItemRecord:
        if item_id not in self.items:
            raise NotFoundError(f"Item not found with ID: {item_id}")
        record = self.items[item_id]
        return ItemRecord(id=item_id, available_copies=record["available"], total_copies=record["total"])

    async def adjust_availability(self, item_id: int, delta: int) -> None:
        self.calls.append((item_id, delta))
        if self.fail_adjust:
            raise CollaboratorUnavailableError("catalog service unreachable")
        if item_id not in self.items:
            raise NotFoundError(f"Item not found with ID: {item_id}")
        self.items[item_id]["available"] += delta


class FakeMembers:
    def __init__(self, member_ids: Optional[Set[int]] = None) -> None:
        self.member_ids = set(member_ids or ())

    async def get_member(self, member_id: int) -> MemberRecord:
        if member_id not in self.member_ids:
            raise NotFoundError(f"Member not found with ID: {member_id}")
        return MemberRecord(id=member_id, status="ACTIVE")


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def members():
    return FakeMembers({1, 2, 3})


async def add_loan(
    session: AsyncSession,
    member_id: int = 1,
    item_id: int = 1,
    borrow_date: date = TODAY,
    due_date: Optional[date] = None,
    status: LoanStatus = LoanStatus.BORROWED,
    return_date: Optional[date] = None,
) -> Loan:
    """Insert a loan directly, bypassing the catalog."""
    loan = Loan(
        member_id=member_id,
        item_id=item_id,
        borrow_date=borrow_date,
        due_date=due_date or borrow_date,
        status=status,
        return_date=return_date,
    )
    session.add(loan)
    await session.commit()
    await session.refresh(loan)
    return loan
