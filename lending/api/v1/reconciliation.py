from typing import Optional
from datetime import date
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lending.core.database import get_session
from lending.schemas.reconciliation import ReconciliationReport
from lending.services.reconciliation_service import run_reconciliation

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@router.post("/run", response_model=ReconciliationReport)
async def run_now(as_of: Optional[date] = None, session: AsyncSession = Depends(get_session)):
    """Run the daily reconciliation on demand; safe to call repeatedly."""
    return await run_reconciliation(session, as_of)
