import logging
from typing import Optional
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from lending.core.config import settings
from lending.models.fine import FineType, utcnow
from lending.models.loan import LoanStatus
from lending.schemas.reconciliation import LoanOutcome, ReconciliationReport
from lending.services.fine_service import create_fine
from lending.services.loan_service import list_loans, promote_overdue


logger = logging.getLogger(__name__)


def business_today() -> date:
    """Today's date in RECONCILIATION_TIMEZONE, or the host's local date when unset."""
    if settings.RECONCILIATION_TIMEZONE:
        return datetime.now(ZoneInfo(settings.RECONCILIATION_TIMEZONE)).date()
    return date.today()


async def run_reconciliation(session: AsyncSession, today: Optional[date] = None) -> ReconciliationReport:
    """Promote overdue loans, then issue or re-price one LATE_RETURN fine per overdue loan.

    Loans are processed one at a time. A loan whose fine cannot be issued is
    recorded as a failed outcome and the run moves on; promotion is never
    rolled back because of it. Re-running on the same or a later day is safe.
    """
    as_of = today or business_today()
    report = ReconciliationReport(run_at=utcnow(), as_of=as_of)

    try:
        report.promoted_loan_ids = await promote_overdue(session, as_of)
    except Exception as exc:
        # already-overdue loans still get their fines below
        await session.rollback()
        logger.exception("Overdue promotion failed", extra={"as_of": str(as_of)})
        report.promotion_error = str(exc)

    overdue_ids = [loan.id for loan in await list_loans(session, status=LoanStatus.OVERDUE)]

    for loan_id in overdue_ids:
        try:
            fine = await create_fine(session, loan_id, FineType.LATE_RETURN, today=as_of)
        except Exception as exc:
            await session.rollback()
            logger.error(
                "Failed to create fine for loan",
                extra={"loan_id": loan_id, "error": str(exc)},
            )
            report.outcomes.append(LoanOutcome(loan_id=loan_id, ok=False, error=str(exc)))
            continue
        report.outcomes.append(LoanOutcome(loan_id=loan_id, ok=True, fine_id=fine.id, amount=fine.amount))

    logger.info(
        "Reconciliation finished",
        extra={
            "as_of": str(as_of),
            "promoted": len(report.promoted_loan_ids),
            "succeeded": report.succeeded,
            "failed": report.failed,
        },
    )
    return report
