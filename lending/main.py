import logging
from fastapi import FastAPI

from lending.core.config import settings
from lending.core.logging import configure_logging
from lending.core.exceptions import register_exception_handlers
from lending.middleware import CorrelationIdMiddleware
from lending.core.database import init_db
from fastapi.middleware.cors import CORSMiddleware

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

# Middleware: correlation id
app.add_middleware(CorrelationIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Route imports
from lending.api.health import router as health_router
from lending.api.v1 import loans as v1_loans
from lending.api.v1 import fines as v1_fines
from lending.api.v1 import reconciliation as v1_reconciliation

# Register routers
app.include_router(health_router, prefix="/api", tags=["health"])

# v1 API routes
app.include_router(v1_loans.router, prefix="/api/v1", tags=["loans"])
app.include_router(v1_fines.router, prefix="/api/v1", tags=["fines"])
app.include_router(v1_reconciliation.router, prefix="/api/v1", tags=["reconciliation"])


# Exception handlers
register_exception_handlers(app)


@app.on_event("startup")
async def on_startup():
    logger.info("Starting app", extra={"app": settings.APP_NAME})

    if settings.MIGRATE_ON_START:
        logger.info("MIGRATE_ON_START enabled: creating tables")
        await init_db()

    if settings.SCHEDULER_ENABLED:
        from lending.services.scheduler import build_scheduler

        scheduler = build_scheduler()
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info(
            "Reconciliation scheduled",
            extra={"hour": settings.RECONCILIATION_HOUR, "minute": settings.RECONCILIATION_MINUTE},
        )


@app.on_event("shutdown")
async def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Shutting down")
