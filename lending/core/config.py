import os
from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "lending-core"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    MIGRATE_ON_START: bool = False

    # Store
    DATABASE_URL: str = "sqlite+aiosqlite:///./lending.db"

    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Collaborators
    CATALOG_SERVICE_URL: str = "http://localhost:8081"
    MEMBER_SERVICE_URL: str = "http://localhost:8082"
    COLLABORATOR_TIMEOUT_SECONDS: float = 10.0

    # Lending rules
    LOAN_PERIOD_DAYS: int = 14
    MAX_ACTIVE_LOANS: int = 5
    DAILY_FINE_RATE: Decimal = Decimal("10.00")

    # Reconciliation job (daily, local time of the scheduler)
    SCHEDULER_ENABLED: bool = True
    RECONCILIATION_HOUR: int = 1
    RECONCILIATION_MINUTE: int = 0
    RECONCILIATION_TIMEZONE: Optional[str] = None

    class Config:
        case_sensitive = True
        # Load .env ONLY when not production
        env_file = ".env" if os.getenv("ENVIRONMENT") != "production" else None


settings = Settings()
