"""Apply Alembic migrations up to head against settings.DATABASE_URL."""
import logging
import subprocess
import sys

from lending.core.config import settings
from lending.core.logging import configure_logging

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger("run_migrations")


def main() -> int:
    logger.info("Running migrations", extra={"environment": settings.ENVIRONMENT})
    try:
        subprocess.run([sys.executable, "-m", "alembic", "upgrade", "head"], check=True)
    except subprocess.CalledProcessError as e:
        logger.error(f"Migration failed: {e}")
        return e.returncode
    logger.info("Database migration completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
