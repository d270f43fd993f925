from typing import AsyncGenerator
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from lending.core.config import settings
import lending.models  # noqa: F401  (loan and fine tables on SQLModel.metadata)

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create missing tables directly from the model metadata.

    Alembic owns the schema outside development; this backs MIGRATE_ON_START.
    """
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped AsyncSession; closed when the response is sent."""
    async with AsyncSessionLocal() as session:
        yield session
