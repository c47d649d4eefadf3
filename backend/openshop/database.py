"""Database engine, session factory, and declarative base.

Only the SQL draft backend lives in a local database; every other record
(stores, addresses, partnerships) belongs to the remote store API.

  - DraftBase       → tables owned by this service (draft_slots)
  - create_tables() → provisions DraftBase tables at startup
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from openshop.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Base classes ────────────────────────────────────────────

class DraftBase(DeclarativeBase):
    """Models persisted by this service."""
    pass


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create any missing DraftBase tables."""
    import openshop.models  # noqa: F401  (registers tables on DraftBase)

    async with (bind or engine).begin() as conn:
        await conn.run_sync(DraftBase.metadata.create_all)
