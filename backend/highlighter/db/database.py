"""Database connection and session management."""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from highlighter.config import settings

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
)

# Session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Base class for models
Base = declarative_base()


async def init_db(db_engine: AsyncEngine = engine):
    """Initialize database tables."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(db_engine: AsyncEngine = engine):
    """Close database connections."""
    await db_engine.dispose()
