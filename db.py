# ===============================================================
# db.py — Central async SQLAlchemy setup
# ===============================================================
import os
import logging
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker as _async_sessionmaker,
    AsyncEngine,
    AsyncSession,
)
from sqlalchemy import text

# Import Base and models cleanly
from base import Base
import models  # noqa: F401  (registers tables on Base.metadata)

logger = logging.getLogger(__name__)

# -------------------------------------------------
# Database URL setup
# -------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("❌ DATABASE_URL not set in environment variables")


def normalize_database_url(url: str) -> str:
    """Ensure the asyncpg driver is used for Postgres URLs."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = normalize_database_url(DATABASE_URL)

# -------------------------------------------------
# Engine & Async Session Factory
# -------------------------------------------------
def build_engine(url: str) -> AsyncEngine:
    kwargs = {
        "echo": os.getenv("SQL_ECHO", "false").lower() == "true",  # enable SQL logging if needed
        "pool_pre_ping": True,     # checks if connection is alive
    }
    if not url.startswith("sqlite"):
        kwargs["pool_recycle"] = 1800  # recycle connections every 30 mins
    return create_async_engine(url, **kwargs)


def build_sessionmaker(bind: AsyncEngine):
    return _async_sessionmaker(bind=bind, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(DATABASE_URL)

# This is the async session factory the whole app should import
async_sessionmaker = build_sessionmaker(engine)

# -------------------------------------------------
# FastAPI Dependencies
# -------------------------------------------------
async def get_session() -> AsyncSession:
    """FastAPI database session dependency."""
    async with async_sessionmaker() as session:
        yield session


# -------------------------------------------------
# Database Initialization (development only)
# -------------------------------------------------
async def init_db(bind: AsyncEngine = None):
    """Create tables manually — not for production (use migrations instead)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database initialized (development use only)")

# -------------------------------------------------
# Health Check Utility
# -------------------------------------------------
async def test_connection(bind: AsyncEngine = None) -> bool:
    """Quick check if DB is reachable."""
    try:
        async with (bind or engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("🔌 Database connection OK")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        raise
