from contextlib import asynccontextmanager
import structlog
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from config import get_settings
from exceptions import TugasError

logger = structlog.get_logger(__name__)

settings = get_settings()
DATABASE_URL = settings.database_url

# Create async engine
engine = create_async_engine(
    DATABASE_URL,
    echo=settings.database_echo,
)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


@asynccontextmanager
async def get_db_session():
    """Async context manager for database sessions"""
    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except TugasError:
        # Domain errors are reported by the API layer
        await session.rollback()
        raise
    except Exception as e:
        await session.rollback()
        logger.error("Database error", error=str(e), exc_info=True)
        raise
    finally:
        await session.close()


async def get_session():
    """FastAPI dependency yielding one session per request"""
    async with get_db_session() as session:
        yield session


async def create_tables(bind=None):
    """Create all tables on the given engine (defaults to the app engine)"""
    from models import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
