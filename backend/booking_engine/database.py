from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings, get_settings

BOOKING_ISOLATION_LEVEL = "READ COMMITTED"


def build_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        echo=settings.echo_sql,
        pool_pre_ping=True,
        pool_recycle=3600,
        # Capacity counts run after the bucket row lock is granted and must see
        # rows committed by the previous holder, not a snapshot from before it.
        isolation_level=BOOKING_ISOLATION_LEVEL,
    )


engine = build_engine(get_settings())

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
