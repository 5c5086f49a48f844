from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from zomp.config import settings
from zomp.middleware import install_query_counter

# Stable constraint names so alembic autogenerate diffs cleanly.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def engine_options(url: str) -> dict:
    """Pool settings for *url*; SQLite has no server-side pool to size."""
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(pool_size=10, max_overflow=20)
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

install_query_counter(engine)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


async def get_db():
    """
    Yield one session per request.

    Every guard and the terminal handler of a request share this session,
    so all of a request's writes land in a single transaction: committed
    when the handler returns, rolled back when anything raises.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    await engine.dispose()
