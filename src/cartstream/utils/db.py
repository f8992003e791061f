"""Database engine, declarative base and schema helpers."""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from cartstream.config import Settings

# Execution options for a connection that is going to write
WRITE_OPTIONS = {"immediate": True}


class Base(DeclarativeBase):
    pass


def create_engine_for(settings: Settings) -> AsyncEngine:
    """Create the async engine for ``settings.database_url``.

    SQLite connections get foreign keys enabled. Transactions on a connection
    carrying ``WRITE_OPTIONS`` open with ``BEGIN IMMEDIATE``, so concurrent
    writers wait on the database lock instead of failing on a
    shared-to-reserved upgrade. Everything else opens a deferred ``BEGIN``
    and reads alongside an active writer.
    """
    url = settings.database_url
    kwargs = {"echo": settings.echo_sql}
    if url.endswith(":memory:"):
        kwargs["poolclass"] = StaticPool

    engine = create_async_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Disable the driver's implicit BEGIN; the "begin" hook emits it.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            if conn.get_execution_options().get("immediate"):
                conn.exec_driver_sql("BEGIN IMMEDIATE")
            else:
                conn.exec_driver_sql("BEGIN")

    return engine


def session_factory_for(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def setup_db(engine: AsyncEngine) -> None:
    """Create all tables registered on ``Base``."""
    # Importing the models registers them with Base.metadata
    import cartstream.cart.cart  # noqa: F401
    import cartstream.catalogue.product  # noqa: F401
    import cartstream.coupon.coupon  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(engine: AsyncEngine) -> None:
    """Drop all tables registered on ``Base``."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
