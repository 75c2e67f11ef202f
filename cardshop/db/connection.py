from typing import Optional
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlmodel import SQLModel
from cardshop.config.settings import config_settings
from cardshop.db.utils import _normalize_db_url, is_sqlite


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = _normalize_db_url(url)
    if not is_sqlite(url):
        return create_async_engine(url, echo=echo, pool_pre_ping=True)

    engine = create_async_engine(url, echo=echo, connect_args={"timeout": 30})

    # readers never block the single writer; writers wait instead of failing fast
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


DATABASE_URL = _normalize_db_url(config_settings.DATABASE_URL)

async_engine = build_engine(DATABASE_URL, echo=config_settings.DB_ECHO)

async_session = build_session_factory(async_engine)


async def init_models(engine: Optional[AsyncEngine] = None) -> None:
    # importing registers every table on SQLModel.metadata
    import cardshop.schema.full_schema  # noqa: F401

    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
