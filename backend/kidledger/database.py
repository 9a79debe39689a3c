import os
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlmodel import SQLModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

from kidledger.cache import LocalCache, mirror_objects
from kidledger.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv(
    "DATABASE_URL", "sqlite+aiosqlite:///./kid_ledger.db"
)  # swap with a Postgres URL if needed


# Control SQL echo via environment variable and route output through logging
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
if SQL_ECHO:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

# Replica used only when the primary store cannot be read.
local_cache = LocalCache()

async_session = async_sessionmaker(
    engine, expire_on_commit=False, info={"local_cache": local_cache}
)


def make_sessionmaker(bind, cache: LocalCache | None = None) -> async_sessionmaker:
    """Session factory for another engine (tests, scripts) sharing our defaults."""

    info = {"local_cache": cache} if cache is not None else {}
    return async_sessionmaker(bind, expire_on_commit=False, info=info)


async def create_db_and_tables() -> None:
    from kidledger import models  # noqa: F401  registers the tables

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_local_cache(db: AsyncSession) -> LocalCache | None:
    return db.info.get("local_cache")


@asynccontextmanager
async def store_call(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run reads outside a unit of work, mapping store errors like :func:`atomic`."""

    try:
        yield db
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Record store read failed: %s", exc)
        raise StorageUnavailable("Record store unavailable") from exc


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block of writes as one unit of work.

    The block commits once at the end. Any error rolls back every pending
    write, so a ledger row can never be stored without its balance update.
    Store failures surface as :class:`StorageUnavailable`.
    """

    try:
        yield db
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Record store write failed: %s", exc)
        raise StorageUnavailable("Record store unavailable") from exc
    except BaseException:
        await db.rollback()
        raise
    mirror_objects(get_local_cache(db), list(db.sync_session.identity_map.values()))
