"""Trade Store — async engine and the per-call sessions the trade repository opens.

Invariants:
    - Every repository call opens its own session; it is closed when the call returns
    - A SQLAlchemy failure rolls the session back before it leaves the block
    - Such failures surface as DatabaseError tagged integrity / operational / driver,
      so a lost claim race (integrity) reads differently from a dropped connection
    - pool_pre_ping drops connections the server closed while the merchant idled

Design Decisions:
    - Module-level db_manager set by the lifespan; TradeRepository receives its
      bound session() method as the session factory, tests pass their own
    - expire_on_commit=False: rows returned by claims stay readable after commit
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import (
    DBAPIError, IntegrityError, OperationalError, SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

from merchant.core.errors import DatabaseError

logger = logging.getLogger(__name__)

# Most specific first: IntegrityError and OperationalError subclass DBAPIError
_FAILURE_KINDS = (
    (IntegrityError, "integrity"),
    (OperationalError, "operational"),
    (DBAPIError, "driver"),
)


def _failure_kind(exc: SQLAlchemyError) -> str:
    for error_type, kind in _FAILURE_KINDS:
        if isinstance(exc, error_type):
            return kind
    return "orm"


class DatabaseSessionManager:
    """Engine plus session factory for deposits, withdrawals, users and prices."""

    def __init__(
        self, database_url: str, pool_size: int = 20, max_overflow: int = 10,
    ):
        self.engine = create_async_engine(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            kind = _failure_kind(e)
            logger.error(f"Trade store {kind} error: {e}")
            raise DatabaseError(type(e).__name__, kind) from e
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """SELECT 1 through a fresh session; False on any failure."""
        try:
            async with self.session() as db:
                await db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"DB health check failed: {e}")
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()


db_manager: DatabaseSessionManager | None = None


def init_db(database_url: str, **kwargs) -> DatabaseSessionManager:
    global db_manager
    db_manager = DatabaseSessionManager(database_url, **kwargs)
    return db_manager
