"""
Engine, session factory and unit of work.

Stores never commit: a ``UnitOfWork`` owns the transaction boundary and maps
driver failures onto ``StorageError``.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from thesis_validator.config import Settings, get_settings
from thesis_validator.db.models import Base
from thesis_validator.errors import StorageError

logger = logging.getLogger(__name__)


def create_engine(settings: Settings | None = None, url: str | None = None) -> AsyncEngine:
    """
    Create the async engine.

    Args:
        settings: Application settings. Defaults to ``get_settings()``.
        url: Explicit connection string overriding ``settings.database_url``.

    Returns:
        Configured AsyncEngine.
    """
    settings = settings or get_settings()
    return create_async_engine(
        url or settings.database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory whose objects stay readable after commit."""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables and indexes if they do not exist."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        raise StorageError(f"Schema creation failed: {e}") from e
    logger.info("Database schema initialized")


class UnitOfWork:
    """
    Transaction scope for one logical operation.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            node = await GraphStore(uow.session).get_node(engagement_id, node_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        session = self._session
        if session is None:
            return
        try:
            if exc_type is None:
                try:
                    await session.commit()
                except SQLAlchemyError as e:
                    await session.rollback()
                    raise StorageError(f"Commit failed: {e}") from e
            else:
                await session.rollback()
                if isinstance(exc_val, SQLAlchemyError):
                    raise StorageError(f"Database operation failed: {exc_val}") from exc_val
        finally:
            await session.close()
            self._session = None

    @property
    def session(self) -> AsyncSession:
        """The session bound to this unit of work."""
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork(...) as uow:' pattern."
            )
        return self._session
