"""
Repository base class shared by the domain stores.

Provides engagement-scoped lookup and a compare-and-swap status update on top
of an ``AsyncSession``. Stores flush, the caller's unit of work commits.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Collection
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from thesis_validator.db.models import Base
from thesis_validator.errors import InvalidTransitionError, NotFoundError

T = TypeVar("T", bound=Base)

logger = logging.getLogger(__name__)


class BaseRepository(ABC, Generic[T]):
    """Abstract base repository with common engagement-scoped operations."""

    #: Entity name used in error messages
    entity_name: str = "entity"

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session.
        """
        self._session = session

    @property
    @abstractmethod
    def _model_class(self) -> type[T]:
        """Get the model class for this repository."""
        ...

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def _find(self, engagement_id: UUID, entity_id: UUID) -> T | None:
        model = self._model_class
        stmt = select(model).where(
            model.id == entity_id,
            model.engagement_id == engagement_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_or_raise(self, engagement_id: UUID, entity_id: UUID) -> T:
        """
        Fetch an entity inside an engagement.

        An id that exists under a different engagement is reported exactly as
        an absent one.

        Raises:
            NotFoundError: If no such entity exists in the engagement.
        """
        entity = await self._find(engagement_id, entity_id)
        if entity is None:
            raise NotFoundError(self.entity_name, entity_id, engagement_id)
        return entity

    async def _add(self, entity: T) -> T:
        self._session.add(entity)
        await self._session.flush()
        await self._session.refresh(entity)
        return entity

    async def _remove(self, entity: T) -> None:
        await self._session.delete(entity)
        await self._session.flush()

    async def _compare_and_set_status(
        self,
        engagement_id: UUID,
        entity_id: UUID,
        allowed_from: Collection[str],
        target: str,
        values: dict[str, Any] | None = None,
    ) -> T:
        """
        Move an entity to ``target`` only if its current status is allowed.

        The check and the write are one ``UPDATE ... WHERE status IN (...)``
        statement, so two racing transitions cannot both succeed.

        Args:
            engagement_id: Owning engagement.
            entity_id: Entity to transition.
            allowed_from: Statuses from which the transition is legal.
            target: New status.
            values: Extra columns written together with the status.

        Returns:
            The refreshed entity.

        Raises:
            NotFoundError: If the entity does not exist in the engagement.
            InvalidTransitionError: If the current status is not allowed.
        """
        model = self._model_class
        stmt = (
            update(model)
            .where(
                model.id == entity_id,
                model.engagement_id == engagement_id,
                model.status.in_(list(allowed_from)),
            )
            .values(status=target, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        entity = await self._reload(engagement_id, entity_id)
        if result.rowcount == 0:
            if entity is None:
                raise NotFoundError(self.entity_name, entity_id, engagement_id)
            logger.warning(
                f"Rejected {self.entity_name} transition {entity.status} -> {target} "
                f"for {entity_id}"
            )
            raise self._transition_error(entity_id, entity.status, target)
        logger.info(f"{self.entity_name} {entity_id} -> {target}")
        return entity

    async def _reload(self, engagement_id: UUID, entity_id: UUID) -> T | None:
        model = self._model_class
        stmt = (
            select(model)
            .where(model.id == entity_id, model.engagement_id == engagement_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    def _transition_error(self, entity_id: UUID, current: str, target: str) -> Exception:
        return InvalidTransitionError(self.entity_name, entity_id, current, target)
