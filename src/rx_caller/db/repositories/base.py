"""Base Repository Pattern for rx-caller.

Provides generic CRUD operations with async SQLAlchemy support.
All specialized repositories inherit from BaseRepository.
"""
from __future__ import annotations

from typing import Any, Generic, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rx_caller.core.exceptions import RecordNotFoundError
from rx_caller.db.base import Base

# Type variable for model classes
ModelT = TypeVar("ModelT", bound=Base)


def as_uuid(id: UUID | str) -> UUID:
    """Coerce a string primary key to UUID."""
    return id if isinstance(id, UUID) else UUID(str(id))


class BaseRepository(Generic[ModelT]):
    """Generic base repository with async CRUD operations.

    Usage:
        class PatientRepository(BaseRepository[PatientModel]):
            not_found_error = PatientNotFoundError

            def __init__(self, session: AsyncSession):
                super().__init__(PatientModel, session)
    """

    not_found_error: type[RecordNotFoundError] = RecordNotFoundError

    def __init__(self, model: type[ModelT], session: AsyncSession):
        """Initialize repository with model class and session.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self._model = model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current database session."""
        return self._session

    # ========================================================================
    # Basic CRUD Operations
    # ========================================================================

    async def get(self, id: UUID | str) -> ModelT | None:
        """Get a single record by ID.

        Args:
            id: UUID or string primary key

        Returns:
            Model instance or None if not found
        """
        try:
            id = as_uuid(id)
        except ValueError:
            return None

        stmt = select(self._model).where(self._model.id == id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(self, id: UUID | str) -> ModelT:
        """Get a single record by ID, raising if not found.

        Raises:
            RecordNotFoundError: The repository's not-found subclass
        """
        obj = await self.get(id)
        if obj is None:
            raise self.not_found_error(
                f"{self._model.__name__} with id {id} not found",
                details={"id": str(id)},
            )
        return obj

    async def get_multi(
        self,
        *,
        skip: int = 0,
        limit: int = 100,
        descending: bool = True,
        **filters: Any,
    ) -> Sequence[ModelT]:
        """Get multiple records with pagination, newest first by default.

        Args:
            skip: Number of records to skip
            limit: Maximum records to return
            descending: Sort by created_at descending
            **filters: Column name to value mappings; None values are ignored

        Returns:
            List of model instances
        """
        stmt = select(self._model)
        for field, value in filters.items():
            if value is not None and hasattr(self._model, field):
                stmt = stmt.where(getattr(self._model, field) == value)

        if hasattr(self._model, "created_at"):
            stmt = stmt.order_by(
                self._model.created_at.desc() if descending else self._model.created_at
            )

        stmt = stmt.offset(skip).limit(limit)

        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def create(self, obj_in: ModelT) -> ModelT:
        """Create a new record.

        Args:
            obj_in: Model instance to create

        Returns:
            Created model instance with generated ID
        """
        self._session.add(obj_in)
        await self._session.flush()
        await self._session.refresh(obj_in)
        return obj_in

    async def refresh(self, obj: ModelT) -> ModelT:
        """Reload a record's columns from the database."""
        await self._session.refresh(obj)
        return obj

    # ========================================================================
    # Query Helpers
    # ========================================================================

    async def count(self, **filters: Any) -> int:
        """Count records matching simple equality filters."""
        stmt = select(func.count()).select_from(self._model)
        for field, value in filters.items():
            if value is not None and hasattr(self._model, field):
                stmt = stmt.where(getattr(self._model, field) == value)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def find_one(self, **filters: Any) -> ModelT | None:
        """Find a single record by arbitrary filters.

        Args:
            **filters: Column name to value mappings

        Returns:
            First matching model instance or None
        """
        stmt = select(self._model)
        for field, value in filters.items():
            if hasattr(self._model, field):
                stmt = stmt.where(getattr(self._model, field) == value)

        result = await self._session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    # ========================================================================
    # Conditional Updates
    # ========================================================================

    async def update_where(
        self,
        id: UUID | str,
        expected: dict[str, Any],
        values: dict[str, Any],
    ) -> int:
        """Update a record only if its current columns match ``expected``.

        Sequence values in ``expected`` are matched with IN.

        Args:
            id: UUID or string primary key
            expected: Column name to value the row must still hold
            values: Column name to new value mappings

        Returns:
            Number of rows updated (0 when another writer got there first)
        """
        stmt = update(self._model).where(self._model.id == as_uuid(id))

        for field, value in expected.items():
            column = getattr(self._model, field)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_(list(value)))
            else:
                stmt = stmt.where(column == value)

        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        result = await self._session.execute(stmt)
        return result.rowcount
