"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Provides common functionality for all repositories including:
- Session management patterns
- Error handling wrappers
- Common query operations
- Logging setup

============================================================
USAGE
============================================================
All domain repositories inherit from BaseRepository.
Session is injected via constructor.

============================================================
"""

import logging
from abc import ABC
from typing import Any, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    TransactionError,
)


# Type variable for ORM model
T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base class for all repositories.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Wraps database errors in repository exceptions
    - Manages logging for all operations
    - Owns commit/rollback for the injected session

    ============================================================
    USAGE
    ============================================================
    class MyRepository(BaseRepository[MyModel]):
        def __init__(self, session: Session):
            super().__init__(session, MyModel, "MyRepository")

    ============================================================
    """

    unique_field: str = "unknown"

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> Session:
        return self._session

    @property
    def repository_name(self) -> str:
        return self._repository_name

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Handle database errors by wrapping in repository exceptions.

        Raises:
            RepositoryException: Always raises appropriate exception
        """
        context = context or {}

        if isinstance(error, OperationalError):
            self._logger.error(f"Database unreachable in {operation}: {error}")
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            error_str = str(error).lower()
            if "duplicate" in error_str or "unique" in error_str:
                # Expected under concurrent creates; the caller decides.
                self._logger.info(f"Unique constraint hit in {operation}: {context}")
                raise DuplicateRecordError(
                    repository_name=self._repository_name,
                    constraint_field=self.unique_field,
                    value=context.get(self.unique_field, "unknown")
                ) from error

            self._logger.error(f"Integrity error in {operation}: {error}")
            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                message=str(error)
            ) from error

        self._logger.error(
            f"Database error in {operation}: {error}",
            exc_info=True
        )
        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error)
        ) from error

    def _add(self, entity: T, context: Optional[dict] = None) -> T:
        """Add an entity to the session and flush so constraints fire now."""
        try:
            self._session.add(entity)
            self._session.flush()
            self._logger.debug(f"Added entity: {entity}")
            return entity
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "add", context)
            raise  # Never reached, but satisfies type checker

    def _get_by_id(self, record_id: UUID) -> Optional[T]:
        try:
            return self._session.get(self._model_class, record_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_id", {"id": str(record_id)})
            raise

    def _get_by_id_or_raise(self, record_id: UUID) -> T:
        """
        Get an entity by its primary key, raising if not found.

        Raises:
            RecordNotFoundError: If entity does not exist
        """
        entity = self._get_by_id(record_id)
        if entity is None:
            raise RecordNotFoundError(
                repository_name=self._repository_name,
                record_id=record_id,
            )
        return entity

    def _count(self) -> int:
        try:
            stmt = select(func.count()).select_from(self._model_class)
            return self._session.execute(stmt).scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count")
            raise

    def _execute_query(self, stmt: Any) -> List[T]:
        try:
            result = self._session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query")
            raise

    def _execute_scalar(self, stmt: Any) -> Optional[T]:
        try:
            result = self._session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_scalar")
            raise

    def commit(self, context: Optional[dict] = None) -> None:
        """
        Commit the current transaction.

        Constraint and connectivity failures surfacing at commit are
        mapped the same way as at flush.
        """
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            self._handle_db_error(e, "commit", context)

    def rollback(self) -> None:
        try:
            self._session.rollback()
        except SQLAlchemyError as e:
            self._logger.error(f"Rollback failed: {e}")
            raise TransactionError(
                repository_name=self._repository_name,
                phase="rollback",
                original_error=str(e)
            ) from e
