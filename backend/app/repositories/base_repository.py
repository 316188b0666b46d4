# backend/app/repositories/base_repository.py
"""
Base repository for engine records.

Repositories never commit; services own the transaction. Appointments,
payments, refund requests and audit rows are never deleted, so there is no
delete path here.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..database import dialect_name

T = TypeVar("T")

logger = logging.getLogger(__name__)


class IRepository(ABC, Generic[T]):
    """Minimal data access contract shared by every repository."""

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        """Entity by primary key, or None."""

    @abstractmethod
    def create(self, **kwargs: Any) -> T:
        """
        Add a new entity and flush it so its id is assigned.

        Raises:
            RepositoryException: If creation fails
        """


class BaseRepository(IRepository[T]):
    """
    Shared query helpers and row locking.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return dialect_name(self.db)

    def get_by_id(self, id: str) -> Optional[T]:
        try:
            return self.db.query(self.model).filter(self.model.id == id).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def get_for_update(self, id: str) -> Optional[T]:
        """
        Retrieve an entity and lock its row until the transaction ends.

        SQLite has no row locks; callers also hold the keyed engine lock.
        """
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if self.dialect_name != "sqlite":
                query = query.with_for_update()
            else:
                # Re-read inside the lock so a stale identity-map copy is not used.
                query = query.populate_existing()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to lock {self.model.__name__}: {str(e)}")

    def create(self, **kwargs: Any) -> T:
        """Does NOT commit; the service layer owns the transaction."""
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.error("Integrity error creating %s: %s", self.model.__name__, exc)
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def flush(self) -> None:
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error flushing {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to flush {self.model.__name__}: {str(e)}")

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding {self.model.__name__} by {sorted(kwargs)}: {str(e)}")
            raise RepositoryException(f"Failed to find {self.model.__name__}: {str(e)}")

    # Helpers for subclasses

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"{self.model.__name__} query failed: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")

    def _execute_scalar(self, query: Query) -> Any:
        try:
            return query.scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"{self.model.__name__} scalar query failed: {str(e)}")
            raise RepositoryException(f"Scalar query failed: {str(e)}")
