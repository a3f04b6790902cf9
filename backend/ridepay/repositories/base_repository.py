# backend/ridepay/repositories/base_repository.py
"""
Base repository for bookings, payment records and holds.

Repositories never commit; services own the transaction boundary. Status
transitions go through ``update_if_status`` so that two writers racing on the
same row (timeout sweep vs. driver/rider action) cannot both win.
"""

import logging
from typing import Any, Generic, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Shared data access for one model.

    Attributes:
        db: SQLAlchemy session owned by the calling service
        model: Mapped class this repository reads and writes
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str) -> Optional[T]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to load {self.model.__name__}: {str(e)}")

    def refresh(self, instance: T) -> None:
        """Re-read a row another session may have moved."""
        self.db.refresh(instance)

    def create(self, **kwargs: Any) -> T:
        """Add and flush a new row so its id and defaults are populated. Does not commit."""
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as exc:
            self.logger.error(
                "Integrity error inserting %s: %s", self.model.__name__, exc, exc_info=True
            )
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error inserting {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to insert {self.model.__name__}: {str(e)}")

    def update(self, id: str, **kwargs: Any) -> Optional[T]:
        """Unconditional field update; returns None when the row does not exist."""
        try:
            entity = self.get_by_id(id)
            if entity is None:
                return None
            for key, value in kwargs.items():
                if hasattr(entity, key):
                    setattr(entity, key, value)
            self.db.flush()
            return entity
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating {self.model.__name__} {id}: {str(e)}")
            raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")

    def update_if_status(self, id: str, expected: Iterable[str], **values: Any) -> bool:
        """
        Apply ``values`` only while the row is still in one of the ``expected`` statuses.

        Returns True when this caller won the transition. A False return means a
        concurrent writer already moved the row; callers re-read and adopt that result.
        """
        expected_statuses = list(expected)
        try:
            stmt = (
                update(self.model)
                .where(self.model.id == id, self.model.status.in_(expected_statuses))
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            result = self.db.execute(stmt)
            return bool(result.rowcount)
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error conditionally updating {self.model.__name__} {id}: {str(e)}"
            )
            raise RepositoryException(f"Failed to update {self.model.__name__}: {str(e)}")

    def count(self, **kwargs: Any) -> int:
        try:
            return self.db.query(self.model).filter_by(**kwargs).count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting {self.model.__name__} rows: {str(e)}")
            raise RepositoryException(f"Failed to count {self.model.__name__}: {str(e)}")

    def find_by(self, **kwargs: Any) -> List[T]:
        """Exact-match lookup on column values."""
        try:
            return self.db.query(self.model).filter_by(**kwargs).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error querying {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to query {self.model.__name__}: {str(e)}")
