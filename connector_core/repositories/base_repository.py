"""
Base repository with session handling and database error mapping.

Repositories receive the DatabaseManager through their constructor and open
one short-lived session per operation, so they can be shared by the worker
threads of a scheduler run.
"""

from contextlib import contextmanager
from typing import Any, Iterator, NoReturn, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.db_config import DatabaseManager
from ..exceptions import BaseError, ErrorCode, RepositoryError, duplicate
from ..utils.logger import get_logger


class BaseRepository:
    """Common plumbing for all repositories."""

    entity_name = "Entity"

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_logger()

    def _handle_db_error(
        self,
        e: Exception,
        operation_name: str,
        entity_id: Optional[str] = None,
        **context: Any,
    ) -> NoReturn:
        """
        Map a database failure to a RepositoryError.

        Domain errors raised inside an operation pass through unchanged.
        """
        if isinstance(e, BaseError):
            raise e

        error_context = {
            "operation_name": operation_name,
            "entity_type": self.entity_name,
            **context,
        }
        if entity_id:
            error_context["entity_id"] = entity_id

        if isinstance(e, IntegrityError):
            error_message = str(e.orig).lower() if getattr(e, "orig", None) else str(e).lower()
            if "unique" in error_message or "duplicate" in error_message:
                raise duplicate(resource_type=self.entity_name, cause=e, **error_context)
            raise RepositoryError(
                f"Database constraint violation for {self.entity_name}",
                error_code=ErrorCode.CONFLICT,
                status_code=409,
                cause=e,
                **error_context,
            )

        if isinstance(e, SQLAlchemyError):
            raise RepositoryError(
                f"Database error for {self.entity_name}: {str(e)}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
                **error_context,
            )

        raise RepositoryError(
            f"Unexpected error for {self.entity_name}: {str(e)}",
            error_code=ErrorCode.INTERNAL_ERROR,
            cause=e,
            **error_context,
        )

    @contextmanager
    def _session_scope(self, operation_name: str, entity_id: Optional[str] = None) -> Iterator[Session]:
        """
        One transaction per repository operation.

        Commits on success, rolls back and maps the error otherwise.
        """
        try:
            with self.db_manager.session_scope() as session:
                yield session
        except Exception as e:
            self._handle_db_error(e, operation_name, entity_id)
