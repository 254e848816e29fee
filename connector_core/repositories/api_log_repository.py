"""
Append-only persistence for invocation logs.
"""

from typing import Any, List, Optional

from sqlalchemy import func, select

from ..db.db_api_log_models import ApiLog
from .base_repository import BaseRepository


class ApiLogRepository(BaseRepository):
    entity_name = "ApiLog"

    def create(self, **fields: Any) -> ApiLog:
        """Insert one log row. Payloads must already be redacted."""
        with self._session_scope("create_api_log") as session:
            log = ApiLog(**fields)
            session.add(log)
            session.flush()
            return log

    def _filtered(
        self,
        stmt,
        connection_id: Optional[str],
        action_slug: Optional[str],
        trigger_id: Optional[str],
        success: Optional[bool],
    ):
        if connection_id:
            stmt = stmt.where(ApiLog.connection_id == connection_id)
        if action_slug:
            stmt = stmt.where(ApiLog.action_slug == action_slug)
        if trigger_id:
            stmt = stmt.where(ApiLog.trigger_id == trigger_id)
        if success is not None:
            stmt = stmt.where(ApiLog.success.is_(success))
        return stmt

    def list(
        self,
        connection_id: Optional[str] = None,
        action_slug: Optional[str] = None,
        trigger_id: Optional[str] = None,
        success: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ApiLog]:
        """Newest first, with optional filters and pagination."""
        with self._session_scope("list_api_logs") as session:
            stmt = self._filtered(select(ApiLog), connection_id, action_slug, trigger_id, success)
            stmt = stmt.order_by(ApiLog.executed_at.desc()).limit(limit).offset(offset)
            return list(session.scalars(stmt))

    def count(
        self,
        connection_id: Optional[str] = None,
        action_slug: Optional[str] = None,
        trigger_id: Optional[str] = None,
        success: Optional[bool] = None,
    ) -> int:
        with self._session_scope("count_api_logs") as session:
            stmt = self._filtered(
                select(func.count()).select_from(ApiLog),
                connection_id,
                action_slug,
                trigger_id,
                success,
            )
            return session.scalar(stmt) or 0
