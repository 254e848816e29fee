"""
Append-only record of every action invocation.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from .db_base import JSON, UUIDMixin, utc_now
from .db_config import Base


class ApiLog(Base, UUIDMixin):
    """Request and response of one upstream call, secrets redacted."""

    __tablename__ = "api_logs"

    connection_id = Column(
        String(36), ForeignKey("connections.id", ondelete="SET NULL"), nullable=True, index=True
    )
    trigger_id = Column(String(36), nullable=True, index=True)
    user_id = Column(String(255), nullable=True)
    integration_id = Column(String(255), nullable=True)
    action_slug = Column(String(255), nullable=True, index=True)

    http_method = Column(String(10), nullable=True)
    url = Column(Text, nullable=True)
    request_payload = Column(JSON, nullable=True)
    response_payload = Column(JSON, nullable=True)
    status_code = Column(Integer, nullable=True)

    success = Column(Boolean, nullable=False, default=False)
    error_type = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    retryable = Column(Boolean, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    executed_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)
