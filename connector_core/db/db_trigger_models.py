"""
Trigger, trigger state and trigger event models.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from ..constants import EventStatus, HttpMethod, TriggerStatus
from .db_base import JSON, TimestampMixin, UUIDMixin, utc_now
from .db_config import Base


class Trigger(Base, UUIDMixin, TimestampMixin):
    """A recurring poll-and-notify rule bound to a connection and a read action."""

    __tablename__ = "triggers"

    user_id = Column(String(255), nullable=False, index=True)
    workspace_id = Column(String(255), nullable=False)
    project_id = Column(String(255), nullable=True)
    connection_id = Column(
        String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False, index=True
    )
    integration_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    trigger_type = Column(String(100), nullable=False)
    config = Column(JSON, nullable=False, default=dict)

    webhook_url = Column(Text, nullable=False)
    webhook_method = Column(String(10), nullable=False, default=HttpMethod.POST.value)
    webhook_headers = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=TriggerStatus.ACTIVE.value, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_checked_at = Column(DateTime(timezone=True), nullable=True)
    last_triggered_at = Column(DateTime(timezone=True), nullable=True)
    error_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    # Optimistic claim counter, bumped by every poll
    claim_version = Column(Integer, nullable=False, default=0)


class TriggerState(Base):
    """Per-trigger cursor or snapshot of previously seen upstream state."""

    __tablename__ = "trigger_states"

    trigger_id = Column(
        String(36), ForeignKey("triggers.id", ondelete="CASCADE"), primary_key=True
    )
    cursor = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class TriggerEvent(Base, UUIDMixin, TimestampMixin):
    """One detected change and its webhook delivery state."""

    __tablename__ = "trigger_events"

    trigger_id = Column(
        String(36), ForeignKey("triggers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String(100), nullable=False)
    # Position within the poll that produced it
    sequence = Column(Integer, nullable=False, default=0)
    event_data = Column(JSON, nullable=False)
    webhook_payload = Column(JSON, nullable=False)

    status = Column(String(20), nullable=False, default=EventStatus.PENDING.value)
    status_message = Column(Text, nullable=True)
    webhook_status = Column(Integer, nullable=True)
    webhook_response = Column(Text, nullable=True)

    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_trigger_event_retry", "status", "next_retry_at"),)
