"""
Connection and encrypted credential models.

Just the data structure. Lifecycle rules live in the OAuth service and the
credential vault.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..constants import ConnectionStatus
from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class Connection(Base, UUIDMixin, TimestampMixin):
    """A user's authorized link to one integration within a workspace/project."""

    __tablename__ = "connections"

    user_id = Column(String(255), nullable=False, index=True)
    workspace_id = Column(String(255), nullable=False, index=True)
    project_id = Column(String(255), nullable=True)
    integration_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False, default=ConnectionStatus.PENDING.value)
    status_reason = Column(Text, nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)

    credentials = relationship(
        "EncryptedCredential",
        back_populates="connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class EncryptedCredential(Base, UUIDMixin, TimestampMixin):
    """One secret of a connection. Only Fernet ciphertext is ever stored."""

    __tablename__ = "encrypted_credentials"

    connection_id = Column(
        String(36), ForeignKey("connections.id", ondelete="CASCADE"), nullable=False
    )
    credential_type = Column(String(20), nullable=False)
    ciphertext = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Bumped on every overwrite
    version = Column(Integer, nullable=False, default=1)

    connection = relationship("Connection", back_populates="credentials")

    __table_args__ = (
        Index("ix_credential_connection_type", "connection_id", "credential_type", unique=True),
    )
