"""
Persistence for connections and their encrypted credentials.
"""

from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from ..constants import ConnectionStatus, CredentialType
from ..db.db_base import utc_now
from ..db.db_connection_models import Connection, EncryptedCredential
from ..exceptions import not_found
from .base_repository import BaseRepository


class ConnectionRepository(BaseRepository):
    entity_name = "Connection"

    # ==================== CONNECTIONS ====================

    def create(
        self,
        user_id: str,
        workspace_id: str,
        integration_id: str,
        project_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Connection:
        """Create a connection in PENDING state."""
        with self._session_scope("create_connection") as session:
            connection = Connection(
                user_id=user_id,
                workspace_id=workspace_id,
                project_id=project_id,
                integration_id=integration_id,
                name=name,
                status=ConnectionStatus.PENDING.value,
            )
            session.add(connection)
            session.flush()

        self.logger.info(
            "Connection created",
            extra={"connection_id": connection.id, "integration_id": integration_id},
        )
        return connection

    def get(self, connection_id: str) -> Connection:
        with self._session_scope("get_connection", connection_id) as session:
            connection = session.get(Connection, connection_id)
            if connection is None:
                raise not_found("Connection", connection_id=connection_id)
            return connection

    def list_for_user(self, user_id: str, workspace_id: Optional[str] = None) -> List[Connection]:
        with self._session_scope("list_connections") as session:
            stmt = select(Connection).where(Connection.user_id == user_id)
            if workspace_id:
                stmt = stmt.where(Connection.workspace_id == workspace_id)
            return list(session.scalars(stmt.order_by(Connection.created_at)))

    def set_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        reason: Optional[str] = None,
        refreshed_at: Optional[datetime] = None,
    ) -> None:
        values = {"status": status.value, "status_reason": reason, "updated_at": utc_now()}
        if refreshed_at is not None:
            values["last_refreshed_at"] = refreshed_at
        with self._session_scope("set_connection_status", connection_id) as session:
            result = session.execute(
                update(Connection).where(Connection.id == connection_id).values(**values)
            )
            if result.rowcount == 0:
                raise not_found("Connection", connection_id=connection_id)

        self.logger.info(
            "Connection status changed",
            extra={"connection_id": connection_id, "status": status.value},
        )

    def delete(self, connection_id: str) -> None:
        """Delete a connection; its credentials go with it."""
        with self._session_scope("delete_connection", connection_id) as session:
            connection = session.get(Connection, connection_id)
            if connection is None:
                raise not_found("Connection", connection_id=connection_id)
            session.delete(connection)

        self.logger.info("Connection deleted", extra={"connection_id": connection_id})

    # ==================== CREDENTIALS ====================

    def get_credential(
        self, connection_id: str, credential_type: CredentialType
    ) -> Optional[EncryptedCredential]:
        with self._session_scope("get_credential", connection_id) as session:
            return session.scalar(
                select(EncryptedCredential).where(
                    EncryptedCredential.connection_id == connection_id,
                    EncryptedCredential.credential_type == credential_type.value,
                )
            )

    def upsert_credential(
        self,
        connection_id: str,
        credential_type: CredentialType,
        ciphertext: str,
        expires_at: Optional[datetime] = None,
    ) -> EncryptedCredential:
        """
        Insert or overwrite the credential of one type in a single transaction.

        A concurrent insert of the same (connection, type) loses on the unique
        index and is retried as an overwrite.
        """
        for attempt in range(2):
            try:
                return self._write_credential(
                    connection_id, credential_type, ciphertext, expires_at
                )
            except IntegrityError as e:
                if attempt == 1:
                    self._handle_db_error(e, "upsert_credential", connection_id)
            except Exception as e:
                self._handle_db_error(e, "upsert_credential", connection_id)

    def _write_credential(
        self,
        connection_id: str,
        credential_type: CredentialType,
        ciphertext: str,
        expires_at: Optional[datetime],
    ) -> EncryptedCredential:
        with self.db_manager.session_scope() as session:
            if session.get(Connection, connection_id) is None:
                raise not_found("Connection", connection_id=connection_id)

            credential = session.scalar(
                select(EncryptedCredential)
                .where(
                    EncryptedCredential.connection_id == connection_id,
                    EncryptedCredential.credential_type == credential_type.value,
                )
                .with_for_update()
            )
            if credential is None:
                credential = EncryptedCredential(
                    connection_id=connection_id,
                    credential_type=credential_type.value,
                    ciphertext=ciphertext,
                    expires_at=expires_at,
                    version=1,
                )
                session.add(credential)
            else:
                credential.ciphertext = ciphertext
                credential.expires_at = expires_at
                credential.version = credential.version + 1
            session.flush()
            return credential

    def delete_credentials(
        self, connection_id: str, credential_type: Optional[CredentialType] = None
    ) -> int:
        with self._session_scope("delete_credentials", connection_id) as session:
            stmt = delete(EncryptedCredential).where(
                EncryptedCredential.connection_id == connection_id
            )
            if credential_type is not None:
                stmt = stmt.where(EncryptedCredential.credential_type == credential_type.value)
            return session.execute(stmt).rowcount

    def rewrite_ciphertexts(self, connection_id: str, transform: Callable[[str], str]) -> int:
        """
        Replace every ciphertext of a connection with ``transform(ciphertext)``
        in one transaction. Versions are left alone; the plaintext is unchanged.
        """
        with self._session_scope("rewrite_ciphertexts", connection_id) as session:
            credentials = session.scalars(
                select(EncryptedCredential)
                .where(EncryptedCredential.connection_id == connection_id)
                .with_for_update()
            ).all()
            for credential in credentials:
                credential.ciphertext = transform(credential.ciphertext)
            return len(credentials)
