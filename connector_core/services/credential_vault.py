"""
Credential vault: encrypted storage of connection secrets.

Plaintext goes in through :meth:`CredentialVault.store` and comes out only
through :meth:`CredentialVault.retrieve` inside a credential scope opened for
the same connection. Neither method logs values.
"""

from datetime import datetime
from typing import Optional

from ..constants import CredentialType
from ..context.credential_scope import CredentialScope, credential_scope
from ..db.db_base import ensure_utc
from ..exceptions import CredentialError, CredentialNotFoundError, ErrorCode
from ..repositories.connection_repository import ConnectionRepository
from ..schemas.credential_schemas import CredentialMetadata
from ..utils.encryption_utils import CredentialCipher
from ..utils.logger import get_logger


class CredentialVault:
    """
    Encrypts secrets with the master key and persists only ciphertext.

    Args:
        repository: Connection repository holding the credential rows
        cipher: Encryption primitive keyed by the server master secret
    """

    def __init__(self, repository: ConnectionRepository, cipher: CredentialCipher):
        self.repository = repository
        self.cipher = cipher
        self.logger = get_logger()

    # Re-exported so callers only need the vault
    scope = staticmethod(credential_scope)

    def store(
        self,
        connection_id: str,
        credential_type: CredentialType,
        raw_value: str,
        expires_at: Optional[datetime] = None,
    ) -> str:
        """
        Encrypt and persist a secret, replacing any previous one of the same type.

        Returns:
            Opaque reference to the stored credential
        """
        if not raw_value:
            raise CredentialError(
                "Refusing to store an empty credential",
                error_code=ErrorCode.MISSING_REQUIRED,
                status_code=400,
                connection_id=connection_id,
                credential_type=credential_type.value,
            )

        ciphertext = self.cipher.encrypt(raw_value)
        credential = self.repository.upsert_credential(
            connection_id, credential_type, ciphertext, expires_at
        )

        self.logger.info(
            "Credential stored",
            extra={
                "connection_id": connection_id,
                "credential_type": credential_type.value,
                "credential_version": credential.version,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        return credential.id

    def retrieve(self, connection_id: str, credential_type: CredentialType) -> str:
        """
        Decrypt a secret for use in the current invocation.

        Raises:
            CredentialError: no credential scope is open for the connection
            CredentialNotFoundError: nothing stored for this type
            CredentialCorruptError: ciphertext cannot be decrypted
        """
        if not CredentialScope.is_active(connection_id):
            raise CredentialError(
                "Credentials can only be read inside an invocation scope",
                error_code=ErrorCode.PERMISSION_DENIED,
                status_code=403,
                connection_id=connection_id,
            )

        credential = self.repository.get_credential(connection_id, credential_type)
        if credential is None:
            raise CredentialNotFoundError(
                connection_id=connection_id, credential_type=credential_type.value
            )

        plaintext = self.cipher.decrypt(credential.ciphertext)
        CredentialScope.register_secret(plaintext)
        return plaintext

    def get_metadata(
        self, connection_id: str, credential_type: CredentialType
    ) -> Optional[CredentialMetadata]:
        """Expiry and version of a stored credential, without its value."""
        credential = self.repository.get_credential(connection_id, credential_type)
        if credential is None:
            return None
        metadata = CredentialMetadata.model_validate(credential)
        return metadata.model_copy(update={"expires_at": ensure_utc(metadata.expires_at)})

    def rotate_keys(self, connection_id: str) -> int:
        """
        Re-encrypt a connection's credentials under the primary master key.

        Run after prepending a new key to ``CREDENTIAL_MASTER_KEY``; once every
        connection is rotated the old key can be dropped. Plaintext never
        leaves the cipher, so no credential scope is needed.

        Raises:
            CredentialCorruptError: a ciphertext matches none of the configured keys
        """
        rotated = self.repository.rewrite_ciphertexts(connection_id, self.cipher.rotate)
        self.logger.info(
            "Credentials re-encrypted",
            extra={"connection_id": connection_id, "rotated": rotated},
        )
        return rotated

    def delete(self, connection_id: str, credential_type: Optional[CredentialType] = None) -> int:
        deleted = self.repository.delete_credentials(connection_id, credential_type)
        self.logger.info(
            "Credentials deleted",
            extra={
                "connection_id": connection_id,
                "credential_type": credential_type.value if credential_type else "all",
                "deleted": deleted,
            },
        )
        return deleted
