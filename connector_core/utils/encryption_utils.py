"""
Symmetric encryption for credentials and OAuth state tokens.

Secrets are encrypted with Fernet (AES-128-CBC + HMAC-SHA256) under a
server-held master key. Several comma-separated keys may be configured;
the first encrypts, all of them decrypt, which allows key rotation.
"""

import base64
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from ..exceptions import ConfigError, CredentialCorruptError


def _load_fernet_key(key: str) -> Fernet:
    key = key.strip()
    # Accept a raw 32 character secret as well as a urlsafe base64 Fernet key
    if len(key) == 32:
        key = base64.urlsafe_b64encode(key.encode("utf-8")).decode("utf-8")
    try:
        return Fernet(key.encode("utf-8"))
    except ValueError as e:
        raise ConfigError("Invalid credential master key", cause=e)


def generate_master_key() -> str:
    """Create a new random Fernet key suitable for CREDENTIAL_MASTER_KEY."""
    return Fernet.generate_key().decode("utf-8")


class CredentialCipher:
    """Encryption primitive keyed by the master secret."""

    def __init__(self, master_key: Optional[str]):
        if not master_key:
            raise ConfigError("Credential master key is not configured")
        keys: List[str] = [k for k in master_key.split(",") if k.strip()]
        if not keys:
            raise ConfigError("Credential master key is not configured")
        self._fernet = MultiFernet([_load_fernet_key(k) for k in keys])

    def encrypt(self, value: str) -> str:
        """Encrypt a plaintext string. Every call yields a distinct token."""
        return self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str, ttl: Optional[int] = None) -> str:
        """
        Decrypt a token produced by :meth:`encrypt`.

        Args:
            ciphertext: Fernet token
            ttl: Reject tokens older than this many seconds

        Raises:
            CredentialCorruptError: token malformed, tampered, expired or
                encrypted under an unknown key
        """
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8"), ttl=ttl).decode("utf-8")
        except (InvalidToken, UnicodeError, AttributeError) as e:
            raise CredentialCorruptError(cause=e)

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a token under the current primary key."""
        try:
            return self._fernet.rotate(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise CredentialCorruptError(cause=e)
