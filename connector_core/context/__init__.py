"""Thread-local execution context."""

from .credential_scope import CredentialScope, credential_scope

__all__ = ["CredentialScope", "credential_scope"]
