"""
Invocation scope for plaintext credentials.

The credential vault only hands out plaintext while a scope for the
connection is open on the current thread. Every plaintext handed out is
remembered by the open scopes so the caller can redact it from any
payload it persists, and forgotten when the scopes close.
"""

import threading
from contextlib import contextmanager
from typing import Generator, List, Optional, Set

from ..exceptions import ErrorCode, ValidationError
from ..utils.logger import get_logger


class _ScopeFrame:
    __slots__ = ("connection_id", "secrets")

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self.secrets: Set[str] = set()


class CredentialScope:
    """Thread-local stack of open credential scopes."""

    _thread_local = threading.local()
    _logger = get_logger()

    @classmethod
    def _stack(cls) -> List[_ScopeFrame]:
        stack = getattr(cls._thread_local, "stack", None)
        if stack is None:
            stack = []
            cls._thread_local.stack = stack
        return stack

    @classmethod
    def push(cls, connection_id: str) -> None:
        if not connection_id:
            raise ValidationError(
                "connection_id must be a non-empty string",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="connection_id",
            )
        cls._stack().append(_ScopeFrame(connection_id))
        cls._logger.debug("Credential scope opened", extra={"connection_id": connection_id})

    @classmethod
    def pop(cls) -> None:
        stack = cls._stack()
        if stack:
            frame = stack.pop()
            frame.secrets.clear()

    @classmethod
    def is_active(cls, connection_id: str) -> bool:
        """Whether a scope for ``connection_id`` is open on this thread."""
        return any(frame.connection_id == connection_id for frame in cls._stack())

    @classmethod
    def current_connection_id(cls) -> Optional[str]:
        stack = cls._stack()
        return stack[-1].connection_id if stack else None

    @classmethod
    def register_secret(cls, value: str) -> None:
        """Remember a plaintext in every open scope so enclosing scopes can redact it too."""
        if not value:
            return
        for frame in cls._stack():
            frame.secrets.add(value)

    @classmethod
    def secrets(cls) -> Set[str]:
        """Every plaintext handed out in any open scope of this thread."""
        collected: Set[str] = set()
        for frame in cls._stack():
            collected.update(frame.secrets)
        return collected


@contextmanager
def credential_scope(connection_id: str) -> Generator[CredentialScope, None, None]:
    """
    Open an invocation scope for one connection.

    Scopes nest, so a token refresh inside an invocation may open its own.
    """
    CredentialScope.push(connection_id)
    try:
        yield CredentialScope
    finally:
        CredentialScope.pop()
