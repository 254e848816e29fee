"""
Result of an action invocation.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PreparedRequest(BaseModel):
    """Fully rendered request, before credentials are attached."""

    method: str
    url: str
    params: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Any] = None


class InvocationResult(BaseModel):
    """Successful upstream response. Failures raise instead."""

    status_code: int
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)
    duration_ms: int = 0
    log_id: Optional[str] = None
