"""
Pydantic schemas for OAuth exchanges and stored credential metadata.
"""

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..constants import CredentialType
from ..db.db_base import utc_now


class OAuthTokenResponse(BaseModel):
    """Token endpoint response, as defined by RFC 6749 section 5.1."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(None, ge=0)
    token_type: str = "Bearer"
    scope: Optional[str] = None

    def expires_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return (now or utc_now()) + timedelta(seconds=self.expires_in)


class OAuthState(BaseModel):
    """Context carried through the provider redirect inside the state token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    integration_slug: str = Field(..., min_length=1)
    connection_id: str = Field(..., min_length=1)
    workspace_slug: Optional[str] = None
    action_slug: Optional[str] = None
    nonce: Optional[str] = None


class CredentialMetadata(BaseModel):
    """Everything about a stored credential except its value."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    connection_id: str
    credential_type: CredentialType
    expires_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime


class BasicAuthCredentials(BaseModel):
    """Custom credential payload for basic auth integrations."""

    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        if v.isspace():
            raise ValueError("Username cannot be whitespace")
        return v

