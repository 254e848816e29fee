"""
Tagged authentication configuration variants.

Catalog entries carry an untyped ``auth_config`` blob next to an
``auth_type`` tag. The blob is parsed once, at ingestion, into exactly one
of the variants below; camelCase and snake_case field names are both
accepted here so no consumer has to probe for either spelling.
"""

import os
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..constants import AuthType
from ..exceptions import ConfigError

# Spellings used by older catalog rows
_AUTH_TYPE_ALIASES = {
    "bearer_token": AuthType.BEARER.value,
    "basic_auth": AuthType.BASIC.value,
    "apikey": AuthType.API_KEY.value,
    "oauth": AuthType.OAUTH2.value,
}


class BaseAuthConfig(BaseModel):
    """Accepts both ``token_url`` and ``tokenUrl`` style keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class OAuth2Config(BaseAuthConfig):
    """Authorization-code OAuth2 with refresh tokens."""

    auth_type: Literal["oauth2"] = "oauth2"
    authorization_url: str = Field(..., min_length=1)
    token_url: str = Field(..., min_length=1)
    scopes: List[str] = Field(default_factory=list)
    client_id_env: str = Field(..., min_length=1, description="Env var holding the client id")
    client_secret_env: str = Field(
        ..., min_length=1, description="Env var holding the client secret"
    )
    extra_authorize_params: Dict[str, str] = Field(default_factory=dict)
    scope_separator: str = " "

    def client_credentials(self) -> tuple:
        """Read the client id/secret from the environment."""
        client_id = os.getenv(self.client_id_env)
        client_secret = os.getenv(self.client_secret_env)
        if not client_id or not client_secret:
            raise ConfigError(
                "OAuth client credentials are not configured",
                client_id_env=self.client_id_env,
                client_secret_env=self.client_secret_env,
            )
        return client_id, client_secret

    def authorize_params(self) -> Dict[str, str]:
        """Provider-specific authorize query parameters."""
        params = dict(self.extra_authorize_params)
        # Google only issues a refresh token for offline access with forced consent
        if "google" in self.authorization_url and not params:
            params = {"access_type": "offline", "prompt": "consent"}
        return params


class ApiKeyConfig(BaseAuthConfig):
    """Static key sent in a header, or as a query parameter when ``param_name`` is set."""

    auth_type: Literal["api_key"] = "api_key"
    header_name: str = "Authorization"
    param_name: Optional[str] = None
    prefix: Optional[str] = None


class BearerConfig(BaseAuthConfig):
    """Static token sent as ``Authorization: Bearer <token>``."""

    auth_type: Literal["bearer"] = "bearer"
    header_name: str = "Authorization"
    scheme: str = "Bearer"


class BasicAuthConfig(BaseAuthConfig):
    """HTTP basic auth. The custom credential holds ``{"username", "password"}``."""

    auth_type: Literal["basic"] = "basic"


class CustomConfig(BaseAuthConfig):
    """
    Arbitrary headers and query parameters filled from a custom credential.

    ``headers``/``params`` map names to keys of the stored credential JSON.
    """

    auth_type: Literal["custom"] = "custom"
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, str] = Field(default_factory=dict)


AuthConfig = Annotated[
    Union[OAuth2Config, ApiKeyConfig, BearerConfig, BasicAuthConfig, CustomConfig],
    Field(discriminator="auth_type"),
]

_auth_config_adapter: TypeAdapter = TypeAdapter(AuthConfig)


def normalize_auth_type(auth_type: Any) -> str:
    value = auth_type.value if isinstance(auth_type, AuthType) else str(auth_type or "").lower()
    return _AUTH_TYPE_ALIASES.get(value, value)


def parse_auth_config(auth_type: Any, raw: Optional[Dict[str, Any]]) -> AuthConfig:
    """
    Build the tagged variant for ``auth_type`` from a raw config blob.

    Raises:
        ConfigError: unknown auth type or a blob missing required fields
    """
    tag = normalize_auth_type(auth_type)
    if tag not in {t.value for t in AuthType}:
        raise ConfigError(f"Unknown auth type: {auth_type}", auth_type=str(auth_type))

    data = dict(raw or {})
    # The tag decides the variant, whatever the blob itself claims
    data["auth_type"] = tag
    data["authType"] = tag
    try:
        return _auth_config_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid {tag} auth configuration", cause=e, auth_type=tag)
