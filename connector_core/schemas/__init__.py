"""Pydantic schemas for catalog data, credentials, invocations and triggers."""

from .auth_config_schemas import (
    ApiKeyConfig,
    AuthConfig,
    BasicAuthConfig,
    BearerConfig,
    CustomConfig,
    OAuth2Config,
    parse_auth_config,
)
from .credential_schemas import (
    BasicAuthCredentials,
    CredentialMetadata,
    OAuthState,
    OAuthTokenResponse,
)
from .integration_schemas import (
    CatalogDocument,
    Integration,
    IntegrationAction,
    RequestTransform,
    ResponseTransform,
    TransformConfig,
)
from .invocation_schemas import InvocationResult, PreparedRequest
from .trigger_schemas import (
    BatchRunSummary,
    DeliveryResult,
    DetectedChange,
    PollResult,
    TriggerConfig,
    TriggerStats,
    WebhookPayload,
)

__all__ = [
    "ApiKeyConfig",
    "AuthConfig",
    "BasicAuthConfig",
    "BearerConfig",
    "CustomConfig",
    "OAuth2Config",
    "parse_auth_config",
    "BasicAuthCredentials",
    "CredentialMetadata",
    "OAuthState",
    "OAuthTokenResponse",
    "CatalogDocument",
    "Integration",
    "IntegrationAction",
    "RequestTransform",
    "ResponseTransform",
    "TransformConfig",
    "InvocationResult",
    "PreparedRequest",
    "BatchRunSummary",
    "DeliveryResult",
    "DetectedChange",
    "PollResult",
    "TriggerConfig",
    "TriggerStats",
    "WebhookPayload",
]
