"""
OAuth flow manager: authorization URLs, code exchange and token refresh.

The manager owns a connection's authorization state. Authorization is
stateless on the server: everything the callback needs travels in an
encrypted, time-limited state token.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

import requests
from pydantic import ValidationError as PydanticValidationError

from ..config import AppConfig, get_config
from ..constants import AuthType, ConnectionStatus, CredentialType
from ..context.credential_scope import CredentialScope, credential_scope
from ..db.db_base import ensure_utc, utc_now
from ..exceptions import (
    ConfigError,
    CredentialCorruptError,
    CredentialNotFoundError,
    ReauthorizationRequiredError,
    UpstreamError,
    ValidationError,
)
from ..repositories.connection_repository import ConnectionRepository
from ..repositories.integration_catalog import IntegrationCatalog
from ..schemas.auth_config_schemas import OAuth2Config
from ..schemas.credential_schemas import (
    BasicAuthCredentials,
    CredentialMetadata,
    OAuthState,
    OAuthTokenResponse,
)
from ..utils.encryption_utils import CredentialCipher
from ..utils.json_utils import dumps, loads
from ..utils.keyed_lock import KeyedLock
from ..utils.logger import get_logger
from .credential_vault import CredentialVault


class OAuthFlowManager:
    """
    Drives the OAuth2 authorization-code flow and keeps tokens fresh.

    Args:
        connections: Connection repository
        vault: Credential vault for token storage
        catalog: Integration catalog providing each integration's auth config
        cipher: Encryption primitive used to seal state tokens
        http_session: ``requests`` session for token endpoint calls
        refresh_locks: Per-connection locks making refresh single-flight
        config: Application configuration
    """

    def __init__(
        self,
        connections: ConnectionRepository,
        vault: CredentialVault,
        catalog: IntegrationCatalog,
        cipher: CredentialCipher,
        http_session: Optional[requests.Session] = None,
        refresh_locks: Optional[KeyedLock] = None,
        config: Optional[AppConfig] = None,
    ):
        self.connections = connections
        self.vault = vault
        self.catalog = catalog
        self.cipher = cipher
        self.http = http_session or requests.Session()
        self.refresh_locks = refresh_locks or KeyedLock()
        self.config = config or get_config()
        self.logger = get_logger()

    # ==================== STATE TOKENS ====================

    def encode_state(self, state: OAuthState) -> str:
        """Seal the callback context into an opaque, tamper-evident token."""
        if not state.nonce:
            state = state.model_copy(update={"nonce": secrets.token_urlsafe(12)})
        return self.cipher.encrypt(dumps(state.model_dump(by_alias=True, exclude_none=True)))

    def decode_state(self, token: str) -> OAuthState:
        """
        Open a state token produced by :meth:`encode_state`.

        Raises:
            ValidationError: token tampered with, malformed or older than the TTL
        """
        try:
            raw = self.cipher.decrypt(token, ttl=self.config.security.oauth_state_ttl_seconds)
            return OAuthState.model_validate(loads(raw))
        except (CredentialCorruptError, PydanticValidationError, ValueError) as e:
            raise ValidationError("Invalid or expired OAuth state", field="state", cause=e)

    # ==================== AUTHORIZATION ====================

    def generate_authorization_url(
        self,
        config: OAuth2Config,
        client_id: str,
        redirect_uri: str,
        state: str,
        scopes: Optional[List[str]] = None,
    ) -> str:
        """Build the provider's authorization URL for the code flow."""
        scopes = config.scopes if scopes is None else scopes
        params: Dict[str, str] = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if scopes:
            params["scope"] = config.scope_separator.join(scopes)
        params.update(config.authorize_params())

        parts = urlsplit(config.authorization_url)
        query = dict(parse_qsl(parts.query))
        query.update(params)
        return urlunsplit(parts._replace(query=urlencode(query)))

    def start_authorization(
        self,
        connection_id: str,
        redirect_uri: str,
        workspace_slug: Optional[str] = None,
        action_slug: Optional[str] = None,
    ) -> str:
        """Authorization URL for a pending connection, with its context sealed in ``state``."""
        connection = self.connections.get(connection_id)
        integration = self.catalog.get_integration(connection.integration_id)
        config = self._oauth_config(integration.auth_config, integration.slug)
        client_id, _ = config.client_credentials()

        state = self.encode_state(
            OAuthState(
                integration_slug=integration.slug,
                connection_id=connection_id,
                workspace_slug=workspace_slug,
                action_slug=action_slug,
            )
        )
        return self.generate_authorization_url(config, client_id, redirect_uri, state)

    def exchange_code(self, connection_id: str, code: str, redirect_uri: str) -> OAuthTokenResponse:
        """
        Trade an authorization code for tokens and authorize the connection.

        Raises:
            UpstreamError: token endpoint rejected the code or was unreachable
        """
        if not code:
            raise ValidationError("Authorization code is required", field="code")

        connection = self.connections.get(connection_id)
        integration = self.catalog.get_integration(connection.integration_id)
        config = self._oauth_config(integration.auth_config, integration.slug)
        client_id, client_secret = config.client_credentials()

        tokens = self._request_token(
            config,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "client_secret": client_secret,
            },
            connection_id,
        )

        now = utc_now()
        self.vault.store(
            connection_id, CredentialType.ACCESS_TOKEN, tokens.access_token, tokens.expires_at(now)
        )
        if tokens.refresh_token:
            self.vault.store(connection_id, CredentialType.REFRESH_TOKEN, tokens.refresh_token)
        self.connections.set_status(connection_id, ConnectionStatus.AUTHORIZED, refreshed_at=now)

        self.logger.info(
            "OAuth code exchanged",
            extra={
                "connection_id": connection_id,
                "integration": integration.slug,
                "has_refresh_token": bool(tokens.refresh_token),
            },
        )
        return tokens

    def handle_callback(self, code: str, state: str, redirect_uri: str) -> OAuthState:
        """Resume the flow from the provider redirect. Returns the decoded context."""
        context = self.decode_state(state)
        self.exchange_code(context.connection_id, code, redirect_uri)
        return context

    # ==================== STATIC CREDENTIALS ====================

    def connect_api_key(self, connection_id: str, api_key: str) -> None:
        """Store an API key or static bearer token and authorize the connection."""
        connection = self.connections.get(connection_id)
        integration = self.catalog.get_integration(connection.integration_id)
        if integration.auth_type not in (AuthType.API_KEY, AuthType.BEARER):
            raise ConfigError(
                f"Integration '{integration.slug}' does not use API keys",
                auth_type=integration.auth_type.value,
            )
        self.vault.store(connection_id, CredentialType.API_KEY, api_key.strip())
        self.connections.set_status(connection_id, ConnectionStatus.AUTHORIZED)

    def connect_custom(self, connection_id: str, values: Dict[str, Any]) -> None:
        """Store a basic-auth or custom credential document and authorize the connection."""
        connection = self.connections.get(connection_id)
        integration = self.catalog.get_integration(connection.integration_id)
        if integration.auth_type == AuthType.BASIC:
            try:
                values = BasicAuthCredentials.model_validate(values).model_dump()
            except PydanticValidationError as e:
                raise ValidationError("Invalid basic auth credentials", cause=e)
        elif integration.auth_type != AuthType.CUSTOM:
            raise ConfigError(
                f"Integration '{integration.slug}' does not use custom credentials",
                auth_type=integration.auth_type.value,
            )
        self.vault.store(connection_id, CredentialType.CUSTOM, dumps(values))
        self.connections.set_status(connection_id, ConnectionStatus.AUTHORIZED)

    def revoke(self, connection_id: str, reason: str = "revoked by owner") -> None:
        """Drop every credential and mark the connection REVOKED."""
        self.vault.delete(connection_id)
        self.connections.set_status(connection_id, ConnectionStatus.REVOKED, reason=reason)

    # ==================== REFRESH ====================

    def _is_stale(self, metadata: CredentialMetadata, now: datetime) -> bool:
        if metadata.expires_at is None:
            return False
        expires_at = ensure_utc(metadata.expires_at)
        buffer = timedelta(seconds=self.config.invocation.refresh_buffer_seconds)
        # Tokens shorter-lived than the buffer are refreshed at half their lifetime
        lifetime = expires_at - ensure_utc(metadata.updated_at)
        if lifetime > timedelta(0):
            buffer = min(buffer, lifetime / 2)
        return expires_at <= now + buffer

    def ensure_access_token(self, connection_id: str) -> str:
        """
        A usable access token, refreshed first if it is within the expiry buffer.

        Raises:
            CredentialNotFoundError: the connection was never authorized
            ReauthorizationRequiredError: refresh was rejected
        """
        with credential_scope(connection_id):
            metadata = self.vault.get_metadata(connection_id, CredentialType.ACCESS_TOKEN)
            if metadata is None:
                raise CredentialNotFoundError(
                    "Connection has no access token", connection_id=connection_id
                )
            if not self._is_stale(metadata, utc_now()):
                return self.vault.retrieve(connection_id, CredentialType.ACCESS_TOKEN)
            return self.refresh(connection_id, observed_version=metadata.version)

    def refresh(self, connection_id: str, observed_version: Optional[int] = None) -> str:
        """
        Rotate the access token using the stored refresh token.

        Single-flight per connection: callers queue on the connection's lock,
        and a caller that observed an older token version returns the token a
        previous holder already refreshed instead of calling the provider again.

        Raises:
            ReauthorizationRequiredError: provider rejected the refresh token or
                none is stored; the connection is REVOKED
            UpstreamError: provider unreachable or failing (retryable); the
                connection stays EXPIRED
        """
        with self.refresh_locks.hold(connection_id), credential_scope(connection_id):
            now = utc_now()
            metadata = self.vault.get_metadata(connection_id, CredentialType.ACCESS_TOKEN)
            # A newer version means the previous lock holder already refreshed
            if (
                observed_version is not None
                and metadata is not None
                and metadata.version != observed_version
            ):
                self.logger.debug(
                    "Token already refreshed by a concurrent caller",
                    extra={"connection_id": connection_id},
                )
                return self.vault.retrieve(connection_id, CredentialType.ACCESS_TOKEN)

            self.connections.set_status(
                connection_id, ConnectionStatus.EXPIRED, reason="access token refresh due"
            )
            connection = self.connections.get(connection_id)
            integration = self.catalog.get_integration(connection.integration_id)
            config = self._oauth_config(integration.auth_config, integration.slug)

            try:
                refresh_token = self.vault.retrieve(connection_id, CredentialType.REFRESH_TOKEN)
            except CredentialNotFoundError as e:
                self._mark_revoked(connection_id, "no refresh token stored")
                raise ReauthorizationRequiredError(connection_id=connection_id, cause=e)

            client_id, client_secret = config.client_credentials()
            try:
                tokens = self._request_token(
                    config,
                    {
                        "grant_type": "refresh_token",
                        "refresh_token": refresh_token,
                        "client_id": client_id,
                        "client_secret": client_secret,
                    },
                    connection_id,
                )
            except UpstreamError as e:
                if e.retryable:
                    raise
                self._mark_revoked(connection_id, f"refresh rejected: {e.message}")
                raise ReauthorizationRequiredError(connection_id=connection_id, cause=e)

            CredentialScope.register_secret(tokens.access_token)
            self.vault.store(
                connection_id,
                CredentialType.ACCESS_TOKEN,
                tokens.access_token,
                tokens.expires_at(now),
            )
            # Some providers rotate the refresh token on every use
            if tokens.refresh_token and tokens.refresh_token != refresh_token:
                CredentialScope.register_secret(tokens.refresh_token)
                self.vault.store(connection_id, CredentialType.REFRESH_TOKEN, tokens.refresh_token)
            self.connections.set_status(
                connection_id, ConnectionStatus.AUTHORIZED, refreshed_at=now
            )

            self.logger.info(
                "Access token refreshed",
                extra={"connection_id": connection_id, "expires_in": tokens.expires_in},
            )
            return tokens.access_token

    def _mark_revoked(self, connection_id: str, reason: str) -> None:
        self.connections.set_status(connection_id, ConnectionStatus.REVOKED, reason=reason)

    # ==================== HELPERS ====================

    def _oauth_config(self, auth_config: Any, integration_slug: str) -> OAuth2Config:
        if not isinstance(auth_config, OAuth2Config):
            raise ConfigError(
                f"Integration '{integration_slug}' is not an OAuth2 integration",
                integration=integration_slug,
            )
        return auth_config

    def _request_token(
        self, config: OAuth2Config, form: Dict[str, str], connection_id: str
    ) -> OAuthTokenResponse:
        """POST to the token endpoint and parse the RFC 6749 response."""
        try:
            response = self.http.post(
                config.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self.config.invocation.timeout_seconds,
            )
        except requests.Timeout as e:
            raise UpstreamError(
                "Token endpoint timed out", retryable=True, cause=e, connection_id=connection_id
            )
        except requests.RequestException as e:
            raise UpstreamError(
                "Token endpoint unreachable", retryable=True, cause=e, connection_id=connection_id
            )

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or (isinstance(body, dict) and body.get("error")):
            error = body.get("error", "") if isinstance(body, dict) else ""
            raise UpstreamError(
                f"Token endpoint returned {response.status_code} {error}".strip(),
                retryable=response.status_code >= 500 or response.status_code in (408, 429),
                upstream_status=response.status_code,
                connection_id=connection_id,
            )

        try:
            return OAuthTokenResponse.model_validate(body)
        except PydanticValidationError as e:
            raise UpstreamError(
                "Malformed token endpoint response",
                retryable=False,
                upstream_status=response.status_code,
                cause=e,
                connection_id=connection_id,
            )
