"""
Action invocation engine.

Turns a catalog action, a connection and caller parameters into one HTTP
call: validate, render templates, attach credentials, execute, classify,
and record an ApiLog row with secrets redacted.
"""

import base64
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple
from urllib.parse import quote

import requests

from ..config import AppConfig, get_config
from ..constants import ConnectionStatus, CredentialType, HttpMethod
from ..context.credential_scope import CredentialScope, credential_scope
from ..db.db_connection_models import Connection
from ..exceptions import (
    BaseError,
    ConfigError,
    CredentialError,
    ErrorCode,
    ReauthorizationRequiredError,
    UpstreamError,
)
from ..repositories.api_log_repository import ApiLogRepository
from ..repositories.connection_repository import ConnectionRepository
from ..repositories.integration_catalog import IntegrationCatalog
from ..schemas.auth_config_schemas import (
    ApiKeyConfig,
    BasicAuthConfig,
    BearerConfig,
    CustomConfig,
    OAuth2Config,
)
from ..schemas.integration_schemas import Integration, IntegrationAction
from ..schemas.invocation_schemas import InvocationResult, PreparedRequest
from ..utils.hash_utils import get_nested_value
from ..utils.json_utils import dumps, loads
from ..utils.logger import get_logger
from ..utils.parameter_validation import (
    FieldSpec,
    parse_request_schema,
    required_names,
    resolve_values,
    validate_parameters,
)
from ..utils.redaction_utils import redact_headers, redact_payload
from ..utils.template_utils import compile_structure, compile_template, TemplateRenderer
from .credential_vault import CredentialVault
from .oauth_service import OAuthFlowManager

# RFC 3986 pchar without "/", so a value can never add path segments
_PATH_SAFE = "!$&'()*+,;=:@-._~"

# Response bodies stored in ApiLog are capped
_MAX_LOGGED_TEXT = 10_000


def _quote_path_value(text: str) -> str:
    return quote(text, safe=_PATH_SAFE)


def _is_absolute(url: str) -> bool:
    return url.startswith("http://") or url.startswith("https://")


@dataclass(frozen=True)
class CompiledAction:
    """Parsed request schema of an action, with its templates validated."""

    fields: Dict[str, FieldSpec]
    required: FrozenSet[str]
    path_references: Tuple[str, ...]


class ActionInvocationEngine:
    """
    Executes catalog actions against third-party APIs.

    Args:
        catalog: Integration catalog
        connections: Connection repository
        vault: Credential vault
        oauth: OAuth flow manager, used for access tokens
        api_logs: Repository receiving one row per invocation
        http_session: ``requests`` session for upstream calls
        config: Application configuration
    """

    def __init__(
        self,
        catalog: IntegrationCatalog,
        connections: ConnectionRepository,
        vault: CredentialVault,
        oauth: OAuthFlowManager,
        api_logs: ApiLogRepository,
        http_session: Optional[requests.Session] = None,
        config: Optional[AppConfig] = None,
    ):
        self.catalog = catalog
        self.connections = connections
        self.vault = vault
        self.oauth = oauth
        self.api_logs = api_logs
        self.http = http_session or requests.Session()
        self.config = config or get_config()
        self.logger = get_logger()

        self._compiled: Dict[str, CompiledAction] = {}
        self._compile_lock = threading.Lock()

    # ==================== COMPILATION ====================

    def compile(self, action: IntegrationAction) -> CompiledAction:
        """
        Parse and validate an action definition once; later calls hit the cache.

        Raises:
            ConfigError: malformed request schema or template
        """
        cached = self._compiled.get(action.id)
        if cached is not None:
            return cached

        with self._compile_lock:
            cached = self._compiled.get(action.id)
            if cached is not None:
                return cached

            fields = parse_request_schema(action.request_schema)
            path = compile_template(action.endpoint_path)
            request = action.transform_config.request if action.transform_config else None
            if request is not None:
                compile_structure(request.body)
                compile_structure(request.params)
                compile_structure(request.headers)

            compiled = CompiledAction(
                fields=fields,
                required=frozenset(required_names(fields)),
                path_references=path.references,
            )
            self._compiled[action.id] = compiled
            return compiled

    # ==================== INVOCATION ====================

    def invoke_action(
        self,
        connection_id: str,
        action_slug: str,
        parameters: Optional[Dict[str, Any]] = None,
        trigger_id: Optional[str] = None,
    ) -> InvocationResult:
        """Look up the connection and its integration's action, then :meth:`invoke`."""
        connection = self.connections.get(connection_id)
        action = self.catalog.get_action(connection.integration_id, action_slug)
        return self.invoke(action, connection, parameters, trigger_id=trigger_id)

    def invoke(
        self,
        action: IntegrationAction,
        connection: Connection,
        parameters: Optional[Dict[str, Any]] = None,
        trigger_id: Optional[str] = None,
    ) -> InvocationResult:
        """
        Execute one action call.

        Raises:
            ValidationError: parameters fail the request schema, raised before
                any credential read or network call
            ConfigError: malformed action or integration definition
            CredentialError: credentials missing, corrupt or revoked
            UpstreamError: the API failed; ``retryable`` tells 5xx/timeouts
                apart from client errors
        """
        parameters = dict(parameters or {})
        started = time.monotonic()
        request: Optional[PreparedRequest] = None
        response: Optional[requests.Response] = None
        body: Any = None

        with credential_scope(connection.id):
            try:
                integration = self.catalog.get_integration(connection.integration_id)
                request = self.prepare(action, integration, parameters)
                if connection.status == ConnectionStatus.REVOKED.value:
                    raise ReauthorizationRequiredError(connection_id=connection.id)

                request = self._apply_auth(integration, connection.id, request)
                response = self._send(request, connection.id)
                body = self._parse_body(response)
                self._raise_for_status(response, action)
                data = self._map_response(action, body)
            except BaseError as error:
                self._record(
                    action, connection, trigger_id, request, response, body, started, error
                )
                raise

            log = self._record(action, connection, trigger_id, request, response, body, started)

        return InvocationResult(
            status_code=response.status_code,
            data=data,
            headers=dict(response.headers),
            duration_ms=log.duration_ms,
            log_id=log.id,
        )

    def prepare(
        self,
        action: IntegrationAction,
        integration: Integration,
        parameters: Dict[str, Any],
    ) -> PreparedRequest:
        """
        Validate parameters and render the request, without credentials.

        Every required field is checked before any template is rendered, so a
        missing one always surfaces as ``missing required field: <name>``.
        """
        if not integration.is_active:
            raise ConfigError(
                f"Integration '{integration.slug}' is disabled", integration=integration.slug
            )

        compiled = self.compile(action)
        validate_parameters(compiled.fields, parameters)
        values = resolve_values(compiled.fields, parameters)
        renderer = TemplateRenderer(values, compiled.required)

        # Path tokens cannot be omitted, so all of them are required
        path = renderer.render_text(action.endpoint_path, quote=_quote_path_value, all_required=True)
        if _is_absolute(path):
            url = path
        elif integration.base_url:
            url = f"{integration.base_url.rstrip('/')}/{path.lstrip('/')}"
        else:
            raise ConfigError(
                f"Action '{action.slug}' has a relative path but no base URL",
                integration=integration.slug,
            )

        method = action.http_method.value
        template = action.transform_config.request if action.transform_config else None
        params: Dict[str, Any] = {}
        headers: Dict[str, Any] = {}
        body: Any = None

        if template is not None:
            params = renderer.render_map(template.params, native=False)
            headers = {
                key: value if isinstance(value, str) else dumps(value)
                for key, value in renderer.render_map(template.headers, native=False).items()
            }
            if template.body is not None:
                body = renderer.render_map(template.body, native=True)

        # Without templates the caller's values travel as-is, minus path tokens
        passthrough = {k: v for k, v in values.items() if k not in compiled.path_references}
        if method == HttpMethod.GET.value:
            if template is None or template.params is None:
                params = {**passthrough, **params}
        elif body is None and passthrough:
            body = passthrough

        headers.setdefault("Accept", "application/json")
        headers.setdefault("User-Agent", self.config.invocation.user_agent)
        return PreparedRequest(method=method, url=url, params=params, headers=headers, body=body)

    # ==================== CREDENTIALS ====================

    def _apply_auth(
        self, integration: Integration, connection_id: str, request: PreparedRequest
    ) -> PreparedRequest:
        """Attach credentials according to the integration's auth variant."""
        config = integration.auth_config
        headers = dict(request.headers)
        params = dict(request.params)

        if isinstance(config, OAuth2Config):
            token = self.oauth.ensure_access_token(connection_id)
            headers["Authorization"] = f"Bearer {token}"

        elif isinstance(config, BearerConfig):
            token = self.vault.retrieve(connection_id, CredentialType.API_KEY)
            headers[config.header_name] = f"{config.scheme} {token}"

        elif isinstance(config, ApiKeyConfig):
            key = self.vault.retrieve(connection_id, CredentialType.API_KEY)
            if config.param_name:
                params[config.param_name] = key
            else:
                headers[config.header_name] = f"{config.prefix} {key}" if config.prefix else key

        elif isinstance(config, BasicAuthConfig):
            values = self._custom_values(connection_id)
            raw = f"{values.get('username', '')}:{values.get('password', '')}"
            encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
            CredentialScope.register_secret(encoded)
            headers["Authorization"] = f"Basic {encoded}"

        elif isinstance(config, CustomConfig):
            values = self._custom_values(connection_id)
            for header, key in config.headers.items():
                headers[header] = self._custom_value(values, key, connection_id)
            for param, key in config.params.items():
                params[param] = self._custom_value(values, key, connection_id)

        return request.model_copy(update={"headers": headers, "params": params})

    def _custom_values(self, connection_id: str) -> Dict[str, Any]:
        raw = self.vault.retrieve(connection_id, CredentialType.CUSTOM)
        try:
            values = loads(raw)
        except ValueError as e:
            raise CredentialError(
                "Custom credential is not valid JSON",
                error_code=ErrorCode.INVALID_FORMAT,
                cause=e,
                connection_id=connection_id,
            )
        if not isinstance(values, dict):
            raise CredentialError(
                "Custom credential must be a JSON object",
                error_code=ErrorCode.INVALID_FORMAT,
                connection_id=connection_id,
            )
        for value in values.values():
            if isinstance(value, str):
                CredentialScope.register_secret(value)
        return values

    def _custom_value(self, values: Dict[str, Any], key: str, connection_id: str) -> str:
        value = values.get(key)
        if value is None or value == "":
            raise CredentialError(
                f"Custom credential has no value for '{key}'",
                error_code=ErrorCode.MISSING_REQUIRED,
                connection_id=connection_id,
            )
        return value if isinstance(value, str) else dumps(value)

    # ==================== HTTP ====================

    def _send(self, request: PreparedRequest, connection_id: str) -> requests.Response:
        try:
            return self.http.request(
                request.method,
                request.url,
                params=request.params or None,
                headers=request.headers,
                json=request.body,
                timeout=self.config.invocation.timeout_seconds,
            )
        except requests.Timeout as e:
            raise UpstreamError(
                "Upstream request timed out",
                retryable=True,
                error_code=ErrorCode.TIMEOUT_ERROR,
                cause=e,
                connection_id=connection_id,
            )
        except requests.RequestException as e:
            raise UpstreamError(
                "Upstream request failed",
                retryable=True,
                error_code=ErrorCode.CONNECTION_ERROR,
                cause=e,
                connection_id=connection_id,
            )

    @staticmethod
    def _parse_body(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _raise_for_status(response: requests.Response, action: IntegrationAction) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        # 408 and 429 ask the client to come back later
        retryable = status >= 500 or status in (408, 429)
        raise UpstreamError(
            f"Upstream returned {status} for action '{action.slug}'",
            retryable=retryable,
            upstream_status=status,
            action=action.slug,
        )

    @staticmethod
    def _map_response(action: IntegrationAction, body: Any) -> Any:
        response = action.transform_config.response if action.transform_config else None
        if response is None or not response.mapping or not isinstance(body, (dict, list)):
            return body
        return {field: get_nested_value(body, path) for field, path in response.mapping.items()}

    # ==================== LOGGING ====================

    def _record(
        self,
        action: IntegrationAction,
        connection: Connection,
        trigger_id: Optional[str],
        request: Optional[PreparedRequest],
        response: Optional[requests.Response],
        body: Any,
        started: float,
        error: Optional[BaseError] = None,
    ):
        secrets = CredentialScope.secrets()
        duration_ms = int((time.monotonic() - started) * 1000)

        request_payload = None
        if request is not None:
            request_payload = {
                "params": redact_payload(request.params, secrets),
                "headers": redact_headers(request.headers, secrets),
                "body": redact_payload(request.body, secrets),
            }
        # Redact the whole body first; the cut must not split a secret
        response_payload = redact_payload(body, secrets)
        if isinstance(response_payload, str) and len(response_payload) > _MAX_LOGGED_TEXT:
            response_payload = response_payload[:_MAX_LOGGED_TEXT]

        log = self.api_logs.create(
            connection_id=connection.id,
            trigger_id=trigger_id,
            user_id=connection.user_id,
            integration_id=connection.integration_id,
            action_slug=action.slug,
            http_method=action.http_method.value,
            url=redact_payload(request.url, secrets) if request is not None else None,
            request_payload=request_payload,
            response_payload=response_payload,
            status_code=response.status_code if response is not None else None,
            success=error is None,
            error_type=type(error).__name__ if error is not None else None,
            error_message=redact_payload(error.message, secrets) if error is not None else None,
            retryable=getattr(error, "retryable", None) if error is not None else None,
            duration_ms=duration_ms,
        )

        self.logger.info(
            "Action invoked",
            extra={
                "action": action.slug,
                "connection_id": connection.id,
                "status_code": log.status_code,
                "success": log.success,
                "duration_ms": duration_ms,
            },
        )
        return log
