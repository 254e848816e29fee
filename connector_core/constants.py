"""
Constants and enums for the connector core.

This module centralizes the magic strings shared by models, services
and the scheduled entrypoint.
"""

from enum import Enum


class AuthType(str, Enum):
    """Authentication schemes an integration can declare."""

    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"
    CUSTOM = "custom"


class CredentialType(str, Enum):
    """Kinds of secrets held by the credential vault."""

    ACCESS_TOKEN = "access_token"
    REFRESH_TOKEN = "refresh_token"
    API_KEY = "api_key"
    CUSTOM = "custom"


class ConnectionStatus(str, Enum):
    """Authorization lifecycle of a connection."""

    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class TriggerStatus(str, Enum):
    """Polling lifecycle of a trigger."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ERROR = "ERROR"


class EventStatus(str, Enum):
    """Delivery lifecycle of a trigger event."""

    PENDING = "pending"
    DELIVERED = "delivered"
    PENDING_RETRY = "pending_retry"
    FAILED = "failed"


class HttpMethod(str, Enum):
    """HTTP methods supported by actions and webhooks."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class TriggerType(str, Enum):
    """Trigger types with dedicated change detectors."""

    NEW_SHEET_ROW = "new-sheet-row"
    NEW_CALENDAR_EVENT = "new-calendar-event"
    NEW_DRIVE_FILE = "new-drive-file"
    NEW_ITEM = "new-item"
    UPDATED_ITEM = "updated-item"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class QueueName(str, Enum):
    """Queue names used for log shipping."""

    LOGS = "logs-queue"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    CREDENTIAL_MASTER_KEY = "CREDENTIAL_MASTER_KEY"
    CRON_SECRET = "CRON_SECRET"
    INTEGRATION_CATALOG_PATH = "INTEGRATION_CATALOG_PATH"
    ENABLE_LOGS_QUEUE = "ENABLE_LOGS_QUEUE"


# Header names whose values are always redacted from ApiLog payloads
SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "api-key",
    }
)

# Payload keys whose values are always redacted from ApiLog payloads
SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "client_secret",
        "password",
        "api_key",
        "apikey",
        "secret",
        "token",
    }
)

REDACTED = "***REDACTED***"

WEBHOOK_USER_AGENT = "connector-core-triggers/1.0"
