"""
Shared test fixtures.

Each test gets its own file-backed SQLite database so that worker threads
(trigger poller, concurrent refresh tests) see the same data as the test.
"""

from typing import Any, Dict
from unittest.mock import Mock

import pytest
import requests
from sqlalchemy.orm import Session

from connector_core.config import AppConfig, DeliveryConfig, PollingConfig, SecurityConfig
from connector_core.config import reset_config, set_config
from connector_core.db import DatabaseConfig, DatabaseManager, import_all_models
from connector_core.db.db_config import set_db_manager
from connector_core.repositories import (
    ApiLogRepository,
    ConnectionRepository,
    IntegrationCatalog,
    TriggerRepository,
)
from connector_core.services import (
    ActionInvocationEngine,
    CredentialVault,
    EventDispatcher,
    OAuthFlowManager,
    TriggerPoller,
)
from connector_core.utils import CredentialCipher, generate_master_key
from tests.fixtures.factories import configure_factories
from tests.fixtures.responses import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET


# ==================== DATABASE ====================


@pytest.fixture(scope="function")
def db_manager(tmp_path) -> DatabaseManager:
    """Fresh SQLite database file per test."""
    import_all_models()
    manager = DatabaseManager(
        DatabaseConfig(
            db_type="sqlite",
            database=str(tmp_path / "connector_core.db"),
            development_mode=True,
        )
    )
    manager.create_tables()
    set_db_manager(manager)

    yield manager

    manager.drop_tables()
    manager.close()


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """Session used by the factories; repositories open their own."""
    session = db_manager.session_factory()
    configure_factories(session)
    yield session
    session.rollback()
    session.close()


# ==================== CONFIGURATION ====================


@pytest.fixture(scope="function")
def master_key() -> str:
    return generate_master_key()


@pytest.fixture(scope="function")
def app_config(master_key: str, monkeypatch) -> AppConfig:
    """Configuration with fast retries and Google client credentials in the environment."""
    monkeypatch.setenv("GOOGLE_CLIENT_ID", GOOGLE_CLIENT_ID)
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", GOOGLE_CLIENT_SECRET)

    config = AppConfig(
        security=SecurityConfig(master_key=master_key, cron_secret="cron-test-secret"),
        polling=PollingConfig(max_workers=4, error_threshold=5, min_interval_seconds=60),
        delivery=DeliveryConfig(max_attempts=5, backoff_base_seconds=60, backoff_max_seconds=900),
    )
    set_config(config)
    yield config
    reset_config()


# ==================== CATALOG ====================


@pytest.fixture(scope="session")
def catalog_document() -> Dict[str, Any]:
    """Two integrations: Google Sheets (OAuth2) and a weather API (API key)."""
    return {
        "integrations": [
            {
                "id": "google-sheets",
                "name": "Google Sheets",
                "slug": "google-sheets",
                "authType": "oauth2",
                "baseUrl": "https://sheets.googleapis.com/v4",
                "authConfig": {
                    "authorizationUrl": "https://accounts.google.com/o/oauth2/v2/auth",
                    "tokenUrl": "https://oauth2.googleapis.com/token",
                    "scopes": ["https://www.googleapis.com/auth/spreadsheets"],
                    "clientIdEnv": "GOOGLE_CLIENT_ID",
                    "clientSecretEnv": "GOOGLE_CLIENT_SECRET",
                },
            },
            {
                "id": "weather",
                "name": "Weather",
                "slug": "weather",
                "auth_type": "apikey",
                "base_url": "https://api.weather.test",
                "auth_config": {"param_name": "appid"},
            },
        ],
        "actions": [
            {
                "id": "act-search-rows",
                "integrationId": "google-sheets",
                "name": "Search rows",
                "slug": "search-rows",
                "httpMethod": "get",
                "endpointPath": "/spreadsheets/{{spreadsheetId}}/values/{{sheetName}}",
                "requestSchema": {
                    "type": "object",
                    "properties": {
                        "spreadsheetId": {"type": "string", "required": True},
                        "sheetName": {"type": "string", "required": True, "default": "Sheet1"},
                        "majorDimension": {"type": "string", "enum": ["ROWS", "COLUMNS"]},
                    },
                },
                "transformConfig": {
                    "request": {"params": {"majorDimension": "{{majorDimension}}"}},
                },
            },
            {
                "id": "act-append-row",
                "integrationId": "google-sheets",
                "name": "Append row",
                "slug": "append-row",
                "httpMethod": "POST",
                "endpointPath": "/spreadsheets/{{spreadsheetId}}/values/{{sheetName}}:append",
                "requestSchema": {
                    "properties": {
                        "spreadsheetId": {"type": "string"},
                        "sheetName": {"type": "string", "default": "Sheet1"},
                        "values": {"type": "array"},
                        "note": {"type": "string"},
                    },
                    "required": ["spreadsheetId", "values"],
                },
                "transformConfig": {
                    "request": {
                        "params": {"valueInputOption": "RAW"},
                        "body": {"values": "{{values}}", "note": "{{note}}"},
                    },
                    "response": {"mapping": {"updatedRange": "updates.updatedRange"}},
                },
            },
            {
                "id": "act-current-weather",
                "integrationId": "weather",
                "name": "Current weather",
                "slug": "current",
                "httpMethod": "GET",
                "endpointPath": "/data/weather",
                "requestSchema": {
                    "properties": {
                        "city": {"type": "string", "required": True},
                        "units": {"type": "string", "default": "metric"},
                    }
                },
            },
        ],
    }


@pytest.fixture(scope="function")
def catalog(catalog_document) -> IntegrationCatalog:
    return IntegrationCatalog.from_dict(catalog_document)


# ==================== COMPONENTS ====================


@pytest.fixture(scope="function")
def http_session() -> Mock:
    """Fake ``requests.Session``; tests set ``request``/``post`` behavior."""
    return Mock(spec=requests.Session)


@pytest.fixture(scope="function")
def connection_repository(db_manager) -> ConnectionRepository:
    return ConnectionRepository(db_manager)


@pytest.fixture(scope="function")
def trigger_repository(db_manager) -> TriggerRepository:
    return TriggerRepository(db_manager)


@pytest.fixture(scope="function")
def api_log_repository(db_manager) -> ApiLogRepository:
    return ApiLogRepository(db_manager)


@pytest.fixture(scope="function")
def cipher(app_config) -> CredentialCipher:
    return CredentialCipher(app_config.security.master_key)


@pytest.fixture(scope="function")
def vault(connection_repository, cipher) -> CredentialVault:
    return CredentialVault(connection_repository, cipher)


@pytest.fixture(scope="function")
def oauth_manager(connection_repository, vault, catalog, cipher, http_session, app_config):
    return OAuthFlowManager(
        connection_repository, vault, catalog, cipher, http_session=http_session, config=app_config
    )


@pytest.fixture(scope="function")
def invocation_engine(
    catalog, connection_repository, vault, oauth_manager, api_log_repository, http_session, app_config
) -> ActionInvocationEngine:
    return ActionInvocationEngine(
        catalog,
        connection_repository,
        vault,
        oauth_manager,
        api_log_repository,
        http_session=http_session,
        config=app_config,
    )


@pytest.fixture(scope="function")
def dispatcher(trigger_repository, http_session, app_config) -> EventDispatcher:
    return EventDispatcher(trigger_repository, http_session=http_session, config=app_config)


@pytest.fixture(scope="function")
def poller(trigger_repository, invocation_engine, dispatcher, app_config) -> TriggerPoller:
    trigger_poller = TriggerPoller(trigger_repository, invocation_engine, dispatcher, config=app_config)
    yield trigger_poller
    trigger_poller.shutdown()
