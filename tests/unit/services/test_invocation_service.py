"""Test the action invocation engine."""

from datetime import timedelta

import pytest
import requests

from connector_core.constants import REDACTED, ConnectionStatus, CredentialType
from connector_core.db.db_base import utc_now
from connector_core.exceptions import (
    ConfigError,
    ErrorCode,
    ReauthorizationRequiredError,
    UpstreamError,
    ValidationError,
)
from connector_core.schemas.integration_schemas import IntegrationAction
from tests.fixtures.factories import ConnectionFactory, WeatherConnectionFactory
from tests.fixtures.responses import make_response

ACCESS_TOKEN = "ya29.a0-access-token"


@pytest.fixture
def sheets_connection(vault, db_session):
    connection = ConnectionFactory.create()
    vault.store(
        connection.id,
        CredentialType.ACCESS_TOKEN,
        ACCESS_TOKEN,
        utc_now() + timedelta(hours=1),
    )
    return connection


@pytest.fixture
def weather_connection(vault, db_session):
    connection = WeatherConnectionFactory.create()
    vault.store(connection.id, CredentialType.API_KEY, "owm-secret-key")
    return connection


class TestRequestBuilding:
    """Test URL, params and body rendering."""

    def test_search_rows_path(self, invocation_engine, sheets_connection, http_session):
        http_session.request.return_value = make_response(200, {"values": [["Name"], ["Ada"]]})

        result = invocation_engine.invoke_action(
            sheets_connection.id,
            "search-rows",
            {"spreadsheetId": "abc", "sheetName": "Sheet1"},
        )

        args, kwargs = http_session.request.call_args
        assert args == ("GET", "https://sheets.googleapis.com/v4/spreadsheets/abc/values/Sheet1")
        assert kwargs["params"] is None
        assert kwargs["headers"]["Authorization"] == f"Bearer {ACCESS_TOKEN}"
        assert kwargs["headers"]["Accept"] == "application/json"
        assert kwargs["timeout"] == 30.0
        assert result.status_code == 200
        assert result.data == {"values": [["Name"], ["Ada"]]}
        assert result.log_id

    def test_optional_param_supplied(self, invocation_engine, sheets_connection, http_session):
        http_session.request.return_value = make_response(200, {"values": []})

        invocation_engine.invoke_action(
            sheets_connection.id,
            "search-rows",
            {"spreadsheetId": "abc", "sheetName": "Sheet1", "majorDimension": "COLUMNS"},
        )

        assert http_session.request.call_args[1]["params"] == {"majorDimension": "COLUMNS"}

    def test_path_values_cannot_add_segments(self, invocation_engine, sheets_connection, http_session):
        http_session.request.return_value = make_response(200, {})

        invocation_engine.invoke_action(
            sheets_connection.id,
            "search-rows",
            {"spreadsheetId": "a/../b", "sheetName": "My Sheet"},
        )

        url = http_session.request.call_args[0][1]
        assert url.endswith("/spreadsheets/a%2F..%2Fb/values/My%20Sheet")

    def test_post_body_and_response_mapping(self, invocation_engine, sheets_connection, http_session):
        http_session.request.return_value = make_response(
            200, {"updates": {"updatedRange": "Sheet1!A5:B5", "updatedRows": 1}}
        )

        result = invocation_engine.invoke_action(
            sheets_connection.id,
            "append-row",
            {"spreadsheetId": "abc", "values": [["Ada", 36]]},
        )

        args, kwargs = http_session.request.call_args
        assert args == (
            "POST",
            "https://sheets.googleapis.com/v4/spreadsheets/abc/values/Sheet1:append",
        )
        assert kwargs["params"] == {"valueInputOption": "RAW"}
        assert kwargs["json"] == {"values": [["Ada", 36]]}
        assert result.data == {"updatedRange": "Sheet1!A5:B5"}

    def test_get_without_templates_sends_values_as_query(
        self, invocation_engine, weather_connection, http_session
    ):
        http_session.request.return_value = make_response(200, {"temp": 21.5})

        invocation_engine.invoke_action(weather_connection.id, "current", {"city": "Paris"})

        args, kwargs = http_session.request.call_args
        assert args == ("GET", "https://api.weather.test/data/weather")
        assert kwargs["params"] == {"city": "Paris", "units": "metric", "appid": "owm-secret-key"}
        assert kwargs["json"] is None

    def test_relative_path_without_base_url(self, invocation_engine, catalog):
        integration = catalog.get_integration("weather").model_copy(update={"base_url": None})
        action = catalog.get_action("weather", "current")

        with pytest.raises(ConfigError):
            invocation_engine.prepare(action, integration, {"city": "Paris"})


class TestValidation:
    """Test parameter checks happen before any network call."""

    def test_missing_required_field(
        self, invocation_engine, sheets_connection, http_session, api_log_repository
    ):
        with pytest.raises(ValidationError) as exc_info:
            invocation_engine.invoke_action(
                sheets_connection.id, "search-rows", {"spreadsheetId": "abc"}
            )

        assert exc_info.value.message == "missing required field: sheetName"
        http_session.request.assert_not_called()

        [log] = api_log_repository.list(connection_id=sheets_connection.id)
        assert log.success is False
        assert log.error_type == "ValidationError"
        assert log.request_payload is None

    def test_enum_mismatch(self, invocation_engine, sheets_connection, http_session):
        with pytest.raises(ValidationError) as exc_info:
            invocation_engine.invoke_action(
                sheets_connection.id,
                "search-rows",
                {"spreadsheetId": "abc", "sheetName": "Sheet1", "majorDimension": "DIAGONAL"},
            )

        assert exc_info.value.error_code == ErrorCode.TYPE_MISMATCH
        http_session.request.assert_not_called()

    def test_malformed_template(self, invocation_engine, catalog):
        action = IntegrationAction(
            id="act-broken",
            integration_id="weather",
            name="Broken",
            slug="broken",
            endpoint_path="/data/{{city",
        )
        with pytest.raises(ConfigError):
            invocation_engine.compile(action)

    def test_compiled_action_is_cached(self, invocation_engine, catalog):
        action = catalog.get_action("google-sheets", "search-rows")

        compiled = invocation_engine.compile(action)
        assert invocation_engine.compile(action) is compiled
        assert compiled.required == frozenset({"spreadsheetId", "sheetName"})
        assert compiled.path_references == ("spreadsheetId", "sheetName")


class TestFailures:
    """Test upstream failure classification."""

    @pytest.mark.parametrize(
        "status,retryable",
        [(500, True), (503, True), (429, True), (408, True), (400, False), (404, False)],
    )
    def test_status_classification(
        self, invocation_engine, sheets_connection, http_session, status, retryable
    ):
        http_session.request.return_value = make_response(status, {"error": {"code": status}})

        with pytest.raises(UpstreamError) as exc_info:
            invocation_engine.invoke_action(
                sheets_connection.id, "search-rows", {"spreadsheetId": "abc", "sheetName": "S"}
            )

        assert exc_info.value.retryable is retryable
        assert exc_info.value.upstream_status == status

    def test_timeout(self, invocation_engine, sheets_connection, http_session, api_log_repository):
        http_session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(UpstreamError) as exc_info:
            invocation_engine.invoke_action(
                sheets_connection.id, "search-rows", {"spreadsheetId": "abc", "sheetName": "S"}
            )

        assert exc_info.value.retryable is True
        assert exc_info.value.error_code == ErrorCode.TIMEOUT_ERROR
        [log] = api_log_repository.list(connection_id=sheets_connection.id)
        assert log.retryable is True
        assert log.status_code is None

    def test_connection_error(self, invocation_engine, sheets_connection, http_session):
        http_session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(UpstreamError) as exc_info:
            invocation_engine.invoke_action(
                sheets_connection.id, "search-rows", {"spreadsheetId": "abc", "sheetName": "S"}
            )
        assert exc_info.value.error_code == ErrorCode.CONNECTION_ERROR

    def test_revoked_connection(self, invocation_engine, http_session, db_session):
        connection = ConnectionFactory.create(status=ConnectionStatus.REVOKED.value)

        with pytest.raises(ReauthorizationRequiredError):
            invocation_engine.invoke_action(
                connection.id, "search-rows", {"spreadsheetId": "abc", "sheetName": "S"}
            )
        http_session.request.assert_not_called()

    def test_non_json_body(self, invocation_engine, sheets_connection, http_session):
        http_session.request.return_value = make_response(
            200, text="plain text", headers={"Content-Type": "text/plain"}
        )

        result = invocation_engine.invoke_action(
            sheets_connection.id, "search-rows", {"spreadsheetId": "abc", "sheetName": "S"}
        )
        assert result.data == "plain text"


class TestApiLogRedaction:
    """Test that persisted logs never hold plaintext credentials."""

    def test_bearer_token_redacted(
        self, invocation_engine, sheets_connection, http_session, api_log_repository
    ):
        http_session.request.return_value = make_response(
            200, {"echo": f"received {ACCESS_TOKEN}", "access_token": "other"}
        )

        invocation_engine.invoke_action(
            sheets_connection.id, "search-rows", {"spreadsheetId": "abc", "sheetName": "S"}
        )

        [log] = api_log_repository.list(connection_id=sheets_connection.id)
        assert log.success is True
        assert log.status_code == 200
        assert log.request_payload["headers"]["Authorization"] == REDACTED
        assert log.response_payload["echo"] == f"received {REDACTED}"
        assert log.response_payload["access_token"] == REDACTED
        assert ACCESS_TOKEN not in str(log.request_payload)

    def test_api_key_query_param_redacted(
        self, invocation_engine, weather_connection, http_session, api_log_repository
    ):
        http_session.request.return_value = make_response(200, {"temp": 21.5})

        invocation_engine.invoke_action(weather_connection.id, "current", {"city": "Oslo"})

        [log] = api_log_repository.list(connection_id=weather_connection.id)
        assert log.request_payload["params"]["appid"] == REDACTED
        assert log.request_payload["params"]["city"] == "Oslo"
        assert "owm-secret-key" not in str(log.request_payload)

    def test_secret_at_truncation_boundary_is_redacted(
        self, invocation_engine, sheets_connection, http_session, api_log_repository
    ):
        body = "x" * 9_995 + ACCESS_TOKEN + " trailing"
        http_session.request.return_value = make_response(
            200, text=body, headers={"Content-Type": "text/plain"}
        )

        invocation_engine.invoke_action(
            sheets_connection.id, "search-rows", {"spreadsheetId": "abc", "sheetName": "S"}
        )

        [log] = api_log_repository.list(connection_id=sheets_connection.id)
        assert len(log.response_payload) == 10_000
        assert ACCESS_TOKEN[:5] not in log.response_payload
        assert log.response_payload.startswith("x" * 9_995)

    def test_trigger_id_recorded(
        self, invocation_engine, sheets_connection, http_session, api_log_repository
    ):
        http_session.request.return_value = make_response(200, {})

        invocation_engine.invoke_action(
            sheets_connection.id,
            "search-rows",
            {"spreadsheetId": "abc", "sheetName": "S"},
            trigger_id="trigger-1",
        )

        assert api_log_repository.count(trigger_id="trigger-1") == 1
