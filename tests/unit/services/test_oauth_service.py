"""Test the OAuth flow manager."""

import json
import threading
import time
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from cryptography.fernet import Fernet
from sqlalchemy import update

from connector_core.constants import ConnectionStatus, CredentialType
from connector_core.db import EncryptedCredential
from connector_core.db.db_base import utc_now
from connector_core.exceptions import (
    ConfigError,
    CredentialNotFoundError,
    ReauthorizationRequiredError,
    UpstreamError,
    ValidationError,
)
from connector_core.schemas.credential_schemas import OAuthState
from tests.fixtures.factories import (
    ConnectionFactory,
    PendingConnectionFactory,
    WeatherConnectionFactory,
)
from tests.fixtures.responses import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, make_response

TOKEN_URL = "https://oauth2.googleapis.com/token"


def token_response(access_token="ya29.fresh", refresh_token=None, expires_in=3599):
    body = {"access_token": access_token, "expires_in": expires_in, "token_type": "Bearer"}
    if refresh_token:
        body["refresh_token"] = refresh_token
    return make_response(200, body)


def store_tokens(vault, connection_id, expires_in_seconds, refresh_token="1//refresh"):
    vault.store(
        connection_id,
        CredentialType.ACCESS_TOKEN,
        "ya29.stale",
        utc_now() + timedelta(seconds=expires_in_seconds),
    )
    if refresh_token:
        vault.store(connection_id, CredentialType.REFRESH_TOKEN, refresh_token)


def backdate_access_token(db_session, connection_id, hours=1):
    """Pretend the stored access token was issued a while ago."""
    db_session.execute(
        update(EncryptedCredential)
        .where(
            EncryptedCredential.connection_id == connection_id,
            EncryptedCredential.credential_type == CredentialType.ACCESS_TOKEN.value,
        )
        .values(updated_at=utc_now() - timedelta(hours=hours))
    )
    db_session.commit()


class TestStateTokens:
    """Test sealing the callback context."""

    def test_round_trip(self, oauth_manager):
        token = oauth_manager.encode_state(
            OAuthState(integration_slug="google-sheets", connection_id="c1", workspace_slug="acme")
        )

        state = oauth_manager.decode_state(token)
        assert state.connection_id == "c1"
        assert state.workspace_slug == "acme"
        assert state.nonce

    def test_state_is_opaque(self, oauth_manager):
        token = oauth_manager.encode_state(
            OAuthState(integration_slug="google-sheets", connection_id="conn-secret")
        )
        assert "conn-secret" not in token

    def test_tampered(self, oauth_manager):
        token = oauth_manager.encode_state(
            OAuthState(integration_slug="google-sheets", connection_id="c1")
        )
        with pytest.raises(ValidationError) as exc_info:
            oauth_manager.decode_state(token[:-6] + "AAAAAA")
        assert exc_info.value.context["field"] == "state"

    def test_expired(self, oauth_manager, master_key):
        payload = json.dumps({"integrationSlug": "google-sheets", "connectionId": "c1"})
        token = Fernet(master_key.encode()).encrypt_at_time(
            payload.encode(), int(time.time()) - 3600
        )

        with pytest.raises(ValidationError):
            oauth_manager.decode_state(token.decode())


class TestAuthorization:
    """Test building authorization URLs."""

    def test_start_authorization(self, oauth_manager, db_session):
        connection = PendingConnectionFactory.create()

        url = oauth_manager.start_authorization(
            connection.id, "https://app.test/callback", workspace_slug="acme"
        )

        parts = urlsplit(url)
        query = parse_qs(parts.query)
        assert parts.netloc == "accounts.google.com"
        assert query["client_id"] == [GOOGLE_CLIENT_ID]
        assert query["redirect_uri"] == ["https://app.test/callback"]
        assert query["response_type"] == ["code"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["scope"] == ["https://www.googleapis.com/auth/spreadsheets"]
        assert oauth_manager.decode_state(query["state"][0]).connection_id == connection.id

    def test_existing_query_is_kept(self, oauth_manager, catalog):
        config = catalog.get_integration("google-sheets").auth_config.model_copy(
            update={"authorization_url": "https://provider.test/authorize?tenant=common"}
        )

        url = oauth_manager.generate_authorization_url(
            config, "id", "https://app.test/cb", "state", scopes=["a", "b"]
        )

        query = parse_qs(urlsplit(url).query)
        assert query["tenant"] == ["common"]
        assert query["scope"] == ["a b"]

    def test_non_oauth_integration(self, oauth_manager, db_session):
        connection = WeatherConnectionFactory.create(status=ConnectionStatus.PENDING.value)
        with pytest.raises(ConfigError):
            oauth_manager.start_authorization(connection.id, "https://app.test/callback")


class TestCodeExchange:
    """Test trading authorization codes for tokens."""

    def test_exchange_authorizes_connection(
        self, oauth_manager, vault, connection_repository, http_session, db_session
    ):
        connection = PendingConnectionFactory.create()
        http_session.post.return_value = token_response(refresh_token="1//new-refresh")

        oauth_manager.exchange_code(connection.id, "auth-code", "https://app.test/callback")

        _, kwargs = http_session.post.call_args
        assert kwargs["data"]["grant_type"] == "authorization_code"
        assert kwargs["data"]["client_secret"] == GOOGLE_CLIENT_SECRET
        assert kwargs["timeout"] == 30.0

        stored = connection_repository.get(connection.id)
        assert stored.status == ConnectionStatus.AUTHORIZED.value
        assert stored.last_refreshed_at is not None
        with vault.scope(connection.id):
            assert vault.retrieve(connection.id, CredentialType.ACCESS_TOKEN) == "ya29.fresh"
            assert vault.retrieve(connection.id, CredentialType.REFRESH_TOKEN) == "1//new-refresh"
        assert vault.get_metadata(connection.id, CredentialType.ACCESS_TOKEN).expires_at

    def test_handle_callback(self, oauth_manager, http_session, db_session):
        connection = PendingConnectionFactory.create()
        http_session.post.return_value = token_response()
        state = oauth_manager.encode_state(
            OAuthState(
                integration_slug="google-sheets",
                connection_id=connection.id,
                action_slug="search-rows",
            )
        )

        context = oauth_manager.handle_callback("auth-code", state, "https://app.test/callback")

        assert context.action_slug == "search-rows"

    def test_rejected_code(self, oauth_manager, http_session, db_session):
        connection = PendingConnectionFactory.create()
        http_session.post.return_value = make_response(400, {"error": "invalid_grant"})

        with pytest.raises(UpstreamError) as exc_info:
            oauth_manager.exchange_code(connection.id, "bad-code", "https://app.test/callback")
        assert exc_info.value.retryable is False

    def test_error_in_200_body(self, oauth_manager, http_session, db_session):
        connection = PendingConnectionFactory.create()
        http_session.post.return_value = make_response(200, {"error": "bad_verification_code"})

        with pytest.raises(UpstreamError):
            oauth_manager.exchange_code(connection.id, "code", "https://app.test/callback")

    def test_missing_code(self, oauth_manager, db_session):
        connection = PendingConnectionFactory.create()
        with pytest.raises(ValidationError):
            oauth_manager.exchange_code(connection.id, "", "https://app.test/callback")


class TestRefresh:
    """Test keeping access tokens fresh."""

    def test_fresh_token_is_returned_without_refresh(self, oauth_manager, vault, http_session, db_session):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=3600)

        assert oauth_manager.ensure_access_token(connection.id) == "ya29.stale"
        http_session.post.assert_not_called()

    def test_token_inside_buffer_is_refreshed(
        self, oauth_manager, vault, connection_repository, http_session, db_session
    ):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=60)
        backdate_access_token(db_session, connection.id)
        http_session.post.return_value = token_response("ya29.rotated")

        assert oauth_manager.ensure_access_token(connection.id) == "ya29.rotated"

        _, kwargs = http_session.post.call_args
        assert http_session.post.call_args[0][0] == TOKEN_URL
        assert kwargs["data"]["grant_type"] == "refresh_token"
        assert kwargs["data"]["refresh_token"] == "1//refresh"
        assert connection_repository.get(connection.id).status == ConnectionStatus.AUTHORIZED.value
        assert vault.get_metadata(connection.id, CredentialType.ACCESS_TOKEN).version == 2

    def test_rotated_refresh_token_is_stored(self, oauth_manager, vault, http_session, db_session):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10)
        http_session.post.return_value = token_response(refresh_token="1//rotated")

        oauth_manager.refresh(connection.id)

        with vault.scope(connection.id):
            assert vault.retrieve(connection.id, CredentialType.REFRESH_TOKEN) == "1//rotated"

    def test_invalid_grant_revokes(
        self, oauth_manager, vault, connection_repository, http_session, db_session
    ):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10)
        http_session.post.return_value = make_response(400, {"error": "invalid_grant"})

        with pytest.raises(ReauthorizationRequiredError):
            oauth_manager.ensure_access_token(connection.id)

        stored = connection_repository.get(connection.id)
        assert stored.status == ConnectionStatus.REVOKED.value
        assert "invalid_grant" in stored.status_reason

    def test_provider_outage_leaves_connection_expired(
        self, oauth_manager, vault, connection_repository, http_session, db_session
    ):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10)
        http_session.post.return_value = make_response(503, text="unavailable")

        with pytest.raises(UpstreamError) as exc_info:
            oauth_manager.ensure_access_token(connection.id)

        assert exc_info.value.retryable is True
        assert connection_repository.get(connection.id).status == ConnectionStatus.EXPIRED.value

    @pytest.mark.parametrize("status", [408, 429])
    def test_throttled_refresh_leaves_connection_expired(
        self, oauth_manager, vault, connection_repository, http_session, db_session, status
    ):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10)
        http_session.post.return_value = make_response(status, {"error": "slow_down"})

        with pytest.raises(UpstreamError) as exc_info:
            oauth_manager.ensure_access_token(connection.id)

        assert exc_info.value.retryable is True
        assert connection_repository.get(connection.id).status == ConnectionStatus.EXPIRED.value

    def test_short_lived_token_is_not_refreshed_on_every_call(
        self, oauth_manager, vault, http_session, db_session
    ):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10)
        http_session.post.return_value = token_response("ya29.short", expires_in=300)

        assert oauth_manager.ensure_access_token(connection.id) == "ya29.short"
        assert oauth_manager.ensure_access_token(connection.id) == "ya29.short"
        assert http_session.post.call_count == 1

    def test_timeout_is_retryable(self, oauth_manager, vault, http_session, db_session):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10)
        http_session.post.side_effect = requests.Timeout("slow")

        with pytest.raises(UpstreamError) as exc_info:
            oauth_manager.refresh(connection.id)
        assert exc_info.value.retryable is True

    def test_missing_refresh_token_revokes(
        self, oauth_manager, vault, connection_repository, http_session, db_session
    ):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10, refresh_token=None)

        with pytest.raises(ReauthorizationRequiredError):
            oauth_manager.ensure_access_token(connection.id)

        http_session.post.assert_not_called()
        assert connection_repository.get(connection.id).status == ConnectionStatus.REVOKED.value

    def test_never_authorized(self, oauth_manager, db_session):
        connection = PendingConnectionFactory.create()
        with pytest.raises(CredentialNotFoundError):
            oauth_manager.ensure_access_token(connection.id)

    @pytest.mark.parametrize("expires_in", [3599, 300, 60])
    def test_concurrent_callers_refresh_once(
        self, oauth_manager, vault, http_session, db_session, expires_in
    ):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=-10)

        def slow_post(*args, **kwargs):
            time.sleep(0.05)
            return token_response("ya29.single", expires_in=expires_in)

        http_session.post.side_effect = slow_post
        barrier = threading.Barrier(5)
        tokens = []
        errors = []

        def call():
            barrier.wait()
            try:
                tokens.append(oauth_manager.ensure_access_token(connection.id))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=call) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert tokens == ["ya29.single"] * 5
        assert http_session.post.call_count == 1


class TestStaticCredentials:
    """Test API key, basic and custom connections."""

    def test_connect_api_key(self, oauth_manager, vault, connection_repository, db_session):
        connection = WeatherConnectionFactory.create(status=ConnectionStatus.PENDING.value)

        oauth_manager.connect_api_key(connection.id, "  owm-key-123  ")

        assert connection_repository.get(connection.id).status == ConnectionStatus.AUTHORIZED.value
        with vault.scope(connection.id):
            assert vault.retrieve(connection.id, CredentialType.API_KEY) == "owm-key-123"

    def test_api_key_on_oauth_integration(self, oauth_manager, db_session):
        connection = PendingConnectionFactory.create()
        with pytest.raises(ConfigError):
            oauth_manager.connect_api_key(connection.id, "key")

    def test_custom_on_oauth_integration(self, oauth_manager, db_session):
        connection = PendingConnectionFactory.create()
        with pytest.raises(ConfigError):
            oauth_manager.connect_custom(connection.id, {"username": "u", "password": "p"})

    def test_revoke(self, oauth_manager, vault, connection_repository, db_session):
        connection = ConnectionFactory.create()
        store_tokens(vault, connection.id, expires_in_seconds=3600)

        oauth_manager.revoke(connection.id)

        assert connection_repository.get(connection.id).status == ConnectionStatus.REVOKED.value
        assert vault.get_metadata(connection.id, CredentialType.ACCESS_TOKEN) is None
