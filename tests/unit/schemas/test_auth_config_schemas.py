"""Test tagged auth configuration parsing."""

import pytest

from connector_core.constants import AuthType
from connector_core.exceptions import ConfigError
from connector_core.schemas.auth_config_schemas import (
    ApiKeyConfig,
    BasicAuthConfig,
    BearerConfig,
    CustomConfig,
    OAuth2Config,
    normalize_auth_type,
    parse_auth_config,
)

OAUTH_BLOB = {
    "authorizationUrl": "https://accounts.google.com/o/oauth2/v2/auth",
    "tokenUrl": "https://oauth2.googleapis.com/token",
    "scopes": ["https://www.googleapis.com/auth/drive.readonly"],
    "clientIdEnv": "GOOGLE_CLIENT_ID",
    "clientSecretEnv": "GOOGLE_CLIENT_SECRET",
}


class TestParseAuthConfig:
    """Test variant selection by auth type tag."""

    def test_oauth2_camel_case(self):
        config = parse_auth_config("oauth2", OAUTH_BLOB)

        assert isinstance(config, OAuth2Config)
        assert config.token_url == "https://oauth2.googleapis.com/token"
        assert config.client_id_env == "GOOGLE_CLIENT_ID"

    def test_oauth2_snake_case(self):
        config = parse_auth_config(
            AuthType.OAUTH2,
            {
                "authorization_url": "https://provider.test/authorize",
                "token_url": "https://provider.test/token",
                "client_id_env": "ID",
                "client_secret_env": "SECRET",
            },
        )
        assert config.authorization_url == "https://provider.test/authorize"

    def test_tag_wins_over_blob(self):
        config = parse_auth_config("bearer", {"authType": "oauth2"})
        assert isinstance(config, BearerConfig)
        assert config.scheme == "Bearer"

    @pytest.mark.parametrize(
        "tag,expected",
        [
            ("apikey", ApiKeyConfig),
            ("API_KEY", ApiKeyConfig),
            ("bearer_token", BearerConfig),
            ("basic_auth", BasicAuthConfig),
            ("custom", CustomConfig),
        ],
    )
    def test_legacy_spellings(self, tag, expected):
        assert isinstance(parse_auth_config(tag, {}), expected)

    def test_api_key_query_parameter(self):
        config = parse_auth_config("api_key", {"paramName": "appid"})
        assert config.param_name == "appid"
        assert config.header_name == "Authorization"

    def test_custom_maps(self):
        config = parse_auth_config(
            "custom", {"headers": {"X-Account": "account_id"}, "params": {"key": "api_key"}}
        )
        assert config.headers == {"X-Account": "account_id"}
        assert config.params == {"key": "api_key"}

    def test_unknown_type(self):
        with pytest.raises(ConfigError):
            parse_auth_config("kerberos", {})

    def test_missing_required_fields(self):
        with pytest.raises(ConfigError):
            parse_auth_config("oauth2", {"tokenUrl": "https://provider.test/token"})

    def test_normalize(self):
        assert normalize_auth_type(None) == ""
        assert normalize_auth_type(AuthType.BASIC) == "basic"
        assert normalize_auth_type("OAuth") == "oauth2"


class TestOAuth2Config:
    """Test OAuth2 helpers."""

    def test_google_gets_offline_consent(self):
        config = parse_auth_config("oauth2", OAUTH_BLOB)
        assert config.authorize_params() == {"access_type": "offline", "prompt": "consent"}

    def test_explicit_params_win(self):
        config = parse_auth_config(
            "oauth2", {**OAUTH_BLOB, "extraAuthorizeParams": {"prompt": "select_account"}}
        )
        assert config.authorize_params() == {"prompt": "select_account"}

    def test_other_provider_has_no_defaults(self):
        config = parse_auth_config(
            "oauth2",
            {
                **OAUTH_BLOB,
                "authorizationUrl": "https://github.com/login/oauth/authorize",
            },
        )
        assert config.authorize_params() == {}

    def test_client_credentials_from_env(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "id")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
        config = parse_auth_config("oauth2", OAUTH_BLOB)

        assert config.client_credentials() == ("id", "secret")

    def test_client_credentials_missing(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
        monkeypatch.delenv("GOOGLE_CLIENT_SECRET", raising=False)
        config = parse_auth_config("oauth2", OAUTH_BLOB)

        with pytest.raises(ConfigError):
            config.client_credentials()
