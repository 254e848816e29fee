"""Test secret redaction for ApiLog payloads."""

from connector_core.constants import REDACTED
from connector_core.utils.redaction_utils import redact_headers, redact_payload


class TestRedactHeaders:
    """Test header masking."""

    def test_sensitive_headers_are_masked(self):
        headers = {"Authorization": "Bearer abc", "X-API-Key": "k", "Accept": "application/json"}
        result = redact_headers(headers)

        assert result == {
            "Authorization": REDACTED,
            "X-API-Key": REDACTED,
            "Accept": "application/json",
        }

    def test_known_secret_inside_other_header(self):
        result = redact_headers({"X-Custom": "token=s3cr3t-value"}, secrets={"s3cr3t-value"})
        assert result == {"X-Custom": f"token={REDACTED}"}

    def test_none_headers(self):
        assert redact_headers(None) == {}


class TestRedactPayload:
    """Test recursive payload masking."""

    def test_sensitive_keys(self):
        payload = {"access_token": "abc", "expires_in": 3600, "nested": {"password": "pw"}}
        assert redact_payload(payload) == {
            "access_token": REDACTED,
            "expires_in": 3600,
            "nested": {"password": REDACTED},
        }

    def test_known_secrets_in_strings_and_lists(self):
        payload = {"url": "https://api.test/x?appid=KEY123", "items": ["KEY123", "other"]}
        result = redact_payload(payload, secrets=["KEY123"])

        assert result == {
            "url": f"https://api.test/x?appid={REDACTED}",
            "items": [REDACTED, "other"],
        }

    def test_scalars_untouched(self):
        assert redact_payload(42, secrets=["4"]) == 42
        assert redact_payload(None) is None

    def test_empty_secrets_ignored(self):
        assert redact_payload("value", secrets=["", None]) == "value"
