"""Secret redaction for payloads persisted in ApiLog rows."""

from typing import Any, Dict, Iterable, Optional

from ..constants import REDACTED, SENSITIVE_HEADERS, SENSITIVE_KEYS


def _scrub_text(text: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret and secret in text:
            text = text.replace(secret, REDACTED)
    return text


def redact_headers(headers: Optional[Dict[str, Any]], secrets: Iterable[str] = ()) -> Dict[str, Any]:
    """Mask credential-bearing headers and any header value containing a known secret."""
    secrets = [s for s in secrets if s]
    redacted = {}
    for key, value in (headers or {}).items():
        if key.lower() in SENSITIVE_HEADERS:
            redacted[key] = REDACTED
        elif isinstance(value, str):
            redacted[key] = _scrub_text(value, secrets)
        else:
            redacted[key] = value
    return redacted


def redact_payload(payload: Any, secrets: Iterable[str] = ()) -> Any:
    """
    Recursively mask secrets in a JSON-like structure.

    Values under well-known secret keys are replaced wholesale; any string
    that contains a plaintext credential seen during the invocation has that
    credential replaced.
    """
    secrets = [s for s in secrets if s]

    if isinstance(payload, dict):
        result = {}
        for key, value in payload.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_KEYS and value is not None:
                result[key] = REDACTED
            else:
                result[key] = redact_payload(value, secrets)
        return result
    if isinstance(payload, list):
        return [redact_payload(item, secrets) for item in payload]
    if isinstance(payload, str):
        return _scrub_text(payload, secrets)
    return payload
