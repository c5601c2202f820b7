"""Redaction of secrets before URLs and headers reach the logs."""

import re

# Query and form parameters whose values never reach the logs
SENSITIVE_PARAMS = [
    "code",
    "state",
    "token",
    "refresh_token",
    "access_token",
    "client_secret",
    "client_id",
    "secret",
    "password",
    "api_key",
    "authorization",
]

_SENSITIVE_PATTERN = re.compile(rf"(?i)\b({'|'.join(SENSITIVE_PARAMS)})=([^&\s\"]+)")
_BEARER_PATTERN = re.compile(r"(?i)\b(bearer|basic)\s+[A-Za-z0-9._~+/=-]+")


def redact_sensitive_data(text: str) -> str:
    """Redact sensitive query parameters and bearer/basic credentials from a URL or header value."""
    redacted = _SENSITIVE_PATTERN.sub(lambda m: f"{m.group(1)}=***REDACTED***", text)
    return _BEARER_PATTERN.sub(lambda m: f"{m.group(1)} ***REDACTED***", redacted)
