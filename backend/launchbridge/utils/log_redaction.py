"""Utility for keeping tokens and injected control characters out of logs."""

import re
from typing import Any

REDACTED = "***REDACTED***"

_SENSITIVE_KEYS = {
    "token", "id_token", "access_token", "refresh_token", "secret",
    "authorization", "bearer", "nonce", "code", "ticket", "one_time_session_token",
}


def sanitize_for_log(value: Any) -> str:
    """Neutralize CR/LF/TAB so user-controlled values cannot forge log lines."""
    text = str(value)
    text = text.replace("\r\n", " ")
    return re.sub(r"[\r\n\t]", " ", text)


def short_id(value: str | None, length: int = 8) -> str:
    """Log-safe prefix of an opaque identifier such as a state value."""
    if not value:
        return "<none>"
    return f"{sanitize_for_log(value[:length])}..."


def redact_sensitive_data(data: Any) -> Any:
    """
    Recursively redact sensitive data from various data structures.

    Dictionaries have sensitive keys replaced (see ``redact_dict_keys``),
    strings have bearer tokens and token-like query parameters masked.

    Args:
        data: Data to redact (dict, list, str, or primitive)

    Returns:
        Redacted copy of data
    """
    if isinstance(data, dict):
        return redact_dict_keys(data)
    elif isinstance(data, list):
        return [redact_sensitive_data(item) for item in data]
    elif isinstance(data, str):
        return _redact_string(data)
    else:
        return data


def redact_dict_keys(data: dict[str, Any]) -> dict[str, Any]:
    """
    Redact sensitive keys in a dictionary (exact, case-insensitive match).

    Args:
        data: Dictionary to redact

    Returns:
        Dictionary with sensitive values replaced with "***REDACTED***"
    """
    if not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        if str(key).lower() in _SENSITIVE_KEYS:
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_dict_keys(value)
        elif isinstance(value, list):
            redacted[key] = [redact_sensitive_data(item) for item in value]
        elif isinstance(value, str):
            redacted[key] = _redact_string(value)
        else:
            redacted[key] = value

    return redacted


def _redact_string(text: str) -> str:
    """
    Redact patterns in strings that look like secrets.

    Patterns redacted:
    - Bearer tokens: "Bearer abc123..." -> "Bearer ***REDACTED***"
    - Basic auth: "Basic abc123..." -> "Basic ***REDACTED***"
    - Token-like query params: "?id_token=xyz" -> "?id_token=***REDACTED***"
    """
    text = re.sub(
        r'(Bearer\s+)[A-Za-z0-9_\-\.]+',
        r'\1' + REDACTED,
        text,
        flags=re.IGNORECASE
    )

    text = re.sub(
        r'(Basic\s+)[A-Za-z0-9+/=]+',
        r'\1' + REDACTED,
        text,
        flags=re.IGNORECASE
    )

    text = re.sub(
        r'([?&](id_token|access_token|token|code|nonce|secret)=)[^&\s]+',
        r'\1' + REDACTED,
        text,
        flags=re.IGNORECASE
    )

    return text
