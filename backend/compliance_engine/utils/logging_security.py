"""
Log sanitisation for user-authored values.

Rule codes, condition payloads, script text and resource identifiers are
controlled by framework authors or the ingestion subsystem, so they are
stripped of CR/LF and control characters (CWE-117) and truncated before
they reach a log line.
"""

import re
from typing import Any, Optional

# Patterns for detecting potentially malicious content
LOG_INJECTION_PATTERNS = [
    r"[\r\n]",  # CRLF injection
    r"%0[ad]",  # URL-encoded CRLF
    r"\x00",  # Null bytes
    r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f]",  # Control characters
]

# Characters always safe in a log line
SAFE_LOG_PATTERN = re.compile(r"^[a-zA-Z0-9._@:/\-\s]+$")

UUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def sanitize_for_log(value: Optional[Any], max_length: int = 100, allow_special: bool = False) -> str:
    """
    Sanitize any value for safe logging.

    Args:
        value: Value to sanitize
        max_length: Maximum length of output
        allow_special: Whether to keep punctuation beyond the safe set

    Returns:
        str: Sanitized string safe for logging
    """
    if value is None:
        return "null"

    str_value = str(value)

    if len(str_value) > max_length:
        str_value = str_value[:max_length] + "..."

    for pattern in LOG_INJECTION_PATTERNS:
        str_value = re.sub(pattern, "", str_value, flags=re.IGNORECASE)

    if not allow_special and not SAFE_LOG_PATTERN.match(str_value):
        str_value = re.sub(r"[^a-zA-Z0-9._@:/\-\s]", "", str_value)

    if not str_value.strip():
        return "[sanitized]"

    return str_value.strip()


def sanitize_id_for_log(id_value: Optional[Any]) -> str:
    """Sanitize scan, rule and resource identifiers; UUIDs pass through."""
    if id_value is None:
        return "[no_id]"

    str_id = str(id_value)
    if UUID_PATTERN.match(str_id) or str_id.isdigit():
        return str_id

    return sanitize_for_log(str_id, max_length=200)


def sanitize_error_message_for_log(error_msg: Optional[str]) -> str:
    """
    Sanitize error messages for logging to prevent information disclosure.

    Args:
        error_msg: Error message to sanitize

    Returns:
        str: Sanitized error message
    """
    if not error_msg:
        return "[no_error_message]"

    str_msg = str(error_msg)

    sensitive_patterns = [
        (r"password[=:\s]+[^\s]+", "password=[REDACTED]"),
        (r"token[=:\s]+[^\s]+", "token=[REDACTED]"),
        (r"secret[=:\s]+[^\s]+", "secret=[REDACTED]"),
        (r"api[_-]?key[=:\s]+[^\s]+", "apikey=[REDACTED]"),
        (r"://[^:/\s]+:[^@/\s]+@", "://[CREDENTIALS_REDACTED]@"),  # URLs with credentials
    ]

    for pattern, replacement in sensitive_patterns:
        str_msg = re.sub(pattern, replacement, str_msg, flags=re.IGNORECASE)

    return sanitize_for_log(str_msg, max_length=500, allow_special=True)
