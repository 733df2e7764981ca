"""
Redaction of credentials in log output.

Every message that reaches the console or the per-run audit log passes
through here, so a personal access token echoed back in a service error
or a mistyped command line never lands in a file.
"""

import re
from typing import Iterable, Optional

REDACTED = '***REDACTED***'

SECRET_KEYS = ('token', 'pat', 'password', 'authorization')

_VALUE = r'["\']?)([^"\'\s&,]+)'

SENSITIVE_PATTERNS = [
    # key=value in URLs, command lines and repr output
    (re.compile(rf'(\b{key}["\']?\s*={_VALUE}', re.IGNORECASE), rf'\1{REDACTED}')
    for key in SECRET_KEYS
] + [
    # "key: value" only where the key opens a line or a quoted entry;
    # "Security Token: Custom.A" is a work item type name, not a credential
    (re.compile(rf'((?<![\w ]){key}["\']?\s*:\s*{_VALUE}', re.IGNORECASE), rf'\1{REDACTED}')
    for key in SECRET_KEYS
] + [
    (re.compile(r'(\bauthorization\s*:\s*)([^"\'\s]+)', re.IGNORECASE), rf'\1{REDACTED}'),
    (re.compile(r'(bearer\s+)([a-zA-Z0-9\-._~+/]+=*)', re.IGNORECASE), rf'\1{REDACTED}'),
]

# Literal secrets in use for this run (the PAT)
_known_secrets = set()


def register_secret(secret: Optional[str]) -> None:
    """Remember a secret so it is redacted verbatim wherever it appears."""
    if secret and len(secret) >= 4:
        _known_secrets.add(secret)


def clear_secrets() -> None:
    _known_secrets.clear()


def sanitize_log_message(message: str, secrets: Iterable[str] = ()) -> str:
    """
    Redact credentials from a log message.

    Registered secrets and ``secrets`` are replaced wherever they occur,
    then key/value pairs that look like credentials are masked.
    """
    if not message:
        return message

    sanitized = message
    for secret in sorted(set(secrets) | _known_secrets, key=len, reverse=True):
        if secret:
            sanitized = sanitized.replace(secret, REDACTED)

    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)

    return sanitized


def sanitize_error(error: Exception) -> str:
    return sanitize_log_message(str(error))


def safe_log_error(error: Exception, context: str = "") -> str:
    """
    One redacted log line for an exception: "context: ErrorType: message".

    Args:
        error: The exception
        context: What was being done, e.g. "Updating #42"
    """
    text = f"{type(error).__name__}: {sanitize_error(error)}"
    return f"{context}: {text}" if context else text
