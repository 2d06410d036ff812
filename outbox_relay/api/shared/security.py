"""
Security Utilities

Credential checks for the job endpoints and scrubbing of error messages
before they reach a client.
"""

import logging
import re
import secrets
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Processor-Secret"


def sanitize_error_message(error: Exception) -> str:
    """
    Sanitize error message for client response.

    Removes sensitive information like:
    - File paths
    - Database connection strings
    - Inline secrets
    """
    message = str(error) or type(error).__name__

    # Remove file paths
    message = re.sub(r'/[\w/.-]+\.py', '[file]', message)
    message = re.sub(r'line \d+', 'line [N]', message)

    # Remove connection strings
    message = re.sub(r'postgres(?:ql)?://[^@\s]+@[^/\s]+(?:/\w+)?', '[database]', message)
    message = re.sub(r'redis://[^@\s]+@[^/\s]+', '[redis]', message)

    # Remove potential secrets
    message = re.sub(r'password[=:][^\s,;]+', 'password=[REDACTED]', message, flags=re.IGNORECASE)
    message = re.sub(r'secret[=:][^\s,;]+', 'secret=[REDACTED]', message, flags=re.IGNORECASE)
    message = re.sub(r'key[=:][^\s,;]+', 'key=[REDACTED]', message, flags=re.IGNORECASE)

    # Truncate long messages
    if len(message) > 500:
        message = message[:500] + "..."

    return message


def _matches(candidate: str, expected: str) -> bool:
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def credentials_valid(
    secret_header: Optional[str],
    authorization: Optional[str],
    expected_secret: Optional[str],
    bearer_tokens: Iterable[str],
) -> bool:
    """
    Accept either the shared secret header or a configured bearer token.

    With neither configured nothing is accepted.
    """
    if secret_header and expected_secret and _matches(secret_header, expected_secret):
        return True

    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        if token and any(_matches(token, allowed) for allowed in bearer_tokens):
            return True

    return False
