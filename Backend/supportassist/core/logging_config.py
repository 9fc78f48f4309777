"""
Logging setup and log-safe views of webhook headers and secrets.
"""
import logging
from typing import Any, Mapping

from supportassist.core.config import settings

_SENSITIVE_PATTERNS = ("signature", "secret", "authorization", "token", "key", "auth")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def sanitize_headers(headers: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Mask header values whose names look sensitive.

    Long values keep their first and last four characters so deliveries can still
    be correlated across log lines.
    """
    sanitized: dict[str, Any] = {}
    for key, value in (headers or {}).items():
        if any(pattern in key.lower() for pattern in _SENSITIVE_PATTERNS):
            text = str(value or "")
            if len(text) > 8:
                sanitized[key] = f"{text[:4]}...{text[-4:]}"
            elif text:
                sanitized[key] = "***"
            else:
                sanitized[key] = ""
        else:
            sanitized[key] = value
    return sanitized


def sanitize_secret(secret: str | None) -> str:
    if not secret or not isinstance(secret, str):
        return "[NOT SET]"
    if len(secret) > 12:
        return f"{secret[:6]}...{secret[-4:]} ({len(secret)} chars)"
    return f"***...*** ({len(secret)} chars)"
