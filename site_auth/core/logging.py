"""
Logging utilities for the API, the connect script and the popup controller.

Every handler installed here passes records through :class:`SecretRedactingFilter`
so bearer tokens, authorization codes and refresh tokens never reach the
output, even when an upstream library logs a full request.
"""

import logging
import re
import sys

_REDACTIONS = [
    (re.compile(r"(?i)(bearer\s+)[^\s,;\"']+"), r"\1[REDACTED]"),
    (re.compile(r"(?i)\b((?:code|access_token|refresh_token|client_secret)=)[^&\s\"']+"), r"\1[REDACTED]"),
    (re.compile(r"\bya29\.[A-Za-z0-9_\-.]+"), "[REDACTED_ACCESS_TOKEN]"),
    (re.compile(r"\b1//[A-Za-z0-9_\-]+"), "[REDACTED_REFRESH_TOKEN]"),
]


def redact_sensitive_text(text: str) -> str:
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Rewrite the rendered message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_sensitive_text(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SecretRedactingFilter) for f in handler.filters):
            handler.addFilter(SecretRedactingFilter())
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["SecretRedactingFilter", "configure_logging", "redact_sensitive_text"]
