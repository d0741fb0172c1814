"""Keep Twelve Data credentials out of log output.

Two layers: generic patterns (query-string keys, ``X=...`` assignments,
bare 32-char hex keys) and the literal values of the configured secrets,
which catches a key even when it shows up in an unexpected shape.

Usage::

    apply_global_log_redaction(secrets=[cfg.api_key])  # after basicConfig
"""
from __future__ import annotations

import logging
import re
from typing import Iterable

REDACTED = "***REDACTED***"

_PATTERNS: tuple[re.Pattern[str], ...] = (
    # ...?symbol=QQQ&apikey=abc123
    re.compile(r"(?<=[?&])(?:apikey|api_key|token)=[^&\s\"']+", re.IGNORECASE),
    # TWELVE_DATA_API_KEY=abc123 / api_key: "abc123"
    re.compile(r"\b(?:\w*api[_-]?key|secret)\s*[:=]\s*[\"']?[^\s\"'&,]+[\"']?", re.IGNORECASE),
    re.compile(r"\b[a-fA-F0-9]{32}\b"),
)


def redact_secrets(msg: str, secrets: Iterable[str] = ()) -> str:
    """Return *msg* with credential-looking substrings replaced."""
    if not msg:
        return msg
    for secret in secrets:
        if secret and len(secret) >= 6:
            msg = msg.replace(secret, REDACTED)
    for pattern in _PATTERNS:
        msg = pattern.sub(REDACTED, msg)
    return msg


class LogRedactionFilter(logging.Filter):
    """Formats the record once, then redacts the final text.

    Redacting the rendered message (rather than ``msg`` and ``args``
    separately) also covers keys split across the format string and an
    argument.
    """

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self.secrets = tuple(s for s in secrets if s)

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        try:
            rendered = record.getMessage()
        except (TypeError, ValueError):
            return True
        cleaned = redact_secrets(rendered, self.secrets)
        if cleaned != rendered:
            record.msg = cleaned
            record.args = None
        return True


def apply_global_log_redaction(secrets: Iterable[str] = ()) -> LogRedactionFilter:
    """Attach one :class:`LogRedactionFilter` to every root-logger handler."""
    filt = LogRedactionFilter(secrets)
    for handler in logging.getLogger().handlers:
        handler.addFilter(filt)
    return filt
