"""Structured logging setup, credential redaction and client-side metrics."""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

import structlog
from prometheus_client import Counter

from therapynotes.config import ClientSettings

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "newpassword",
        "token",
        "authtoken",
        "refreshtoken",
        "accesstoken",
        "secretcode",
        "qrcodeurl",
        "session",
        "mfasession",
        "authorization",
        "x-access-token",
    }
)


TOKEN_REFRESH_TOTAL = Counter(
    "therapynotes_token_refresh_total",
    "Credential refresh attempts by backend mode and outcome",
    ("mode", "outcome"),
)

REQUEST_RETRIES_TOTAL = Counter(
    "therapynotes_request_retries_total",
    "Requests reissued after a 401 response",
    ("outcome",),
)

SESSIONS_ENDED_TOTAL = Counter(
    "therapynotes_sessions_ended_total",
    "Sessions ended because credentials could not be recovered",
    ("reason",),
)

STREAM_SESSIONS_TOTAL = Counter(
    "therapynotes_stream_sessions_total",
    "Narrative stream sessions by backend mode and terminal outcome",
    ("mode", "outcome"),
)

STREAM_MALFORMED_EVENTS_TOTAL = Counter(
    "therapynotes_stream_malformed_events_total",
    "Stream events skipped because they could not be decoded",
)

USAGE_REPORTS_FAILED_TOTAL = Counter(
    "therapynotes_usage_reports_failed_total",
    "Fire-and-forget usage reports that failed",
)


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and key.lower() in SENSITIVE_KEYS


def redact(value: Any) -> Any:
    """Return a copy of *value* with sensitive mapping entries masked."""

    if isinstance(value, Mapping):
        return {
            key: REDACTED if _is_sensitive(key) and sub is not None else redact(sub)
            for key, sub in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


def redact_processor(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking credentials anywhere in the event."""

    for key in list(event_dict.keys()):
        if key == "event":
            continue
        if _is_sensitive(key) and event_dict[key] is not None:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = redact(event_dict[key])
    return event_dict


def configure_logging(settings: Optional[ClientSettings] = None) -> None:
    """Configure stdlib logging and structlog for JSON output.

    Outside debug and simulated modes only errors are emitted so clinical
    content never reaches informational logs.
    """

    settings = settings or ClientSettings.from_env()
    level = getattr(logging, settings.log_level, logging.INFO)
    if settings.is_production:
        level = max(level, logging.ERROR)
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger("therapynotes").setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            redact_processor,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


__all__ = [
    "REDACTED",
    "REQUEST_RETRIES_TOTAL",
    "SESSIONS_ENDED_TOTAL",
    "STREAM_MALFORMED_EVENTS_TOTAL",
    "STREAM_SESSIONS_TOTAL",
    "TOKEN_REFRESH_TOTAL",
    "USAGE_REPORTS_FAILED_TOTAL",
    "configure_logging",
    "redact",
    "redact_processor",
]
