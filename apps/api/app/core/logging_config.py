"""Structured JSON logging configuration."""

import contextvars
import logging
import uuid
from typing import Any

from pythonjsonlogger.json import JsonFormatter

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

security_logger = logging.getLogger("app.security")

# Unknown events default to "medium"
EVENT_SEVERITY: dict[str, str] = {
    "RATE_LIMIT_EXCEEDED": "medium",
    "STRICT_RATE_LIMIT_EXCEEDED": "high",
    "GLOBAL_RATE_LIMIT_EXCEEDED": "high",
    "INVALID_REQUEST_BODY": "low",
    "INVALID_CSRF_TOKEN": "medium",
    "INVALID_NEWSLETTER_SUBSCRIPTION_DATA": "low",
    "SUSPICIOUS_INPUT_DETECTED": "high",
    "INVALID_NAME_VALIDATION": "low",
    "INVALID_EMAIL_VALIDATION": "low",
    "DUPLICATE_NEWSLETTER_SUBSCRIPTION": "low",
    "NEWSLETTER_RESUBSCRIPTION": "low",
    "NEWSLETTER_SUBSCRIPTION_SUCCESS": "low",
    "NEWSLETTER_SUBSCRIPTION_CHECK": "low",
    "NEWSLETTER_SUBSCRIPTION_ERROR": "medium",
    "NEWSLETTER_UNSUBSCRIBE": "low",
    "INVALID_UNSUBSCRIBE_TOKEN": "medium",
    "CONSENT_RECORDED": "low",
    "CONSENT_WITHDRAWN": "low",
    "CONSENT_RECORDING_FAILED": "medium",
    "CONSENT_WITHDRAWAL_FAILED": "medium",
    "UNAUTHORIZED_ADMIN_REQUEST": "high",
    "NEWSLETTER_SYSTEM_ERROR": "high",
}

_SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.WARNING,
    "critical": logging.CRITICAL,
}


class RequestIdFilter(logging.Filter):
    """Inject request_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")  # type: ignore[attr-defined]
        return True


def setup_logging(*, debug: bool = False) -> None:
    """Configure root logger with JSON formatter and request-id filter."""
    handler = logging.StreamHandler()
    formatter = JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        rename_fields={"asctime": "timestamp", "levelname": "level"},
    )
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def generate_request_id() -> str:
    """Generate a new request ID."""
    return uuid.uuid4().hex[:16]


def mask_email(email: str) -> str:
    """Mask the local part of an email address for logs."""
    local, _, domain = email.partition("@")
    if not domain:
        return "***"
    if len(local) <= 2:
        return f"{local[:1]}***@{domain}"
    return f"{local[:2]}***@{domain}"


def log_security_event(event: str, **details: Any) -> None:
    """Emit a security/audit event as a structured log record.

    Emails are masked before they reach the log sink.
    """
    severity = EVENT_SEVERITY.get(event, "medium")
    if isinstance(details.get("email"), str):
        details["email"] = mask_email(details["email"])
    security_logger.log(
        _SEVERITY_LEVELS[severity],
        event,
        extra={"event": event, "severity": severity, "details": details},
    )
