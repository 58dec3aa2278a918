"""
Structured logging for the OIDC trust core.

Loggers are named "oidc.<component>" (``oidc.tokens``,
``oidc.discovery.webfinger``); the component is split out into its own
field. Events are correlated by request id and OAuth client, and
credential-bearing fields are masked before rendering so bearer tokens and
client secrets never reach the log stream.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_id_var: ContextVar[Optional[str]] = ContextVar("client_id", default=None)
subject_var: ContextVar[Optional[str]] = ContextVar("subject", default=None)

SENSITIVE_FIELDS = frozenset({
    "token",
    "access_token",
    "refresh_token",
    "client_secret",
    "authorization",
})


def configure_logging(service_name: str, log_level: str = "info", json_output: bool = True) -> None:
    """Configure structlog on top of stdlib logging.

    ``json_output=False`` renders key/value console output for local runs.
    """
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_component,
            add_correlation_context,
            redact_credentials,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    logging.getLogger(service_name).setLevel(getattr(logging, log_level.upper()))


def add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Split "oidc.tokens.repository" into service and component fields."""
    logger_name = event_dict.get("logger", "")
    service, _, component = logger_name.partition(".")
    if component:
        event_dict["service"] = service
        event_dict["component"] = component
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, var in (("request_id", request_id_var), ("client_id", client_id_var), ("subject", subject_var)):
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def redact_credentials(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential values, keeping the last four characters for correlation."""
    for key in SENSITIVE_FIELDS.intersection(event_dict):
        event_dict[key] = mask(event_dict[key])
    return event_dict


def mask(value: Any) -> str:
    text = str(value)
    if len(text) <= 8:
        return "****"
    return f"****{text[-4:]}"


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for this context, generating one when absent."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_client_context(client_id: Optional[str] = None, subject: Optional[str] = None):
    if client_id:
        client_id_var.set(client_id)
    if subject:
        subject_var.set(subject)


def clear_context():
    request_id_var.set(None)
    client_id_var.set(None)
    subject_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
