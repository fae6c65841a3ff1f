"""
Structured logging for the attestation token verifier.

Every event carries the service name and, when set, the request id plus the
issuer and key identifier of the token being verified.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
token_issuer_var: ContextVar[Optional[str]] = ContextVar('token_issuer', default=None)
token_kid_var: ContextVar[Optional[str]] = ContextVar('token_kid', default=None)


def configure_logging(service_name: str, log_level: str = "info", json_output: bool = True) -> None:
    """Configure structlog on top of the standard library logger."""
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_verification_context,
            renderer
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


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Derive ``service`` from dotted logger names such as ``attestation.jwks``."""
    logger_name = event_dict.get("logger") or ""
    service, _, area = logger_name.partition(".")
    if area:
        event_dict.setdefault("service", service)
    return event_dict


def add_verification_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach request and token correlation fields not already on the event."""
    for key, var in (("request_id", request_id_var), ("issuer", token_issuer_var), ("kid", token_kid_var)):
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for the current context, generating one if absent."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


@contextmanager
def verification_context(issuer: Optional[str], kid: Optional[str]) -> Iterator[None]:
    """Tag log events emitted while a token is verified."""
    issuer_token = token_issuer_var.set(issuer)
    kid_token = token_kid_var.set(kid)
    try:
        yield
    finally:
        token_kid_var.reset(kid_token)
        token_issuer_var.reset(issuer_token)


def clear_context() -> None:
    """Drop all correlation fields."""
    for var in (request_id_var, token_issuer_var, token_kid_var):
        var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
