from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Per-request correlation id, set by the HTTP middleware
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Substrings of event keys whose values are credentials and never logged
_SECRET_KEY_PARTS = ("password", "secret", "token", "authorization", "verify_key")
_ADDRESS_KEYS = {"email", "to", "recipient", "to_addr"}
_REDACTED = "[redacted]"


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def redact_address(address: str) -> str:
    """Keep the first two characters of the local part and the domain."""
    if "@" not in address:
        return _REDACTED
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _redact_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Drop credential values outright and shorten email addresses.

    Token *events* such as ``token_expired`` are untouched; only field
    values are rewritten.
    """
    for key, value in list(event_dict.items()):
        if key == "event" or value is None:
            continue
        lower_key = key.lower()
        if any(part in lower_key for part in _SECRET_KEY_PARTS):
            event_dict[key] = _REDACTED
        elif lower_key in _ADDRESS_KEYS and isinstance(value, str):
            event_dict[key] = redact_address(value)
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def configure_logging(log_level: str = "INFO", *, json_output: bool = True) -> None:
    """Install the structlog pipeline used by every authcore module.

    JSON lines are the production format; ``json_output=False`` switches to
    the coloured console renderer for local work.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact_credentials,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true") and not _env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
