"""
Shared logging configuration for the ruleflow engine.
"""

import sys
import structlog
import logging
import uuid
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

from .config import get_settings

# Context variables for correlation IDs
invocation_id_var: ContextVar[Optional[str]] = ContextVar('invocation_id', default=None)
rule_set_var: ContextVar[Optional[str]] = ContextVar('rule_set', default=None)


def configure_logging(service_name: str = "ruleflow", log_level: Optional[str] = None) -> None:
    """Configure structured logging for a host application.

    The level defaults to ``EngineSettings.log_level``.
    """
    if log_level is None:
        log_level = get_settings().log_level

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    logging.getLogger(service_name).setLevel(getattr(logging, log_level.upper()))


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    # Extract service name from logger name
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        service_name = logger_name.split(".")[0]
        event_dict["service"] = service_name

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add invocation correlation context to log events."""
    invocation_id = invocation_id_var.get()
    if invocation_id:
        event_dict["invocation_id"] = invocation_id

    rule_set = rule_set_var.get()
    if rule_set:
        event_dict["rule_set"] = rule_set

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_invocation_id(invocation_id: Optional[str] = None) -> str:
    """Set invocation ID in context."""
    if invocation_id is None:
        invocation_id = str(uuid.uuid4())
    invocation_id_var.set(invocation_id)
    return invocation_id


def set_rule_set_context(rule_set: Optional[str] = None):
    """Set the rule set label carried by log events."""
    if rule_set:
        rule_set_var.set(rule_set)


def clear_context():
    """Clear all context variables."""
    invocation_id_var.set(None)
    rule_set_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
