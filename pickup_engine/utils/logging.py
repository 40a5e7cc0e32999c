"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from pickup_engine.config import get_settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    # Configure standard library logging
    log_level = getattr(logging, settings.log_level)

    if settings.log_format == "json":
        # JSON logging for production
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
        handler.setFormatter(formatter)
    else:
        # Human-readable logging for development
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class OrderLogger:
    """Specialized logger for order lifecycle events."""

    def __init__(self, component: str):
        self.component = component
        self.logger = get_logger(component)

    def log_transition(
        self,
        order_id: str,
        old_status: str | None,
        new_status: str,
        version: int,
        actor: str | None = None,
        **kwargs: Any,
    ) -> None:
        """Log a committed status change."""
        self.logger.info(
            "order_transition",
            component=self.component,
            order_id=order_id,
            old_status=old_status,
            new_status=new_status,
            version=version,
            actor=actor,
            **kwargs,
        )

    def log_rejection(
        self,
        order_id: str,
        error_code: str,
        error: str,
        **kwargs: Any,
    ) -> None:
        """Log a transition the engine refused."""
        self.logger.warning(
            "order_transition_rejected",
            component=self.component,
            order_id=order_id,
            error_code=error_code,
            error=error,
            **kwargs,
        )

    def log_effect(
        self,
        order_id: str,
        kind: str,
        delivered: bool,
        attempts: int,
        **kwargs: Any,
    ) -> None:
        """Log the outcome of a notification hand-off."""
        log_data = {
            "component": self.component,
            "order_id": order_id,
            "kind": kind,
            "delivered": delivered,
            "attempts": attempts,
        }
        log_data.update(kwargs)

        if delivered:
            self.logger.info("effect_delivered", **log_data)
        else:
            self.logger.error("effect_delivery_failed", **log_data)

    def log_reminder(
        self,
        order_id: str,
        ready_at: str | None,
        **kwargs: Any,
    ) -> None:
        """Log a pickup reminder decision."""
        self.logger.info(
            "pickup_reminder",
            component=self.component,
            order_id=order_id,
            ready_at=ready_at,
            **kwargs,
        )
