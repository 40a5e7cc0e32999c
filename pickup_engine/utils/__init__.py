"""Utility modules."""

from pickup_engine.utils.logging import OrderLogger, get_logger, setup_logging

__all__ = ["setup_logging", "get_logger", "OrderLogger"]
