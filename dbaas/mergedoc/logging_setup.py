"""
Logging setup for processes embedding MergeDoc.

Modules only ever call logging.getLogger(__name__); the host decides where
records go. setup_logging() is the one-call configuration used by scripts
and the e2e harness.

JSON output goes through json_log_formatter so `extra={...}` context passed
by the store modules lands in each record as fields.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import ObservabilityConfig, StoreConfig

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StoreJSONFormatter(json_log_formatter.JSONFormatter):
    """JSON lines carrying level, logger name and the record's extras."""

    def json_record(self, message: str, extra: dict, record: logging.LogRecord) -> dict:
        extra["level"] = record.levelname
        extra["logger"] = record.name
        extra = super().json_record(message, extra, record)
        return extra


def setup_logging(config: StoreConfig | ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Store configuration (or just its observability section)
    """
    observability = config.observability if isinstance(config, StoreConfig) else config
    level = getattr(logging, observability.log_level.upper(), logging.INFO)

    if observability.log_format == "json":
        formatter: logging.Formatter = StoreJSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
