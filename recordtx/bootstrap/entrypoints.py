"""
bootstrap/entrypoints.py - Process wiring

Logging setup and factories that build the coordinator and record store
from configuration.
"""

from __future__ import annotations
from typing import Optional, TYPE_CHECKING
import json
import logging
import sys

from .config import RecordTxConfig, get_config

if TYPE_CHECKING:
    from recordtx.stores.servicenow import ServiceNowRecordStore
    from recordtx.transactions.coordinator import TransactionCoordinator

logger = logging.getLogger("bootstrap.entrypoints")


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(
    level: str = "INFO",
    log_file: str = None,
    json_format: bool = False,
    fmt: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """
    Configure process logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON format for logs
        fmt: Format string for plain-text logs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = JSONFormatter() if json_format else logging.Formatter(fmt)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def configure_logging(config: Optional[RecordTxConfig] = None) -> None:
    """Apply the logging section of the configuration."""
    config = config or get_config()
    setup_logging(
        level=config.logging.level,
        log_file=config.logging.log_file,
        json_format=config.logging.json_logs,
        fmt=config.logging.format,
    )


def create_coordinator(config: Optional[RecordTxConfig] = None) -> "TransactionCoordinator":
    """Build a coordinator from the transactions section."""
    from recordtx.transactions.coordinator import TransactionCoordinator

    config = config or get_config()
    coordinator = TransactionCoordinator.from_config(config.transactions)
    logger.info(
        f"Coordinator created: enabled={coordinator.enabled}, "
        f"timeout={config.transactions.timeout_seconds}s"
    )
    return coordinator


def create_store(config: Optional[RecordTxConfig] = None) -> "ServiceNowRecordStore":
    """Build a ServiceNow record store from the servicenow section."""
    from recordtx.stores.servicenow import ServiceNowRecordStore

    config = config or get_config()
    return ServiceNowRecordStore.from_config(config.servicenow)
