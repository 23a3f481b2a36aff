"""
bootstrap/config.py - recordtx configuration

Provides configuration loading from files, environment variables, and defaults.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from pathlib import Path
import os
import json
import logging

logger = logging.getLogger("bootstrap.config")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class TransactionConfig:
    """Coordinator defaults."""

    enabled: bool = True
    timeout_seconds: float = 300.0  # 0 disables automatic rollback
    max_retries: int = 3  # Retries of transient store errors per call
    isolation_hint: str = "read_committed"
    retention_seconds: float = 3600.0  # Keep finished transactions for audit

    @classmethod
    def from_env(cls) -> "TransactionConfig":
        return cls(
            enabled=_env_bool("RECORDTX_ENABLED", "true"),
            timeout_seconds=float(os.getenv("RECORDTX_TIMEOUT", "300")),
            max_retries=int(os.getenv("RECORDTX_MAX_RETRIES", "3")),
            isolation_hint=os.getenv("RECORDTX_ISOLATION", "read_committed"),
            retention_seconds=float(os.getenv("RECORDTX_RETENTION", "3600")),
        )


@dataclass
class ServiceNowConfig:
    """ServiceNow instance connection."""

    instance_url: str = ""
    token: str = ""
    username: str = ""
    password: str = ""
    timeout_seconds: float = 30.0
    verify_ssl: bool = True

    @classmethod
    def from_env(cls) -> "ServiceNowConfig":
        return cls(
            instance_url=os.getenv("RECORDTX_SNC_INSTANCE_URL", ""),
            token=os.getenv("RECORDTX_SNC_TOKEN", ""),
            username=os.getenv("RECORDTX_SNC_USERNAME", ""),
            password=os.getenv("RECORDTX_SNC_PASSWORD", ""),
            timeout_seconds=float(os.getenv("RECORDTX_SNC_TIMEOUT", "30")),
            verify_ssl=_env_bool("RECORDTX_SNC_VERIFY_SSL", "true"),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: Optional[str] = None
    json_logs: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        return cls(
            level=os.getenv("RECORDTX_LOG_LEVEL", "INFO"),
            format=os.getenv("RECORDTX_LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=os.getenv("RECORDTX_LOG_FILE"),
            json_logs=_env_bool("RECORDTX_JSON_LOGS", "false"),
        )


@dataclass
class RecordTxConfig:
    """Root configuration."""

    environment: str = "development"

    transactions: TransactionConfig = field(default_factory=TransactionConfig)
    servicenow: ServiceNowConfig = field(default_factory=ServiceNowConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls) -> "RecordTxConfig":
        """Create configuration from environment variables."""
        return cls(
            environment=os.getenv("RECORDTX_ENVIRONMENT", "development"),
            transactions=TransactionConfig.from_env(),
            servicenow=ServiceNowConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def from_file(cls, filepath: str) -> "RecordTxConfig":
        """Load configuration from JSON file."""
        path = Path(filepath)
        if not path.exists():
            logger.warning(f"Config file not found: {filepath}, using defaults")
            return cls.from_env()

        with open(path) as f:
            data = json.load(f)

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "RecordTxConfig":
        """Create config from dictionary. File values override the environment."""
        config = cls.from_env()

        if "environment" in data:
            config.environment = data["environment"]

        for section in ("transactions", "servicenow", "logging"):
            target = getattr(config, section)
            for key, value in data.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Ignoring unknown config key: {section}.{key}")

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Serialize config to dictionary. Credentials are omitted."""
        return {
            "environment": self.environment,
            "transactions": {
                "enabled": self.transactions.enabled,
                "timeout_seconds": self.transactions.timeout_seconds,
                "max_retries": self.transactions.max_retries,
                "isolation_hint": self.transactions.isolation_hint,
                "retention_seconds": self.transactions.retention_seconds,
            },
            "servicenow": {
                "instance_url": self.servicenow.instance_url,
                "timeout_seconds": self.servicenow.timeout_seconds,
                "verify_ssl": self.servicenow.verify_ssl,
            },
            "logging": {
                "level": self.logging.level,
                "log_file": self.logging.log_file,
                "json_logs": self.logging.json_logs,
            },
        }


# Global config instance
_config: Optional[RecordTxConfig] = None


def load_config(filepath: str = None) -> RecordTxConfig:
    """
    Load configuration from file or environment.

    Args:
        filepath: Optional path to JSON config file

    Returns:
        RecordTxConfig instance
    """
    global _config

    if filepath:
        _config = RecordTxConfig.from_file(filepath)
    else:
        default_paths = [
            "./recordtx.json",
            "./config/recordtx.json",
            os.path.expanduser("~/.recordtx/config.json"),
        ]

        for path in default_paths:
            if Path(path).exists():
                logger.info(f"Loading config from: {path}")
                _config = RecordTxConfig.from_file(path)
                return _config

        _config = RecordTxConfig.from_env()

    logger.info(f"Configuration loaded: environment={_config.environment}")
    return _config


def get_config() -> RecordTxConfig:
    """Get current configuration, loading if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the loaded configuration."""
    global _config
    _config = None
