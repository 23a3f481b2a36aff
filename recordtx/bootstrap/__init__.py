"""
bootstrap/ - Configuration and process wiring
"""

from .config import (
    RecordTxConfig,
    TransactionConfig,
    ServiceNowConfig,
    LoggingConfig,
    load_config,
    get_config,
    reset_config,
)

from .entrypoints import (
    JSONFormatter,
    setup_logging,
    configure_logging,
    create_coordinator,
    create_store,
)

__all__ = [
    # Config
    "RecordTxConfig",
    "TransactionConfig",
    "ServiceNowConfig",
    "LoggingConfig",
    "load_config",
    "get_config",
    "reset_config",
    # Entrypoints
    "JSONFormatter",
    "setup_logging",
    "configure_logging",
    "create_coordinator",
    "create_store",
]
