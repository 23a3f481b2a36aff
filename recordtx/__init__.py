"""
recordtx - Saga transactions over non-transactional record APIs

Groups create/update/delete calls into one logical unit, commits them in
order and compensates already-applied effects when a later step fails.
"""

__version__ = "1.0.0"

from .errors import (
    RecordTxError,
    TransactionStateError,
    CoordinatorDisabledError,
    RecordStoreError,
    RecordNotFoundError,
    TransientStoreError,
)

from .transactions import (
    OperationKind,
    TransactionState,
    IsolationLevel,
    CompensationStatus,
    Operation,
    TransactionOptions,
    OperationError,
    CompensationRecord,
    TransactionResult,
    TransactionStatus,
    CoordinatorStats,
    Transaction,
    TransactionCoordinator,
    get_coordinator,
    set_coordinator,
)

from .stores import (
    RecordStore,
    InMemoryRecordStore,
    ServiceNowRecordStore,
)

__all__ = [
    "__version__",
    # Errors
    "RecordTxError",
    "TransactionStateError",
    "CoordinatorDisabledError",
    "RecordStoreError",
    "RecordNotFoundError",
    "TransientStoreError",
    # Transactions
    "OperationKind",
    "TransactionState",
    "IsolationLevel",
    "CompensationStatus",
    "Operation",
    "TransactionOptions",
    "OperationError",
    "CompensationRecord",
    "TransactionResult",
    "TransactionStatus",
    "CoordinatorStats",
    "Transaction",
    "TransactionCoordinator",
    "get_coordinator",
    "set_coordinator",
    # Stores
    "RecordStore",
    "InMemoryRecordStore",
    "ServiceNowRecordStore",
]
