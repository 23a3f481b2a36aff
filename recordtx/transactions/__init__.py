"""
transactions/ - Saga transactions

Journals create/update/delete operations against a record store, executes
them in order on commit and compensates executed ones in reverse order
when a later step fails.
"""

from .schemas import (
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
    TERMINAL_STATES,
)

from .transaction import Transaction

from .coordinator import (
    TransactionCoordinator,
    get_coordinator,
    set_coordinator,
)

__all__ = [
    # Schemas
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
    "TERMINAL_STATES",
    # Transaction
    "Transaction",
    # Coordinator
    "TransactionCoordinator",
    "get_coordinator",
    "set_coordinator",
]
