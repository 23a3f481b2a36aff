"""
transactions/schemas.py - Transaction data structures

Operations, options, results and status snapshots exchanged between
transactions, the coordinator and their callers.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Union
from datetime import datetime, timezone
from enum import Enum
import uuid


class OperationKind(Enum):
    """Kind of remote effect journaled by an operation."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TransactionState(Enum):
    """Transaction lifecycle states."""
    OPEN = "open"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    TransactionState.COMMITTED,
    TransactionState.ROLLED_BACK,
    TransactionState.FAILED,
})


class IsolationLevel(Enum):
    """Requested isolation. Recorded for reporting; no locking is performed."""
    READ_UNCOMMITTED = "read_uncommitted"
    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"


class CompensationStatus(Enum):
    """Outcome of undoing one executed operation."""
    COMPENSATED = "compensated"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"


# Rollback reasons
ROLLBACK_CALLER = "caller"
ROLLBACK_TIMEOUT = "timeout"
ROLLBACK_SHUTDOWN = "shutdown"
ROLLBACK_ABANDONED = "abandoned"
ROLLBACK_FAILURE = "operation_failure"

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_RETRIES = 3


def new_operation_id(kind: OperationKind) -> str:
    return f"{kind.value}_{uuid.uuid4().hex[:12]}"


def new_transaction_id() -> str:
    return f"tx_{uuid.uuid4().hex[:12]}"


@dataclass
class Operation:
    """One journaled create, update or delete."""

    kind: OperationKind
    table: str

    operation_id: str = ""

    target_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    prior_snapshot: Optional[Dict[str, Any]] = None

    # Set together once the remote call returns
    executed: bool = False
    compensation_state: Optional[Dict[str, Any]] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not self.operation_id:
            self.operation_id = new_operation_id(self.kind)

    @property
    def record_id(self) -> Optional[str]:
        """Target record id, or the store-assigned id of an executed create."""
        if self.kind is OperationKind.CREATE:
            if self.compensation_state:
                return self.compensation_state.get("record_id")
            return None
        return self.target_id

    def mark_executed(self, compensation_state: Dict[str, Any]) -> None:
        self.compensation_state = compensation_state
        self.executed = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind.value,
            "table": self.table,
            "target_id": self.target_id,
            "record_id": self.record_id,
            "executed": self.executed,
            "has_prior_snapshot": self.prior_snapshot is not None,
        }


@dataclass
class TransactionOptions:
    """Per-transaction settings. Every field has its own default."""

    name: str = ""
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS  # seconds, None/0 disables
    max_retries: int = DEFAULT_MAX_RETRIES
    auto_commit: bool = False
    isolation_hint: IsolationLevel = IsolationLevel.READ_COMMITTED

    def __post_init__(self):
        if isinstance(self.isolation_hint, str):
            self.isolation_hint = IsolationLevel(self.isolation_hint)
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout}")

    def merge(
        self,
        overrides: Union["TransactionOptions", Mapping[str, Any], None],
    ) -> "TransactionOptions":
        """
        Return a copy with overrides laid over these values.

        A dict overrides exactly the keys it names. An options object
        overrides only the fields it changed from the built-in defaults, so
        TransactionOptions(name="x") keeps every other value of self. Pass a
        dict to force a built-in default value.
        """
        if overrides is None:
            return replace(self)
        if isinstance(overrides, TransactionOptions):
            overrides = overrides.changed_fields()

        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown transaction options: {sorted(unknown)}")
        return replace(self, **dict(overrides))

    def changed_fields(self) -> Dict[str, Any]:
        """Fields whose values differ from the built-in defaults."""
        baseline = TransactionOptions()
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) != getattr(baseline, f.name)
        }

    @property
    def timeout_enabled(self) -> bool:
        return bool(self.timeout)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
            "auto_commit": self.auto_commit,
            "isolation_hint": self.isolation_hint.value,
        }


@dataclass
class OperationError:
    """Failure of one operation during commit."""

    operation_id: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"operation_id": self.operation_id, "error": self.error}


@dataclass
class CompensationRecord:
    """Outcome of compensating one executed operation."""

    operation_id: str
    kind: OperationKind
    status: CompensationStatus
    error: Optional[str] = None

    # Recreated records get a new identifier
    original_id: Optional[str] = None
    replacement_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is CompensationStatus.COMPENSATED

    @property
    def identity_lost(self) -> bool:
        return self.kind is OperationKind.DELETE and self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "error": self.error,
            "original_id": self.original_id,
            "replacement_id": self.replacement_id,
        }


@dataclass
class TransactionResult:
    """Outcome of a commit."""

    transaction_id: str
    success: bool
    operations: int
    duration: float
    errors: List[OperationError] = field(default_factory=list)
    rollback_performed: bool = False

    rollback_succeeded: Optional[bool] = None
    compensations: List[CompensationRecord] = field(default_factory=list)

    @property
    def failed_operation_id(self) -> Optional[str]:
        return self.errors[0].operation_id if self.errors else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "success": self.success,
            "operations": self.operations,
            "duration": self.duration,
            "errors": [e.to_dict() for e in self.errors],
            "rollback_performed": self.rollback_performed,
            "rollback_succeeded": self.rollback_succeeded,
            "compensations": [c.to_dict() for c in self.compensations],
        }


@dataclass
class TransactionStatus:
    """Read-only snapshot of a transaction."""

    transaction_id: str
    state: TransactionState
    operation_count: int
    executed_operation_count: int
    duration: float
    options: TransactionOptions
    rollback_reason: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "state": self.state.value,
            "operation_count": self.operation_count,
            "executed_operation_count": self.executed_operation_count,
            "duration": self.duration,
            "options": self.options.to_dict(),
            "rollback_reason": self.rollback_reason,
        }


@dataclass
class CoordinatorStats:
    """Registry counts derived from transaction states."""

    total: int = 0
    active: int = 0
    completed: int = 0
    rolled_back: int = 0
    failed: int = 0
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "completed": self.completed,
            "rolled_back": self.rolled_back,
            "failed": self.failed,
            "enabled": self.enabled,
        }
