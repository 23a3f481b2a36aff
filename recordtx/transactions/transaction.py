"""
transactions/transaction.py - Saga transaction over a record store

Operations are journaled while the transaction is open, executed in
append order on commit, and compensated in reverse order when a later
operation fails or the transaction is rolled back.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional
import logging
import threading
import time

from ..errors import RecordNotFoundError, TransactionStateError, TransientStoreError
from ..stores.protocol import RecordStore, id_field_of
from .schemas import (
    TERMINAL_STATES,
    ROLLBACK_ABANDONED,
    ROLLBACK_CALLER,
    ROLLBACK_FAILURE,
    CompensationRecord,
    CompensationStatus,
    Operation,
    OperationError,
    OperationKind,
    TransactionOptions,
    TransactionResult,
    TransactionState,
    TransactionStatus,
)

logger = logging.getLogger("transactions.transaction")

# Operation id used for errors not tied to a single operation
TRANSACTION_ERROR_ID = "transaction"


class Transaction:
    """
    Ordered unit of work against a non-transactional record store.

    Usage:
        tx = coordinator.begin(store)
        tx.create("incident", {"short_description": "A"})
        tx.update("incident", sys_id, {"state": "2"}, prior_snapshot=before)
        result = tx.commit()
        if not result.success:
            ...
    """

    def __init__(
        self,
        transaction_id: str,
        store: RecordStore,
        options: Optional[TransactionOptions] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transaction_id = transaction_id
        self.store = store
        self.options = options or TransactionOptions()
        self._clock = clock

        self._lock = threading.RLock()
        self._completed = threading.Event()

        self._operations: List[Operation] = []
        self._state = TransactionState.OPEN

        # Timing
        self.started_at = clock()
        self._commit_started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

        # Rollback bookkeeping
        self._cancel_reason: Optional[str] = None
        self._rollback_reason: Optional[str] = None
        self._compensations: List[CompensationRecord] = []
        self._result: Optional[TransactionResult] = None

        self._done_callbacks: List[Callable[["Transaction"], None]] = []

        logger.debug(f"Transaction {transaction_id} opened ({self.options.name or 'unnamed'})")

    # === INTROSPECTION ===

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_complete(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def operations(self) -> List[Operation]:
        with self._lock:
            return list(self._operations)

    @property
    def compensations(self) -> List[CompensationRecord]:
        with self._lock:
            return list(self._compensations)

    @property
    def result(self) -> Optional[TransactionResult]:
        """Result of commit(), once it has returned."""
        return self._result

    @property
    def rollback_reason(self) -> Optional[str]:
        return self._rollback_reason

    def get_operation(self, operation_id: str) -> Optional[Operation]:
        with self._lock:
            for op in self._operations:
                if op.operation_id == operation_id:
                    return op
        return None

    def get_status(self) -> TransactionStatus:
        """Snapshot of the transaction. Safe to call at any time."""
        with self._lock:
            end = self.completed_at if self.completed_at is not None else self._clock()
            return TransactionStatus(
                transaction_id=self.transaction_id,
                state=self._state,
                operation_count=len(self._operations),
                executed_operation_count=sum(1 for op in self._operations if op.executed),
                duration=end - self.started_at,
                options=self.options,
                rollback_reason=self._rollback_reason,
            )

    def add_done_callback(self, fn: Callable[["Transaction"], None]) -> None:
        """Call fn(transaction) once the transaction reaches a terminal state."""
        with self._lock:
            if not self.is_complete:
                self._done_callbacks.append(fn)
                return
        fn(self)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the transaction is terminal. Returns False on timeout."""
        return self._completed.wait(timeout)

    # === JOURNAL ===

    def create(self, table: str, data: Dict[str, Any]) -> str:
        """Journal a create. Returns the operation id."""
        return self._append(Operation(
            kind=OperationKind.CREATE,
            table=table,
            payload=dict(data),
        ))

    def update(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        prior_snapshot: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Journal an update. Returns the operation id.

        prior_snapshot holds the record's values before the transaction and is
        written back if the update has to be compensated. Without it the
        update cannot be undone.
        """
        if not record_id:
            raise ValueError("update requires a record id")
        return self._append(Operation(
            kind=OperationKind.UPDATE,
            table=table,
            target_id=record_id,
            payload=dict(data),
            prior_snapshot=dict(prior_snapshot) if prior_snapshot is not None else None,
        ))

    def delete(
        self,
        table: str,
        record_id: str,
        prior_snapshot: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Journal a delete. Returns the operation id.

        prior_snapshot is used to recreate the record on rollback; the
        recreated record gets a new identifier.
        """
        if not record_id:
            raise ValueError("delete requires a record id")
        return self._append(Operation(
            kind=OperationKind.DELETE,
            table=table,
            target_id=record_id,
            prior_snapshot=dict(prior_snapshot) if prior_snapshot is not None else None,
        ))

    def _append(self, op: Operation) -> str:
        with self._lock:
            if self._state is not TransactionState.OPEN:
                raise TransactionStateError(
                    f"Cannot add operations to a transaction that is {self._state.value}",
                    state=self._state.value,
                    transaction_id=self.transaction_id,
                )
            if op.kind is not OperationKind.CREATE and op.prior_snapshot is None:
                logger.warning(
                    f"Transaction {self.transaction_id}: {op.kind.value} of "
                    f"{op.table}/{op.target_id} queued without prior snapshot, "
                    f"it cannot be compensated"
                )
            self._operations.append(op)

        logger.debug(
            f"Transaction {self.transaction_id}: {op.kind.value} on {op.table} "
            f"queued as {op.operation_id}"
        )
        return op.operation_id

    # === COMMIT ===

    def commit(self) -> TransactionResult:
        """
        Execute all operations in append order.

        Store failures never raise: the first failure stops execution, every
        executed operation is compensated in reverse order and the result
        reports the failure. Raises TransactionStateError if the transaction
        is not open.
        """
        with self._lock:
            if self._state is not TransactionState.OPEN:
                raise TransactionStateError(
                    f"Transaction already {self._state.value}",
                    state=self._state.value,
                    transaction_id=self.transaction_id,
                )
            self._state = TransactionState.COMMITTING
            self._commit_started_at = self._clock()
            operations = list(self._operations)

        logger.info(f"Committing transaction {self.transaction_id} ({len(operations)} operations)")

        errors: List[OperationError] = []
        for index, op in enumerate(operations):
            with self._lock:
                cancel_reason = self._cancel_reason
            if cancel_reason:
                errors.append(OperationError(
                    operation_id=TRANSACTION_ERROR_ID,
                    error=(
                        f"Transaction cancelled ({cancel_reason}) after "
                        f"{index} of {len(operations)} operations"
                    ),
                ))
                logger.warning(
                    f"Transaction {self.transaction_id} cancelled ({cancel_reason}), "
                    f"{len(operations) - index} operations not attempted"
                )
                break

            try:
                self._execute(op)
            except Exception as e:
                errors.append(OperationError(operation_id=op.operation_id, error=_describe(e)))
                logger.error(
                    f"Transaction {self.transaction_id}: operation {op.operation_id} "
                    f"({op.kind.value} on {op.table}) failed: {_describe(e)}"
                )
                break

        rollback_performed = bool(errors)
        rollback_succeeded: Optional[bool] = None

        if errors:
            with self._lock:
                reason = self._cancel_reason or ROLLBACK_FAILURE
                self._state = TransactionState.ROLLING_BACK
                self._rollback_reason = reason
            rollback_succeeded = self._compensate_executed()
        else:
            self._finish(TransactionState.COMMITTED)

        result = TransactionResult(
            transaction_id=self.transaction_id,
            success=not errors,
            operations=len(operations),
            duration=self.completed_at - self._commit_started_at,
            errors=errors,
            rollback_performed=rollback_performed,
            rollback_succeeded=rollback_succeeded,
            compensations=self.compensations,
        )
        self._result = result

        if result.success:
            logger.info(
                f"Transaction {self.transaction_id} committed "
                f"({result.operations} operations, {result.duration:.3f}s)"
            )
        else:
            logger.error(
                f"Transaction {self.transaction_id} failed at {result.failed_operation_id}, "
                f"rollback {'succeeded' if rollback_succeeded else 'incomplete'}"
            )

        self._run_done_callbacks()
        return result

    def _execute(self, op: Operation) -> None:
        """Run one operation against the store and capture what undoes it."""
        if op.kind is OperationKind.CREATE:
            record = self._call(self.store.create, op.table, op.payload)
            record_id = _extract_id(record, id_field_of(self.store))
            if record_id is None:
                logger.error(
                    f"Transaction {self.transaction_id}: create on {op.table} returned "
                    f"no identifier, it cannot be compensated"
                )
            op.mark_executed({"record_id": record_id})

        elif op.kind is OperationKind.UPDATE:
            self._call(self.store.update, op.table, op.target_id, op.payload)
            op.mark_executed({"record_id": op.target_id, "restore": op.prior_snapshot})

        elif op.kind is OperationKind.DELETE:
            deleted = self._call(self.store.delete, op.table, op.target_id)
            if deleted is False:
                raise RecordNotFoundError(op.table, op.target_id)
            op.mark_executed({"record_id": op.target_id, "recreate": op.prior_snapshot})

        else:
            raise ValueError(f"Unsupported operation kind: {op.kind}")

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Call the store, retrying transient failures up to max_retries times."""
        attempt = 0
        while True:
            try:
                return fn(*args)
            except TransientStoreError as e:
                attempt += 1
                if attempt > self.options.max_retries:
                    raise
                logger.warning(
                    f"Transaction {self.transaction_id}: transient store error, "
                    f"retry {attempt}/{self.options.max_retries}: {e}"
                )

    # === ROLLBACK ===

    def rollback(self, reason: str = ROLLBACK_CALLER, wait_timeout: Optional[float] = None) -> bool:
        """
        Compensate every executed operation in reverse order.

        Never raises. Returns True if every compensation succeeded. Calling
        it on a finished transaction is a no-op returning True.

        Calling it while commit() runs on another thread stops the commit
        before its next operation and waits up to wait_timeout seconds
        (None waits indefinitely) for the compensation. Returns False if the
        wait expires or the commit finished before it could be stopped.
        """
        wait_for_commit = False
        with self._lock:
            if self.is_complete:
                logger.debug(
                    f"Transaction {self.transaction_id} already {self._state.value}, "
                    f"rollback ({reason}) ignored"
                )
                return True

            if self._state is TransactionState.COMMITTING:
                if self._cancel_reason is None:
                    self._cancel_reason = reason
                wait_for_commit = True
            elif self._state is TransactionState.ROLLING_BACK:
                wait_for_commit = True
            else:
                self._state = TransactionState.ROLLING_BACK
                self._rollback_reason = reason

        if wait_for_commit:
            logger.info(
                f"Rollback ({reason}) of transaction {self.transaction_id} "
                f"waiting for in-flight work"
            )
            if not self._completed.wait(wait_timeout):
                logger.warning(
                    f"Rollback ({reason}) of transaction {self.transaction_id} gave up "
                    f"after {wait_timeout}s, still {self._state.value}"
                )
                return False
            if self._state is TransactionState.COMMITTED:
                logger.warning(
                    f"Transaction {self.transaction_id} committed before rollback "
                    f"({reason}) could stop it"
                )
            return self._state is TransactionState.ROLLED_BACK

        logger.info(f"Rolling back transaction {self.transaction_id} ({reason})")
        succeeded = self._compensate_executed()
        self._run_done_callbacks()
        return succeeded

    def _compensate_executed(self) -> bool:
        """Undo executed operations newest first. Continues past failures."""
        with self._lock:
            executed = [op for op in self._operations if op.executed]

        records: List[CompensationRecord] = []
        for op in reversed(executed):
            records.append(self._compensate(op))

        succeeded = all(r.succeeded for r in records)
        with self._lock:
            self._compensations = records

        if succeeded:
            logger.info(
                f"Transaction {self.transaction_id} rolled back "
                f"({len(records)} operations compensated)"
            )
            self._finish(TransactionState.ROLLED_BACK)
        else:
            failed = [r.operation_id for r in records if not r.succeeded]
            logger.error(
                f"Transaction {self.transaction_id} partially rolled back, "
                f"not compensated: {', '.join(failed)}"
            )
            self._finish(TransactionState.FAILED)
        return succeeded

    def _compensate(self, op: Operation) -> CompensationRecord:
        state = op.compensation_state or {}
        record = CompensationRecord(
            operation_id=op.operation_id,
            kind=op.kind,
            status=CompensationStatus.COMPENSATED,
            original_id=state.get("record_id"),
        )

        if op.kind is OperationKind.CREATE:
            undo = (self.store.delete, op.table, state.get("record_id"))
            missing = state.get("record_id") is None
        elif op.kind is OperationKind.UPDATE:
            restore = state.get("restore")
            missing = restore is None
            undo = (self.store.update, op.table, op.target_id,
                    _without_id(restore, id_field_of(self.store)))
        else:
            recreate = state.get("recreate")
            missing = recreate is None
            undo = (self.store.create, op.table,
                    _without_id(recreate, id_field_of(self.store)))

        if missing:
            record.status = CompensationStatus.UNAVAILABLE
            record.error = (
                "no store identifier captured" if op.kind is OperationKind.CREATE
                else "no prior snapshot"
            )
            logger.error(
                f"Transaction {self.transaction_id}: cannot compensate "
                f"{op.kind.value} {op.operation_id} on {op.table}: {record.error}"
            )
            return record

        try:
            returned = self._call(*undo)
        except Exception as e:
            record.status = CompensationStatus.FAILED
            record.error = _describe(e)
            logger.error(
                f"Transaction {self.transaction_id}: compensation of {op.operation_id} "
                f"({op.kind.value} on {op.table}) failed: {record.error}"
            )
            return record

        if op.kind is OperationKind.DELETE:
            record.replacement_id = _extract_id(returned, id_field_of(self.store))
            logger.warning(
                f"Transaction {self.transaction_id}: deleted record {op.table}/{op.target_id} "
                f"recreated as {record.replacement_id}, original identifier not restored"
            )
        else:
            logger.debug(f"Transaction {self.transaction_id}: compensated {op.operation_id}")
        return record

    # === COMPLETION ===

    def _finish(self, state: TransactionState) -> None:
        with self._lock:
            self._state = state
            self.completed_at = self._clock()
        self._completed.set()

    def _run_done_callbacks(self) -> None:
        with self._lock:
            callbacks, self._done_callbacks = self._done_callbacks, []
        for fn in callbacks:
            try:
                fn(self)
            except Exception:
                logger.exception(f"Done callback failed for transaction {self.transaction_id}")

    # === CONTEXT MANAGER ===

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.rollback()
            return
        if self._state is not TransactionState.OPEN:
            return
        if self.options.auto_commit:
            self.commit()
        else:
            logger.warning(
                f"Transaction {self.transaction_id} left open at end of block, rolling back"
            )
            self.rollback(reason=ROLLBACK_ABANDONED)

    def __repr__(self) -> str:
        return (
            f"Transaction(id={self.transaction_id!r}, state={self._state.value}, "
            f"operations={len(self._operations)})"
        )


def _extract_id(record: Any, id_field: str) -> Optional[str]:
    if isinstance(record, dict):
        value = record.get(id_field)
        return str(value) if value else None
    return None


def _without_id(data: Optional[Dict[str, Any]], id_field: str) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    return {k: v for k, v in data.items() if k != id_field}


def _describe(error: Exception) -> str:
    return str(error) or error.__class__.__name__
