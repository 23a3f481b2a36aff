"""
transactions/coordinator.py - Transaction registry

Creates transactions, arms their timeouts, reports statistics and rolls
back everything still in flight on shutdown.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union, TYPE_CHECKING
import logging
import threading
import time

from ..errors import CoordinatorDisabledError
from ..stores.protocol import RecordStore
from .schemas import (
    ROLLBACK_SHUTDOWN,
    ROLLBACK_TIMEOUT,
    CoordinatorStats,
    IsolationLevel,
    TransactionOptions,
    TransactionState,
    new_transaction_id,
)
from .transaction import Transaction

if TYPE_CHECKING:
    from recordtx.bootstrap.config import TransactionConfig

DEFAULT_RETENTION_SECONDS = 3600.0
DEFAULT_ROLLBACK_WAIT_SECONDS = 30.0  # Bound on waiting for an in-flight commit

OptionsLike = Union[TransactionOptions, Mapping[str, Any], None]


class TransactionCoordinator:
    """
    Process-wide registry of transactions.

    Construct one explicitly and pass it where it is needed;
    get_coordinator() returns a shared default instance.
    """

    def __init__(
        self,
        defaults: Optional[TransactionOptions] = None,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        rollback_wait_seconds: Optional[float] = DEFAULT_ROLLBACK_WAIT_SECONDS,
    ):
        self.defaults = defaults or TransactionOptions()
        self.retention_seconds = retention_seconds
        self.rollback_wait_seconds = rollback_wait_seconds
        self.logger = logging.getLogger("transactions.coordinator")

        self._enabled = enabled
        self._clock = clock

        # Insertion-ordered, guarded by _lock
        self._transactions: Dict[str, Transaction] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: "TransactionConfig") -> "TransactionCoordinator":
        defaults = TransactionOptions(
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            auto_commit=False,
            isolation_hint=IsolationLevel(config.isolation_hint),
        )
        return cls(
            defaults=defaults,
            retention_seconds=config.retention_seconds,
            enabled=config.enabled,
        )

    # === ENABLE / DISABLE ===

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Allow or refuse new transactions. Running ones are unaffected."""
        self._enabled = enabled
        self.logger.info(f"Transaction support {'enabled' if enabled else 'disabled'}")

    # === BEGIN ===

    def begin(self, store: RecordStore, options: OptionsLike = None) -> Transaction:
        """Open a transaction bound to store."""
        if not self._enabled:
            raise CoordinatorDisabledError()

        merged = self.defaults.merge(options)
        tx_id = new_transaction_id()
        tx = Transaction(tx_id, store, merged, clock=self._clock)

        with self._lock:
            self._transactions[tx_id] = tx

        self.logger.info(
            f"Transaction {tx_id} began"
            + (f" ({merged.name})" if merged.name else "")
            + (f", timeout {merged.timeout}s" if merged.timeout_enabled else "")
        )

        if merged.timeout_enabled:
            self._arm_timeout(tx)

        return tx

    @contextmanager
    def transaction(self, store: RecordStore, options: OptionsLike = None) -> Iterator[Transaction]:
        """
        Context manager around begin().

        Usage:
            with coordinator.transaction(store, {"auto_commit": True}) as tx:
                tx.create("incident", {...})
            print(tx.result)
        """
        tx = self.begin(store, options)
        with tx:
            yield tx

    # === TIMEOUTS ===

    def _arm_timeout(self, tx: Transaction) -> None:
        timer = threading.Timer(tx.options.timeout, self._expire, args=(tx.transaction_id,))
        timer.daemon = True
        with self._lock:
            self._timers[tx.transaction_id] = timer
        tx.add_done_callback(self._disarm_timeout)
        timer.start()

    def _disarm_timeout(self, tx: Transaction) -> None:
        with self._lock:
            timer = self._timers.pop(tx.transaction_id, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, tx_id: str) -> None:
        with self._lock:
            self._timers.pop(tx_id, None)
            tx = self._transactions.get(tx_id)

        if tx is None or tx.is_complete:
            return

        self.logger.warning(
            f"Transaction {tx_id} timed out after {tx.options.timeout}s "
            f"in state {tx.state.value}, rolling back automatically"
        )
        ok = tx.rollback(reason=ROLLBACK_TIMEOUT, wait_timeout=self.rollback_wait_seconds)

        if tx.state is TransactionState.COMMITTED:
            self.logger.info(f"Transaction {tx_id} committed before timeout rollback applied")
        elif ok:
            self.logger.warning(f"Timeout rollback of transaction {tx_id} completed")
        else:
            self.logger.error(f"Timeout rollback of transaction {tx_id} was incomplete")

    # === LOOKUP ===

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return self._transactions.get(transaction_id)

    def get_transactions(self) -> List[Transaction]:
        with self._lock:
            return list(self._transactions.values())

    def get_active_transactions(self) -> List[Transaction]:
        """Transactions not yet in a terminal state."""
        return [tx for tx in self.get_transactions() if not tx.is_complete]

    def __len__(self) -> int:
        with self._lock:
            return len(self._transactions)

    # === BULK OPERATIONS ===

    def rollback_all(self, wait_timeout: Optional[float] = None) -> int:
        """
        Roll back every active transaction.

        A commit in flight is given wait_timeout seconds (default
        rollback_wait_seconds) to stop; one that does not counts as a
        failure and keeps running. Returns the number whose rollback
        reported success.
        """
        if wait_timeout is None:
            wait_timeout = self.rollback_wait_seconds
        active = self.get_active_transactions()
        rolled_back = 0

        for tx in active:
            try:
                if tx.rollback(reason=ROLLBACK_SHUTDOWN, wait_timeout=wait_timeout):
                    rolled_back += 1
            except Exception:
                self.logger.exception(f"Force rollback failed for transaction {tx.transaction_id}")

        self.logger.info(f"Force rolled back {rolled_back} of {len(active)} active transactions")
        return rolled_back

    def cleanup(self, retention_seconds: Optional[float] = None) -> int:
        """
        Evict terminal transactions completed more than retention_seconds ago.

        Active transactions are never evicted. Returns the number removed.
        """
        retention = self.retention_seconds if retention_seconds is None else retention_seconds
        now = self._clock()

        with self._lock:
            expired = [
                tx_id for tx_id, tx in self._transactions.items()
                if tx.is_complete
                and tx.completed_at is not None
                and now - tx.completed_at >= retention
            ]
            for tx_id in expired:
                del self._transactions[tx_id]

        if expired:
            self.logger.debug(f"Cleaned up {len(expired)} completed transactions")
        return len(expired)

    def shutdown(self, wait_timeout: Optional[float] = None) -> int:
        """Roll back active transactions and cancel pending timeouts."""
        count = self.rollback_all(wait_timeout)
        with self._lock:
            timers, self._timers = list(self._timers.values()), {}
        for timer in timers:
            timer.cancel()
        return count

    # === STATISTICS ===

    def get_stats(self) -> CoordinatorStats:
        """Counts derived from the registry on every call."""
        stats = CoordinatorStats(enabled=self._enabled)
        for tx in self.get_transactions():
            stats.total += 1
            state = tx.state
            if state is TransactionState.COMMITTED:
                stats.completed += 1
            elif state is TransactionState.ROLLED_BACK:
                stats.rolled_back += 1
            elif state is TransactionState.FAILED:
                stats.failed += 1
            else:
                stats.active += 1
        return stats


# Default coordinator instance
_coordinator: Optional[TransactionCoordinator] = None
_coordinator_lock = threading.Lock()


def get_coordinator() -> TransactionCoordinator:
    """Get the shared coordinator, building it from configuration if needed."""
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            from recordtx.bootstrap.config import get_config
            _coordinator = TransactionCoordinator.from_config(get_config().transactions)
        return _coordinator


def set_coordinator(coordinator: Optional[TransactionCoordinator]) -> None:
    """Replace the shared coordinator. None resets it."""
    global _coordinator
    with _coordinator_lock:
        _coordinator = coordinator
