"""
recordtx test configuration and fixtures

Provides a scriptable in-memory record store that records every call and
fails on demand, plus a controllable clock.
"""

import pytest
from typing import Any, Callable, Dict, List, Optional, Tuple

from recordtx.errors import RecordStoreError
from recordtx.stores.memory import InMemoryRecordStore
from recordtx.transactions.coordinator import TransactionCoordinator, set_coordinator
from recordtx.transactions.schemas import TransactionOptions


Call = Tuple[str, str, Optional[str], Optional[Dict[str, Any]]]


class ScriptedStore(InMemoryRecordStore):
    """
    InMemoryRecordStore that logs calls and raises scripted failures.

    Usage:
        store = ScriptedStore()
        store.fail_when("create", lambda table, rid, data: data.get("short_description") == "B")
    """

    def __init__(self):
        super().__init__()
        self.calls: List[Call] = []
        self._rules: List[list] = []

        # Called as before_call(method, table, data) ahead of every call
        self.before_call: Optional[Callable[[str, str, Optional[Dict[str, Any]]], None]] = None

    def fail_when(
        self,
        method: str,
        predicate: Optional[Callable[[str, Optional[str], Optional[Dict[str, Any]]], bool]] = None,
        error: Optional[Exception] = None,
        times: Optional[int] = None,
    ) -> None:
        """Raise error on matching calls. times=None fails forever."""
        error = error or RecordStoreError(f"{method} rejected by test store")
        self._rules.append([method, predicate, error, times])

    def _check(self, method: str, table: str, record_id: Optional[str], data: Optional[Dict]) -> None:
        if self.before_call is not None:
            self.before_call(method, table, data)
        for rule in self._rules:
            rule_method, predicate, error, times = rule
            if rule_method != method or times == 0:
                continue
            if predicate is not None and not predicate(table, record_id, data):
                continue
            if times is not None:
                rule[3] = times - 1
            raise error

    def create(self, table, data):
        self.calls.append(("create", table, None, dict(data)))
        self._check("create", table, None, data)
        return super().create(table, data)

    def update(self, table, record_id, data):
        self.calls.append(("update", table, record_id, dict(data)))
        self._check("update", table, record_id, data)
        return super().update(table, record_id, data)

    def delete(self, table, record_id):
        self.calls.append(("delete", table, record_id, None))
        self._check("delete", table, record_id, None)
        return super().delete(table, record_id)

    def calls_of(self, method: str) -> List[Call]:
        return [c for c in self.calls if c[0] == method]

    def seed(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record without logging the call."""
        return InMemoryRecordStore.create(self, table, data)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store():
    """Scriptable in-memory store."""
    return ScriptedStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator():
    """Coordinator without automatic timeouts."""
    coord = TransactionCoordinator(defaults=TransactionOptions(timeout=None))
    yield coord
    coord.shutdown()


@pytest.fixture
def timed_coordinator():
    """Coordinator whose transactions time out after 50ms."""
    coord = TransactionCoordinator(defaults=TransactionOptions(timeout=0.05))
    yield coord
    coord.shutdown()


@pytest.fixture(autouse=True)
def reset_default_coordinator():
    yield
    set_coordinator(None)
