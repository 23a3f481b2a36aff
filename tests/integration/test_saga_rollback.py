"""
Integration tests for coordinated multi-record transactions.

Drives TransactionCoordinator end to end against the in-memory store and a
ServiceNow store served by a dict-backed MockTransport.
"""

import json
import threading
import uuid

import httpx
import pytest

from recordtx.stores.servicenow import ServiceNowRecordStore
from recordtx.transactions.coordinator import TransactionCoordinator
from recordtx.transactions.schemas import (
    CompensationStatus,
    TransactionOptions,
    TransactionState,
)


class FakeTableAPI:
    """Minimal /api/now/table server backed by dicts."""

    def __init__(self):
        self.tables = {}
        self.reject_create = set()  # short_description values answered with 403

    def __call__(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.split("/")[4:]  # after /api/now/table
        table = parts[0]
        record_id = parts[1] if len(parts) > 1 else None
        records = self.tables.setdefault(table, {})

        if request.method == "POST":
            data = json.loads(request.content)
            if data.get("short_description") in self.reject_create:
                return httpx.Response(403, json={"error": {"message": "ACL rejected create"}})
            sys_id = uuid.uuid4().hex
            records[sys_id] = {**data, "sys_id": sys_id}
            return httpx.Response(201, json={"result": records[sys_id]})

        if record_id not in records:
            return httpx.Response(404, json={"error": {"message": "No Record found"}})

        if request.method == "PUT":
            records[record_id].update(json.loads(request.content))
            return httpx.Response(200, json={"result": records[record_id]})
        if request.method == "DELETE":
            del records[record_id]
            return httpx.Response(204)
        return httpx.Response(200, json={"result": records[record_id]})


class TestSagaRollback:
    """Failure midway through a commit."""

    def test_second_create_fails(self, coordinator, store):
        """Test the first record is removed when the second create fails."""
        store.fail_when("create", lambda table, rid, data: data["short_description"] == "B")

        tx = coordinator.begin(store)
        tx.create("incident", {"short_description": "A"})
        op_b = tx.create("incident", {"short_description": "B"})
        result = tx.commit()

        assert result.success is False
        assert result.operations == 2
        assert result.rollback_performed is True
        assert result.rollback_succeeded is True
        assert result.errors[0].operation_id == op_b
        assert store.records("incident") == []
        assert tx.state is TransactionState.ROLLED_BACK

    def test_mixed_operations_restored(self, coordinator, store):
        """Test creates, updates and deletes across tables are all undone."""
        problem = store.seed("problem", {"short_description": "Outage", "state": "1"})
        note = store.seed("kb_knowledge", {"short_description": "Workaround"})

        tx = coordinator.begin(store)
        tx.create("incident", {"short_description": "Linked incident"})
        tx.update("problem", problem["sys_id"], {"state": "3"}, prior_snapshot=problem)
        tx.delete("kb_knowledge", note["sys_id"], prior_snapshot=note)
        tx.create("change_request", {"short_description": "Fix"})
        store.fail_when("create", lambda table, rid, data: table == "change_request")

        result = tx.commit()

        assert result.success is False
        assert result.rollback_succeeded is True
        assert store.records("incident") == []
        assert store.get("problem", problem["sys_id"]) == problem

        restored = store.records("kb_knowledge")
        assert len(restored) == 1
        assert restored[0]["short_description"] == "Workaround"
        assert restored[0]["sys_id"] != note["sys_id"]

        recreated = [c for c in result.compensations if c.identity_lost]
        assert len(recreated) == 1
        assert recreated[0].original_id == note["sys_id"]
        assert recreated[0].replacement_id == restored[0]["sys_id"]

    def test_compensations_run_newest_first(self, coordinator, store):
        """Test compensation order is the reverse of execution order."""
        tx = coordinator.begin(store)
        for name in ("one", "two", "three"):
            tx.create("incident", {"short_description": name})
        tx.create("incident", {"short_description": "boom"})
        store.fail_when("create", lambda table, rid, data: data["short_description"] == "boom")

        tx.commit()

        created = [tx.operations[i].record_id for i in range(3)]
        deleted = [c[2] for c in store.calls_of("delete")]
        assert deleted == list(reversed(created))

    def test_partial_rollback_reported(self, coordinator, store):
        """Test a failed compensation leaves the transaction FAILED."""
        tx = coordinator.begin(store)
        first = tx.create("incident", {"short_description": "A"})
        tx.create("incident", {"short_description": "B"})
        store.fail_when("create", lambda table, rid, data: data["short_description"] == "B")
        store.fail_when("delete")

        result = tx.commit()

        assert result.rollback_performed is True
        assert result.rollback_succeeded is False
        assert tx.state is TransactionState.FAILED
        assert result.compensations[0].operation_id == first
        assert result.compensations[0].status is CompensationStatus.FAILED
        assert coordinator.get_stats().failed == 1


class TestConcurrentTransactions:
    """Independent transactions on one coordinator."""

    def test_parallel_commits(self, coordinator, store):
        """Test transactions committed from several threads stay isolated."""
        results = []
        lock = threading.Lock()

        def worker(n):
            tx = coordinator.begin(store, {"name": f"worker-{n}"})
            tx.create("incident", {"short_description": f"ok-{n}"})
            tx.create("incident", {"short_description": f"{'bad' if n % 2 else 'ok'}-{n}-b"})
            result = tx.commit()
            with lock:
                results.append(result)

        store.fail_when("create", lambda table, rid, data: data["short_description"].startswith("bad"))
        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(results) == 8
        assert sum(r.success for r in results) == 4
        assert store.count("incident") == 8  # two records from each of four winners

        stats = coordinator.get_stats()
        assert stats.total == 8
        assert stats.completed == 4
        assert stats.rolled_back == 4
        assert stats.active == 0


class TestServiceNowEndToEnd:
    """Transactions against the Table API."""

    @pytest.fixture
    def api(self):
        return FakeTableAPI()

    @pytest.fixture
    def snc_store(self, api):
        with ServiceNowRecordStore(
            "https://dev1234.service-now.com",
            token="t",
            transport=httpx.MockTransport(api),
        ) as store:
            yield store

    def test_commit(self, coordinator, api, snc_store):
        """Test a successful commit leaves every record in place."""
        tx = coordinator.begin(snc_store)
        tx.create("incident", {"short_description": "A"})
        tx.create("incident", {"short_description": "B"})
        result = tx.commit()

        assert result.success is True
        assert len(api.tables["incident"]) == 2

    def test_rejected_create_rolls_back(self, coordinator, api, snc_store):
        """Test a 403 on the second create deletes the first record."""
        api.reject_create.add("B")

        tx = coordinator.begin(snc_store)
        tx.create("incident", {"short_description": "A"})
        op_b = tx.create("incident", {"short_description": "B"})
        result = tx.commit()

        assert result.success is False
        assert result.failed_operation_id == op_b
        assert "ACL rejected create" in result.errors[0].error
        assert result.rollback_succeeded is True
        assert api.tables["incident"] == {}

    def test_update_restored(self, coordinator, api, snc_store):
        """Test an update is reverted with the captured snapshot."""
        original = snc_store.create("problem", {"short_description": "Outage", "state": "1"})
        snapshot = snc_store.get("problem", original["sys_id"])
        api.reject_create.add("never")

        tx = coordinator.begin(snc_store)
        tx.update("problem", original["sys_id"], {"state": "3"}, prior_snapshot=snapshot)
        tx.create("incident", {"short_description": "never"})
        result = tx.commit()

        assert result.rollback_succeeded is True
        assert api.tables["problem"][original["sys_id"]]["state"] == "1"

    def test_delete_of_missing_record_fails(self, coordinator, api, snc_store):
        """Test deleting a record that is already gone fails the commit."""
        tx = coordinator.begin(snc_store)
        tx.create("incident", {"short_description": "A"})
        op = tx.delete("incident", "does-not-exist", prior_snapshot={"short_description": "x"})
        result = tx.commit()

        assert result.success is False
        assert result.failed_operation_id == op
        assert api.tables["incident"] == {}


def test_default_options_flow_from_coordinator(store):
    """Test per-transaction options override coordinator defaults."""
    coord = TransactionCoordinator(defaults=TransactionOptions(timeout=None, max_retries=5))
    try:
        tx = coord.begin(store, {"name": "import", "max_retries": 0})
        assert tx.options.name == "import"
        assert tx.options.max_retries == 0
        assert tx.options.timeout is None
    finally:
        coord.shutdown()
