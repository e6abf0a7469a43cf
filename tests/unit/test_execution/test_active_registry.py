"""
Unit tests for ActiveExecutionRegistry
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from flowrunner.core.execution.cancellation import CancellationToken
from flowrunner.core.execution.registry import ActiveExecutionRegistry, get_active_registry
from flowrunner.schemas.execution import ExecutionRecord


class TestRegistration:
    """Test register / unregister"""

    def test_register_and_get(self):
        registry = ActiveExecutionRegistry()
        token = CancellationToken()
        record = ExecutionRecord(id="exec-1", workflow_id="wf-1")

        entry = registry.register("exec-1", token, record=record)

        assert registry.get("exec-1") is entry
        assert entry.cancel is token
        assert entry.workflow_id == "wf-1"
        assert "exec-1" in registry
        assert len(registry) == 1

    def test_duplicate_registration_rejected(self):
        registry = ActiveExecutionRegistry()
        registry.register("exec-1", CancellationToken())

        with pytest.raises(ValueError, match="already registered"):
            registry.register("exec-1", CancellationToken())

    def test_unregister(self):
        registry = ActiveExecutionRegistry()
        registry.register("exec-1", CancellationToken())

        assert registry.unregister("exec-1") is not None
        assert registry.unregister("exec-1") is None
        assert registry.get("exec-1") is None
        assert len(registry) == 0


class TestListing:
    """Test listing entries"""

    def test_list_filters_by_workflow(self):
        registry = ActiveExecutionRegistry()
        registry.register("exec-1", CancellationToken(), workflow_id="wf-1")
        registry.register("exec-2", CancellationToken(), workflow_id="wf-2")
        registry.register("exec-3", CancellationToken(), workflow_id="wf-1")

        assert registry.list_ids() == ["exec-1", "exec-2", "exec-3"]
        assert [entry.execution_id for entry in registry.list_entries("wf-1")] == ["exec-1", "exec-3"]

    def test_process_wide_registry_is_shared(self):
        assert get_active_registry() is get_active_registry()


class TestConcurrentAccess:
    """Test the registry used from several threads at once"""

    def test_register_get_unregister_under_contention(self):
        registry = ActiveExecutionRegistry()
        workers, per_worker = 8, 200
        barrier = threading.Barrier(workers)

        def worker(worker_id):
            barrier.wait()
            kept = []
            for n in range(per_worker):
                execution_id = f"exec-{worker_id}-{n}"
                entry = registry.register(execution_id, CancellationToken(), workflow_id=f"wf-{worker_id}")
                assert registry.get(execution_id) is entry
                if n % 2:
                    assert registry.unregister(execution_id) is entry
                else:
                    kept.append(execution_id)
            return kept

        with ThreadPoolExecutor(max_workers=workers) as pool:
            kept = [execution_id for ids in pool.map(worker, range(workers)) for execution_id in ids]

        assert len(registry) == workers * per_worker // 2
        assert sorted(registry.list_ids()) == sorted(kept)
        assert len(registry.list_entries("wf-3")) == per_worker // 2

    def test_duplicate_registration_race_has_one_winner(self):
        registry = ActiveExecutionRegistry()
        workers = 16
        barrier = threading.Barrier(workers)

        def attempt(_):
            barrier.wait()
            try:
                registry.register("exec-shared", CancellationToken())
                return True
            except ValueError:
                return False

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(attempt, range(workers)))

        assert results.count(True) == 1
        assert registry.list_ids() == ["exec-shared"]
