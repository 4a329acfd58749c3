"""
Unit tests for InMemoryStorage implementation.

These tests verify InMemoryStorage-specific behavior: record isolation and
per-instance state.
"""

import threading
import time
from decimal import Decimal

from tableorders.domain import Table, TableStatus
from tableorders.storage import InMemoryStorage


class TestInMemoryStorageIsolation:
    """Records handed out must not alias stored state."""

    def test_mutating_returned_table_does_not_leak(self, memory_storage):
        table = memory_storage.get_table("table_789")
        table.status = TableStatus.OCUPADA
        assert memory_storage.get_table("table_789").status == TableStatus.LIVRE

    def test_mutating_saved_table_does_not_leak(self):
        storage = InMemoryStorage()
        table = Table(id="t1", number=1)
        storage.save_table(table)
        table.capacity = 99
        assert storage.get_table("t1").capacity == 4

    def test_mutating_returned_order_does_not_leak(self, memory_storage, order_factory):
        order = memory_storage.create_order(order_factory())
        order.items.clear()
        order.total = Decimal("0.00")

        stored = memory_storage.get_order(order.id)
        assert len(stored.items) == 1
        assert stored.total == Decimal("31.00")

    def test_separate_instances_separate_state(self):
        s1 = InMemoryStorage()
        s2 = InMemoryStorage()
        s1.save_table(Table(id="a", number=1))
        assert s2.get_table("a") is None
        assert s2.list_tables() == []


class TestInMemoryTableLock:
    """table_lock hands out one re-entrant lock per key and drops it when unused."""

    def test_lock_is_reentrant(self, memory_storage):
        with memory_storage.table_lock("table_789"):
            with memory_storage.table_lock("table_789"):
                assert memory_storage.get_table("table_789") is not None

    def test_locks_are_per_key(self, memory_storage):
        with memory_storage.table_lock("table_789"):
            with memory_storage.table_lock("table_101"):
                assert set(memory_storage._locks) == {"table_789", "table_101"}
        assert memory_storage._locks == {}

    def test_reentrant_lock_kept_until_outermost_release(self, memory_storage):
        with memory_storage.table_lock("table_789"):
            with memory_storage.table_lock("table_789"):
                assert memory_storage._lock_users["table_789"] == 2
            assert "table_789" in memory_storage._locks
        assert "table_789" not in memory_storage._locks

    def test_lock_still_excludes_after_release(self, memory_storage):
        """Threads that take the lock one after another keep read-modify-write exact."""
        counter = {"value": 0}

        def bump():
            for _ in range(200):
                with memory_storage.table_lock("table_789"):
                    current = counter["value"]
                    time.sleep(0)
                    counter["value"] = current + 1

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert counter["value"] == 800
        assert memory_storage._locks == {}
