"""
Tests for concurrent operations on the same table.

Threads race through the manager; the per-table lock (and, on SQL, the
partial unique index) must leave exactly one active order per table.
The shared-database tests give each thread its own SQLAlchemyStorage on one
SQLite file, the way separate worker processes would see it.
"""

import threading

import pytest

from tableorders.domain import ErrorKind, OrderStatus, TableStatus
from tableorders.manager import OrderTableManager
from tableorders.storage import SQLAlchemyStorage

ITEMS = [{"product_id": "prod_123", "quantity": 1, "price": 10.00}]


def _run_concurrently(target, args_list):
    """Start one thread per args tuple behind a barrier; collect results and errors."""
    barrier = threading.Barrier(len(args_list))
    results = []
    errors = []
    lock = threading.Lock()

    def worker(*args):
        try:
            barrier.wait()
            outcome = target(*args)
            with lock:
                results.append(outcome)
        except Exception as exc:
            with lock:
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=args) for args in args_list]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return results, errors


class TestConcurrentCreateOrder:
    """Two staff members submit an order for the same table at once."""

    def test_exactly_one_order_wins(self, manager, storage):
        def submit(staff_id):
            return manager.create_order(
                {"items": ITEMS, "table_id": "table_789", "staff_user_id": staff_id}
            )

        results, errors = _run_concurrently(submit, [("staff_a",), ("staff_b",)])

        assert not errors, f"Concurrent create raised {len(errors)} errors"
        assert sorted(r.success for r in results) == [False, True]
        loser = next(r for r in results if not r.success)
        assert loser.kind == ErrorKind.CONFLICT
        assert len(storage.get_orders("table_789", active_only=True)) == 1
        assert storage.get_table("table_789").status == TableStatus.OCUPADA

    def test_many_threads_one_order(self, memory_storage):
        manager = OrderTableManager(memory_storage)
        num_threads = 8

        def submit(i):
            return manager.create_order(
                {"items": ITEMS, "table_id": "table_789", "staff_user_id": f"staff_{i}"}
            )

        results, errors = _run_concurrently(submit, [(i,) for i in range(num_threads)])

        assert not errors
        assert sum(1 for r in results if r.success) == 1
        assert all(r.kind == ErrorKind.CONFLICT for r in results if not r.success)
        assert len(memory_storage.get_orders("table_789")) == 1

    def test_different_tables_do_not_block_each_other(self, memory_storage):
        manager = OrderTableManager(memory_storage)

        def submit(table_id):
            return manager.create_order(
                {"items": ITEMS, "table_id": table_id, "staff_user_id": "staff_a"}
            )

        results, errors = _run_concurrently(
            submit, [("table_789",), ("table_101",), ("table_102",)]
        )

        assert not errors
        assert all(r.success for r in results)
        assert all(t.status == TableStatus.OCUPADA for t in memory_storage.list_tables())


class TestConcurrentCloseOrder:
    def test_add_products_racing_cancel(self, manager, storage):
        order = manager.create_order(
            {"items": ITEMS, "table_id": "table_789", "staff_user_id": "staff_a"}
        ).data

        def add():
            return manager.add_products_to_order("table_789", ITEMS)

        def cancel():
            return manager.cancel_order(order.id)

        results, errors = _run_concurrently(lambda fn: fn(), [(add,), (cancel,)])

        assert not errors
        final = storage.get_order(order.id)
        assert final.status == OrderStatus.CANCELADO
        assert final.total == final.compute_total()
        assert storage.get_table("table_789").status == TableStatus.LIVRE

    def test_double_cancel_one_conflict(self, manager, storage):
        order = manager.create_order(
            {"items": ITEMS, "table_id": "table_789", "staff_user_id": "staff_a"}
        ).data

        results, errors = _run_concurrently(manager.cancel_order, [(order.id,), (order.id,)])

        assert not errors
        assert sorted(r.success for r in results) == [False, True]
        assert next(r for r in results if not r.success).kind == ErrorKind.CONFLICT

    def test_double_payment_one_conflict(self, manager, storage):
        order = manager.create_order(
            {"items": ITEMS, "table_id": "table_789", "staff_user_id": "staff_a"}
        ).data

        results, errors = _run_concurrently(
            manager.process_payment, [(order.id, "PIX"), (order.id, "DINHEIRO")]
        )

        assert not errors
        assert sorted(r.success for r in results) == [False, True]
        assert storage.get_order(order.id).is_paid is True


@pytest.fixture
def shared_managers(sqlite_storage):
    """Two managers, each with its own storage instance on the same database file."""
    other = SQLAlchemyStorage(sqlite_storage.database_url, use_alembic=False)
    yield OrderTableManager(sqlite_storage), OrderTableManager(other)
    other.close()


class TestSharedDatabase:
    """Per-process locks are not shared; the storage transaction must decide."""

    ROUNDS = 10

    def _open_order(self, manager):
        result = manager.create_order(
            {"items": ITEMS, "table_id": "table_789", "staff_user_id": "staff_a"}
        )
        assert result.success, result.error
        return result.data

    def test_double_cancel_across_storages(self, shared_managers):
        manager_a, manager_b = shared_managers
        for _ in range(self.ROUNDS):
            order = self._open_order(manager_a)

            results, errors = _run_concurrently(
                lambda manager: manager.cancel_order(order.id), [(manager_a,), (manager_b,)]
            )

            assert not errors
            assert sorted(r.success for r in results) == [False, True]
            assert next(r for r in results if not r.success).kind == ErrorKind.CONFLICT

    def test_double_payment_across_storages(self, shared_managers):
        manager_a, manager_b = shared_managers
        for _ in range(self.ROUNDS):
            order = self._open_order(manager_a)

            results, errors = _run_concurrently(
                lambda manager, method: manager.process_payment(order.id, method),
                [(manager_a, "PIX"), (manager_b, "DINHEIRO")],
            )

            assert not errors
            assert sorted(r.success for r in results) == [False, True]
            assert next(r for r in results if not r.success).error == "pedido já foi pago"
            assert manager_a.mark_as_received(order.id).success

    def test_add_products_racing_cancel_across_storages(self, shared_managers, sqlite_storage):
        manager_a, manager_b = shared_managers
        for _ in range(self.ROUNDS):
            order = self._open_order(manager_a)

            results, errors = _run_concurrently(
                lambda fn: fn(),
                [
                    (lambda: manager_a.add_products_to_order("table_789", ITEMS),),
                    (lambda: manager_b.cancel_order(order.id),),
                ],
            )

            assert not errors
            final = sqlite_storage.get_order(order.id)
            assert final.status == OrderStatus.CANCELADO
            assert final.total == final.compute_total()
            assert sqlite_storage.get_table("table_789").status == TableStatus.LIVRE
