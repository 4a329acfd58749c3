"""
Tests for SQLAlchemyStorage on SQLite.

Covers persistence across storage instances, money stored as cents and the
partial unique index that allows one active order per table.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from tableorders.db.models import ACTIVE_ORDER_INDEX, OrderModel, from_cents, to_cents
from tableorders.domain import TERMINAL_ORDER_STATUSES, OrderStatus, Table, TableStatus
from tableorders.storage import ActiveOrderExists, SQLAlchemyStorage


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'persist.db'}"


class TestCents:
    def test_to_cents(self):
        assert to_cents(Decimal("15.50")) == 1550
        assert to_cents(Decimal("0.005")) == 1

    def test_from_cents(self):
        assert from_cents(3900) == Decimal("39.00")
        assert from_cents(None) == Decimal("0.00")


class TestSQLAlchemyPersistence:
    """Data survives a new storage instance on the same file."""

    def test_order_survives_restart(self, db_url, order_factory):
        storage = SQLAlchemyStorage(db_url, use_alembic=False)
        storage.save_table(Table(id="table_789", number=7))
        created = storage.create_order(order_factory())
        storage.close()

        reopened = SQLAlchemyStorage(db_url, use_alembic=False)
        try:
            order = reopened.get_order(created.id)
            assert order.total == Decimal("31.00")
            assert order.items[0].quantity == 2
            assert reopened.get_table("table_789").status == TableStatus.OCUPADA
        finally:
            reopened.close()

    def test_schema_has_active_order_index(self, sqlite_storage):
        indexes = {ix["name"] for ix in inspect(sqlite_storage.engine).get_indexes("orders")}
        assert ACTIVE_ORDER_INDEX in indexes

    def test_active_order_index_excludes_every_terminal_status(self):
        index = next(ix for ix in OrderModel.__table__.indexes if ix.name == ACTIVE_ORDER_INDEX)
        for dialect in ("sqlite", "postgresql"):
            predicate = str(index.dialect_options[dialect]["where"])
            assert predicate.startswith("status NOT IN")
            for status in TERMINAL_ORDER_STATUSES:
                assert f"'{status.value}'" in predicate
            for status in OrderStatus:
                if not status.is_terminal:
                    assert status.value not in predicate

    def test_customizations_stored_as_json(self, sqlite_storage, order_factory):
        order = order_factory()
        order.items[0].customizations = {"sem": ["cebola"], "ponto": "mal passado"}
        created = sqlite_storage.create_order(order)

        loaded = sqlite_storage.get_order(created.id)
        assert loaded.items[0].customizations == {"sem": ["cebola"], "ponto": "mal passado"}


class TestActiveOrderIndex:
    """The database itself refuses a second active order for a table."""

    def test_raw_insert_violates_index(self, sqlite_storage, order_factory):
        sqlite_storage.create_order(order_factory())

        session = sqlite_storage._get_session()
        try:
            now = datetime(2026, 10, 19, 14, 0)
            session.add(OrderModel(
                id="raw-order",
                table_id="table_789",
                staff_user_id="staff_x",
                status=OrderStatus.PENDENTE.value,
                total=0,
                is_paid=False,
                created_at=now,
                updated_at=now,
            ))
            with pytest.raises(IntegrityError):
                session.commit()
            session.rollback()
        finally:
            session.close()

    def test_terminal_orders_do_not_count(self, sqlite_storage, order_factory):
        first = sqlite_storage.create_order(order_factory())
        sqlite_storage.close_order(first.id, OrderStatus.CANCELADO, datetime(2026, 10, 19, 13, 0))
        sqlite_storage.create_order(order_factory())
        assert len(sqlite_storage.get_orders("table_789")) == 2

    def test_index_violation_maps_to_active_order_exists(self, sqlite_storage, order_factory, monkeypatch):
        """Another process may insert between the check and the write; the index still catches it."""
        sqlite_storage.create_order(order_factory())
        monkeypatch.setattr(sqlite_storage, "_count_active", lambda *args, **kwargs: 0)

        with pytest.raises(ActiveOrderExists):
            sqlite_storage.create_order(order_factory())
        assert len(sqlite_storage.get_orders("table_789", active_only=True)) == 1

    def test_create_order_on_missing_table(self, sqlite_storage, order_factory):
        with pytest.raises(LookupError):
            sqlite_storage.create_order(order_factory(table_id="ghost"))
