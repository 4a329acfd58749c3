import os
import sys
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

# Add project directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tableorders.domain import Order, OrderItem, Table
from tableorders.main import create_app
from tableorders.manager import OrderTableManager
from tableorders.storage import InMemoryStorage, SQLAlchemyStorage

SEED_TABLES = [
    {"id": "table_789", "number": 7},
    {"id": "table_101", "number": 1},
    {"id": "table_102", "number": 2},
]


def _seed(storage):
    for entry in SEED_TABLES:
        storage.save_table(Table(id=entry["id"], number=entry["number"], capacity=4))
    return storage


@pytest.fixture
def memory_storage():
    """Fresh in-memory storage with the seed tables."""
    return _seed(InMemoryStorage())


@pytest.fixture
def sqlite_storage(tmp_path):
    """SQLAlchemy storage on a temporary SQLite file with the seed tables."""
    storage = SQLAlchemyStorage(f"sqlite:///{tmp_path / 'tableorders_test.db'}", use_alembic=False)
    yield _seed(storage)
    storage.close()


@pytest.fixture(params=["inmemory", "sqlite"])
def storage(request):
    """Runs the test once per storage backend."""
    return request.getfixturevalue(f"{'memory' if request.param == 'inmemory' else 'sqlite'}_storage")


@pytest.fixture
def manager(storage):
    return OrderTableManager(storage)


@pytest.fixture
def sample_items():
    """Staff flow items: 2 x 15.50 + 1 x 8.00 = 39.00."""
    return [
        {"product_id": "prod_123", "quantity": 2, "price": 15.50},
        {"product_id": "prod_456", "quantity": 1, "price": 8.00},
    ]


@pytest.fixture
def order_factory():
    """Build an Order record directly, bypassing the manager."""
    def build(table_id="table_789", staff_user_id="staff_user_123", items=(("prod_123", 2, "15.50"),)):
        order_id = str(uuid4())
        now = datetime(2026, 10, 19, 12, 30)
        return Order(
            id=order_id,
            table_id=table_id,
            staff_user_id=staff_user_id,
            items=[
                OrderItem(
                    id=str(uuid4()),
                    order_id=order_id,
                    product_id=product_id,
                    quantity=quantity,
                    price=Decimal(price),
                )
                for product_id, quantity, price in items
            ],
            created_at=now,
            updated_at=now,
        )
    return build


@pytest_asyncio.fixture
async def async_client(memory_storage):
    """Async HTTP client against an app bound to seeded in-memory storage."""
    app = create_app(storage=memory_storage)
    async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
