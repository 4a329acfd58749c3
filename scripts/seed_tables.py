"""
Seed restaurant tables from a JSON file into the database.

Seeding is idempotent:
- New tables are created LIVRE
- Existing tables get number/capacity updated; status and assignment are kept

Usage:
    python -m scripts.seed_tables [--tables-file path/to/tables.json] [--database-url URL]

Environment:
    APP_DATABASE_URL: Database connection (default: sqlite:///tableorders.db)
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List

from tableorders.domain import Table
from tableorders.storage import SQLAlchemyStorage, Storage

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_TABLES_FILE = os.path.join("data", "tables.json")


def load_tables_json(tables_file: str) -> List[Dict[str, Any]]:
    """
    Load table definitions from a JSON file.

    Expected format: [{"id": "table_789", "number": 7, "capacity": 4}, ...]
    """
    if not os.path.exists(tables_file):
        raise FileNotFoundError(f"Tables file not found: {tables_file}")

    with open(tables_file, 'r', encoding='utf-8') as f:
        tables = json.load(f)

    if not isinstance(tables, list):
        raise ValueError("Tables file must contain a JSON list")

    logger.info(f"Loaded {len(tables)} tables from {tables_file}")
    return tables


def seed_tables(storage: Storage, entries: List[Dict[str, Any]]) -> Dict[str, int]:
    """
    Upsert tables into storage.

    Returns:
        {"created": n, "updated": n}
    """
    stats = {"created": 0, "updated": 0}
    for entry in entries:
        existing = storage.get_table(entry["id"])
        if existing is None:
            storage.save_table(
                Table(
                    id=entry["id"],
                    number=entry["number"],
                    capacity=entry.get("capacity", 4),
                )
            )
            stats["created"] += 1
        else:
            existing.number = entry["number"]
            existing.capacity = entry.get("capacity", existing.capacity)
            storage.save_table(existing)
            stats["updated"] += 1

    logger.info(f"Seeded tables: {stats['created']} created, {stats['updated']} updated")
    return stats


def main():
    """Command-line interface for table seeding."""
    parser = argparse.ArgumentParser(
        description="Seed restaurant tables from a JSON file idempotently"
    )
    parser.add_argument(
        '--tables-file',
        help=f'Path to tables JSON (default: {DEFAULT_TABLES_FILE})',
        default=DEFAULT_TABLES_FILE
    )
    parser.add_argument(
        '--database-url',
        help='Database URL (default: env var APP_DATABASE_URL or sqlite:///tableorders.db)',
        default=None
    )
    args = parser.parse_args()

    try:
        entries = load_tables_json(args.tables_file)
    except Exception as e:
        logger.error(f"Failed to load tables: {e}")
        return 1

    db_url = args.database_url or os.getenv('APP_DATABASE_URL', 'sqlite:///tableorders.db')
    logger.info(f"Using database: {db_url}")

    storage = SQLAlchemyStorage(db_url, use_alembic=False)
    try:
        seed_tables(storage, entries)
        return 0
    except Exception as e:
        logger.error(f"Seeding failed: {e}", exc_info=True)
        return 1
    finally:
        storage.close()


if __name__ == '__main__':
    sys.exit(main())
