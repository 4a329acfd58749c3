"""Database models and migrations for tableorders."""

import logging
import os
from typing import Optional, Any

from sqlalchemy.engine import Engine

from tableorders.db.models import Base

logger = logging.getLogger(__name__)

PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def init_db(engine: Engine, use_alembic: bool = True, base: Optional[Any] = None) -> None:
    """
    Initialize database schema using Alembic or create_all fallback.

    Args:
        engine: SQLAlchemy engine instance
        use_alembic: If True, run Alembic migrations; else use Base.metadata.create_all()
        base: SQLAlchemy declarative base to use. If None, uses tableorders.db.models.Base.

    Raises:
        RuntimeError: If Alembic migration fails or alembic.ini is not found
    """
    if base is None:
        base = Base

    if use_alembic:
        try:
            from alembic.config import Config
            from alembic import command
        except ImportError:
            raise RuntimeError("Alembic not installed. Install with: pip install alembic")

        alembic_ini = os.path.join(PROJECT_DIR, "alembic.ini")
        if not os.path.exists(alembic_ini):
            raise RuntimeError(f"alembic.ini not found at {alembic_ini}")

        config = Config(alembic_ini)
        config.set_main_option("script_location", os.path.join(PROJECT_DIR, "alembic"))
        try:
            with engine.begin() as connection:
                config.attributes["connection"] = connection
                command.upgrade(config, "head")
        except Exception as e:
            raise RuntimeError(f"Alembic migration failed: {e}")
        logger.info("Alembic migrations applied to %s", engine.url)
    else:
        # Create only missing tables, existing data is preserved
        try:
            base.metadata.create_all(engine)
        except Exception as e:
            raise RuntimeError(f"Failed to create database tables: {e}")
        logger.info("Schema synchronized for %s", engine.url)


__all__ = ["Base", "init_db"]
