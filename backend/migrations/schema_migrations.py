"""
Auto-migration system for schema changes.

Runs on every startup: creates missing tables, adds columns that were added
to the models after a table was created (PostgreSQL only), then applies the
small data fixes below. Every step is safe to run multiple times.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports when running standalone
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from database import engine, Base
import models  # noqa: F401  registers every table on Base.metadata

logger = logging.getLogger(__name__)


async def get_table_columns(engine: AsyncEngine, table_name: str) -> set:
    """Get all column names for a table from the database."""
    async with engine.connect() as conn:
        if engine.dialect.name == "sqlite":
            result = await conn.execute(text(f"PRAGMA table_info({table_name})"))
            return {row[1] for row in result}
        result = await conn.execute(
            text("SELECT column_name FROM information_schema.columns WHERE table_name = :table"),
            {"table": table_name}
        )
        return {row[0] for row in result}


def _default_clause(col) -> str:
    if col.default is None or not hasattr(col.default, "arg") or callable(col.default.arg):
        # Python-side callables (datetime.utcnow, dict factories) have no SQL equivalent
        return ""
    value = col.default.arg
    if isinstance(value, bool):
        return f"DEFAULT {str(value).upper()}"
    if isinstance(value, (int, float)):
        return f"DEFAULT {value}"
    if isinstance(value, str):
        return f"DEFAULT '{value}'"
    if hasattr(value, "name"):
        # Enum members are stored by name
        return f"DEFAULT '{value.name}'"
    return ""


async def add_missing_columns(engine: AsyncEngine):
    """
    Compare every model table with the database and add missing columns.
    SQLite databases are development/test only and are simply recreated.
    """
    if engine.dialect.name == "sqlite":
        logger.info("ℹ️ Skipping column detection for SQLite. create_all handles table creation.")
        return

    logger.info("🔍 Checking for missing database columns...")
    changes_made = False

    for table_name, table in Base.metadata.tables.items():
        db_columns = await get_table_columns(engine, table_name)
        if not db_columns:
            continue

        missing_columns = {col.name for col in table.columns} - db_columns
        if not missing_columns:
            logger.debug(f"✅ Table '{table_name}' schema is up to date")
            continue

        logger.info(f"📝 Table '{table_name}' is missing columns: {missing_columns}")
        async with engine.begin() as conn:
            for col_name in sorted(missing_columns):
                col = table.columns[col_name]
                col_type = col.type.compile(engine.dialect)
                default_clause = _default_clause(col)
                # NOT NULL without a default would fail on existing rows
                nullable = "NOT NULL" if not col.nullable and default_clause else "NULL"
                try:
                    await conn.execute(text(
                        f"ALTER TABLE {table_name} ADD COLUMN IF NOT EXISTS {col_name} {col_type} {nullable} {default_clause}"
                    ))
                    logger.info(f"✅ Added column {table_name}.{col_name}")
                    changes_made = True
                except Exception as e:
                    logger.error(f"❌ Failed to add column {table_name}.{col_name}: {e}")
                    raise

    if changes_made:
        logger.info("✅ Schema migration completed - columns added")
    else:
        logger.info("✅ Schema is up to date - no changes needed")


async def normalize_warranty_status(engine: AsyncEngine):
    """
    Expiry is derived from warranty_expiry, so rows that were stored as
    EXPIRED by older versions go back to ACTIVE. Claimed rows are untouched.
    """
    async with engine.begin() as conn:
        result = await conn.execute(text(
            "UPDATE warranties SET status = 'ACTIVE' WHERE status = 'EXPIRED'"
        ))
        if result.rowcount:
            logger.info(f"✅ Reset {result.rowcount} stored EXPIRED warranties to ACTIVE")


async def backfill_product_model(engine: AsyncEngine):
    """Empty model is stored as '' so the (brand, name, model) unique key also covers it."""
    async with engine.begin() as conn:
        result = await conn.execute(text("UPDATE products SET model = '' WHERE model IS NULL"))
        if result.rowcount:
            logger.info(f"✅ Backfilled model on {result.rowcount} products")


async def run_migrations():
    """
    Main migration entry point.
    1. Creates missing tables (via create_all)
    2. Adds missing columns to existing tables
    3. Data fixes for rows written by older versions
    """
    logger.info("=" * 60)
    logger.info("Starting database schema migration...")
    logger.info("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ All tables exist")

    await add_missing_columns(engine)
    await normalize_warranty_status(engine)
    await backfill_product_model(engine)

    logger.info("=" * 60)
    logger.info("Database schema migration completed!")
    logger.info("=" * 60)


if __name__ == "__main__":
    # Allow running migrations standalone
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_migrations())
