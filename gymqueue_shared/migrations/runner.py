"""Migration runner with a tracking table.

Migrations are plain SQL files in ``versions/`` named ``NNN_description.sql``.
Applied versions are recorded in ``schema_migrations`` and never re-applied.
Several API processes may start at once, so the whole run holds an advisory
lock.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

_MIGRATION_LOCK_KEY = 7301_0001


class MigrationRunner:
    """Execute and track database migrations."""

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, migrations_dir: Path | None = None) -> None:
        self.pool = pool
        self.migrations_dir = migrations_dir or VERSIONS_DIR

    def discover(self) -> list[Path]:
        """SQL files sorted by filename (the NNN_ prefix gives the order)."""
        return sorted(self.migrations_dir.glob("*.sql"))

    async def run_pending(self) -> list[str]:
        """Apply all pending migrations in order. Returns the newly-applied versions."""
        sql_files = self.discover()
        if not sql_files:
            logger.info("No migration files found in %s", self.migrations_dir)
            return []

        newly_applied: list[str] = []
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock($1)", _MIGRATION_LOCK_KEY)
            try:
                await self._ensure_table(conn)
                rows = await conn.fetch(f"SELECT version FROM {self.TRACKING_TABLE}")  # noqa: S608
                applied = {row["version"] for row in rows}

                for sql_path in sql_files:
                    version = sql_path.stem
                    if version in applied:
                        logger.debug("Migration %s already applied, skipping", version)
                        continue
                    await self._apply_one(conn, version, sql_path)
                    newly_applied.append(version)
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", _MIGRATION_LOCK_KEY)

        if newly_applied:
            logger.info(
                "Applied %d migration(s): %s", len(newly_applied), ", ".join(newly_applied)
            )
        else:
            logger.info("Database is up to date, no pending migrations")
        return newly_applied

    async def _ensure_table(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                version    TEXT PRIMARY KEY,
                name       TEXT NOT NULL,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
            """
        )

    async def _apply_one(self, conn: asyncpg.Connection, version: str, sql_path: Path) -> None:
        """Execute one migration file inside a transaction."""
        logger.info("Applying migration: %s", version)
        sql = sql_path.read_text(encoding="utf-8")
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                f"INSERT INTO {self.TRACKING_TABLE} (version, name) VALUES ($1, $2)",
                version,
                sql_path.name,
            )
        logger.info("Migration %s applied successfully", version)


async def _run_from_settings() -> list[str]:
    from gymqueue_api.core.config import get_settings
    from gymqueue_api.core.logging import setup_logging
    from gymqueue_shared.database import DatabaseManager, PoolConfig

    settings = get_settings()
    setup_logging(settings)
    db_manager = DatabaseManager(
        settings.database_url, PoolConfig.for_role("migrate", ssl=settings.database_ssl)
    )
    await db_manager.connect()
    try:
        return await MigrationRunner(db_manager.pool).run_pending()
    finally:
        await db_manager.disconnect()


def main() -> None:
    """Console entry point: apply pending migrations and exit."""
    asyncio.run(_run_from_settings())


if __name__ == "__main__":
    main()
