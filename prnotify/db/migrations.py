"""Database migration utilities."""

from pathlib import Path

from asyncpg import Pool

from prnotify.core.logging import get_logger

logger = get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent.parent / "migrations"


async def run_migrations(pool: Pool, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """
    Apply pending migrations in file-name order.

    Applied migrations are recorded in schema_migrations so re-running is a no-op.

    Returns:
        Names of the migrations applied by this call
    """
    migration_files = sorted(migrations_dir.glob("*.sql"), key=lambda f: f.name)
    if not migration_files:
        logger.warning("No migration files found", path=str(migrations_dir))
        return []

    applied: list[str] = []
    async with pool.acquire() as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                name TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        done = {row["name"] for row in await conn.fetch("SELECT name FROM schema_migrations")}

        for migration_file in migration_files:
            if migration_file.name in done:
                continue
            logger.info("Running migration", migration=migration_file.name)
            try:
                async with conn.transaction():
                    await conn.execute(migration_file.read_text())
                    await conn.execute(
                        "INSERT INTO schema_migrations (name) VALUES ($1)", migration_file.name
                    )
            except Exception as e:
                logger.error("Migration failed", migration=migration_file.name, error=str(e))
                raise
            applied.append(migration_file.name)
            logger.info("Migration completed", migration=migration_file.name)

    return applied
