"""Plain-SQL migrations applied on startup."""
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import asyncpg  # type: ignore[import-untyped]
import structlog
from aiohttp import web

from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

CONNECT_ATTEMPTS = 5
CONNECT_RETRY_DELAY_SECONDS = 2


def load_migrations(migrations_dir: Path) -> dict[str, tuple[str, str]]:
    """``version -> (sql, checksum)`` for every ``*.sql`` file, in name order."""
    migrations: dict[str, tuple[str, str]] = {}
    for path in sorted(migrations_dir.glob("*.sql")):
        sql = path.read_text(encoding="utf-8")
        migrations[path.stem] = (sql, hashlib.sha256(sql.encode("utf-8")).hexdigest())
    return migrations


async def _connect(database_url: str) -> asyncpg.Connection | None:
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            return await asyncpg.connect(database_url)
        except (OSError, asyncpg.PostgresError) as exc:
            logger.warning(
                "migrations_connect_failed",
                attempt=attempt,
                max_attempts=CONNECT_ATTEMPTS,
                error=str(exc),
            )
            if attempt < CONNECT_ATTEMPTS:
                await asyncio.sleep(CONNECT_RETRY_DELAY_SECONDS)
    return None


async def apply_migrations(conn: asyncpg.Connection, migrations: dict[str, tuple[str, str]]) -> int:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    applied = {row["version"]: row["checksum"] for row in rows}

    count = 0
    for version, (sql, checksum) in migrations.items():
        if version in applied:
            if applied[version] != checksum:
                raise RuntimeError(
                    f"Checksum mismatch for {version}: "
                    f"{applied[version]} (db) != {checksum} (file)"
                )
            continue
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                version,
                checksum,
            )
        logger.info("migration_applied", version=version)
        count += 1
    return count


def create_migration_runner(
    possible_paths: Iterable[Path],
) -> Callable[[web.Application], Awaitable[None]]:
    """aiohttp startup hook applying pending migrations from the first existing directory."""
    paths = list(possible_paths)

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        migrations_dir = next((path for path in paths if path.exists()), None)
        if migrations_dir is None:
            logger.warning("migrations_dir_not_found", tried=[str(p) for p in paths])
            return
        migrations = load_migrations(migrations_dir)
        if not migrations:
            return
        conn = await _connect(str(settings.database_url))
        if conn is None:
            logger.error("migrations_skipped", reason="database unreachable")
            return
        try:
            count = await apply_migrations(conn, migrations)
        finally:
            await conn.close()
        logger.info("migrations_done", applied=count, known=len(migrations))

    return apply_migrations_on_startup
