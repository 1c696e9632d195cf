"""
Versioned schema migrations.

Scripts live in `api/migrations/` and are named `<version>_<description>.sql`,
where the version is a numeric timestamp such as `20250611000000`. Applied
scripts are recorded in `_migrations` together with a checksum of their text.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .db import Database
from .errors import MigrationError

logger = logging.getLogger(__name__)

_FILENAME_RE = re.compile(r"^(?P<version>\d+)_(?P<description>[A-Za-z0-9_\-]+)\.sql$")

_CREATE_BOOKKEEPING_SQL = """
CREATE TABLE IF NOT EXISTS _migrations (
  version BIGINT PRIMARY KEY,
  description TEXT NOT NULL,
  checksum TEXT NOT NULL,
  applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_SELECT_APPLIED_SQL = """
SELECT version, description, checksum, applied_at
FROM _migrations
ORDER BY version
"""

_INSERT_APPLIED_SQL = """
INSERT INTO _migrations (version, description, checksum)
VALUES ($1, $2, $3)
"""


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()

    @property
    def label(self) -> str:
        return f"{self.version}_{self.description}"


def load_migrations(directory: Path) -> list[Migration]:
    """
    Read every `*.sql` script in `directory`, sorted by ascending version.
    """
    if not directory.is_dir():
        raise MigrationError(f"Migrations directory not found: {directory}")

    migrations: dict[int, Migration] = {}
    for path in sorted(directory.glob("*.sql")):
        match = _FILENAME_RE.match(path.name)
        if match is None:
            raise MigrationError(f"Invalid migration file name: {path.name}")

        version = int(match.group("version"))
        sql = path.read_text(encoding="utf-8")
        if not sql.strip():
            raise MigrationError(f"Migration {path.name} is empty.")
        if version in migrations:
            raise MigrationError(
                f"Duplicate migration version {version}: "
                f"{migrations[version].label} and {path.stem}"
            )
        migrations[version] = Migration(
            version=version,
            description=match.group("description"),
            sql=sql,
        )

    return [migrations[v] for v in sorted(migrations)]


def _check_applied(applied: list[dict[str, Any]], known: dict[int, Migration]) -> None:
    for row in applied:
        version = int(row["version"])
        migration = known.get(version)
        if migration is None:
            raise MigrationError(
                f"Migration {version} ({row['description']}) was applied to the database "
                "but is missing from the migrations directory."
            )
        if migration.checksum != str(row["checksum"]):
            raise MigrationError(
                f"Migration {migration.label} was modified after it was applied."
            )


async def run_migrations(database: Database, migrations: list[Migration]) -> list[Migration]:
    """
    Apply every migration not yet recorded, oldest first, one transaction each.

    Returns the migrations applied by this call (empty when up to date).
    Any failure raises `MigrationError`; the caller should treat it as fatal.
    """
    ordered = sorted(migrations, key=lambda m: m.version)
    known = {m.version: m for m in ordered}
    newly_applied: list[Migration] = []

    async with database.connection() as conn:
        try:
            await conn.execute(_CREATE_BOOKKEEPING_SQL)
            applied = [dict(r) for r in await conn.fetch(_SELECT_APPLIED_SQL)]
        except Exception as exc:
            raise MigrationError("Could not read migration history.") from exc

        _check_applied(applied, known)
        applied_versions = {int(row["version"]) for row in applied}

        for migration in ordered:
            if migration.version in applied_versions:
                continue
            try:
                async with conn.transaction():
                    await conn.execute(migration.sql)
                    await conn.execute(
                        _INSERT_APPLIED_SQL,
                        migration.version,
                        migration.description,
                        migration.checksum,
                    )
            except Exception as exc:
                logger.error("migration_failed version=%s description=%s", migration.version, migration.description)
                raise MigrationError(f"Migration {migration.label} failed: {exc}") from exc

            logger.info("migration_applied version=%s description=%s", migration.version, migration.description)
            newly_applied.append(migration)

    if not newly_applied:
        logger.info("migrations_up_to_date count=%s", len(ordered))
    return newly_applied
