"""Apply ``db/schema.sql`` to PostgreSQL once per schema revision."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

LOGGER = logging.getLogger(__name__)

_SCHEMA_VERSIONS_SQL = (
    "CREATE TABLE IF NOT EXISTS schema_versions ("
    " schema_hash text PRIMARY KEY,"
    " applied_at timestamptz NOT NULL DEFAULT now()"
    ")"
)


def _detect_schema_path() -> Path:
    """Return ``APP_SCHEMA_PATH`` or the nearest ``db/schema.sql`` above this module."""

    env_override = os.environ.get("APP_SCHEMA_PATH")
    if env_override:
        return Path(env_override)

    current = Path(__file__).resolve()
    for parent in current.parents:
        candidate = parent / "db" / "schema.sql"
        if candidate.exists():
            return candidate
    return current.parents[1] / "db" / "schema.sql"


SCHEMA_PATH = _detect_schema_path()


def load_schema_sql(path: Path = SCHEMA_PATH) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:  # pragma: no cover - developer misconfiguration
        raise RuntimeError(f"Database schema file not found at {path}") from exc


def split_statements(schema_sql: str) -> list[str]:
    """Split ``schema_sql`` on semicolons, dropping ``--`` comment lines."""

    lines = [line for line in schema_sql.splitlines() if not line.lstrip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


async def ensure_schema(engine: AsyncEngine) -> tuple[bool, int]:
    """Apply the schema unless its hash is already recorded.

    Returns ``(applied, statement_count)``.
    """

    schema_sql = load_schema_sql()
    statements = split_statements(schema_sql)
    if not statements:
        return False, 0

    schema_hash = hashlib.sha256(schema_sql.encode("utf-8")).hexdigest()

    async with engine.begin() as conn:
        await conn.exec_driver_sql(_SCHEMA_VERSIONS_SQL)
        result = await conn.execute(
            text("SELECT 1 FROM schema_versions WHERE schema_hash = :schema_hash"),
            {"schema_hash": schema_hash},
        )
        if result.first() is not None:
            LOGGER.debug("Database schema already applied (hash=%s)", schema_hash)
            return False, 0

        for statement in statements:
            await conn.exec_driver_sql(statement)

        await conn.execute(
            text(
                "INSERT INTO schema_versions (schema_hash) VALUES (:schema_hash)"
                " ON CONFLICT DO NOTHING"
            ),
            {"schema_hash": schema_hash},
        )

    LOGGER.info("Applied database schema (%d statements, hash=%s)", len(statements), schema_hash)
    return True, len(statements)
