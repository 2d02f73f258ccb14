from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import psycopg

logger = logging.getLogger(__name__)

DIMENSIONS_PLACEHOLDER = "{{embedding_dimensions}}"
# pgvector's HNSW index accepts at most 2000 dimensions.
MAX_INDEXED_DIMENSIONS = 2000
_LOCK_KEY = "kb_rag_core.migrations"


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    def render(self, *, dimensions: int) -> str:
        return self.path.read_text(encoding="utf-8").replace(DIMENSIONS_PLACEHOLDER, str(dimensions))


def _migrations_dir() -> Path:
    return Path(__file__).resolve().parent / "sql"


def discover_migrations() -> list[Migration]:
    return [Migration(version=path.stem, path=path) for path in sorted(_migrations_dir().glob("*.sql"))]


def _checksum(sql: str) -> str:
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


def _prepare(conn: psycopg.Connection, schema: str) -> None:
    conn.execute(f'create schema if not exists "{schema}"')
    # Extensions live in public so every schema sees the vector type.
    conn.execute(f'set search_path to "{schema}", public')
    conn.execute(
        """
        create table if not exists schema_migrations (
          version text primary key,
          checksum text,
          applied_at timestamptz not null default now()
        )
        """
    )


def _applied(conn: psycopg.Connection) -> dict[str, str | None]:
    rows = conn.execute("select version, checksum from schema_migrations").fetchall()
    return {r[0]: r[1] for r in rows}


def apply_migrations(
    dsn: str,
    *,
    schema: str = "public",
    dimensions: int = 1536,
    migrations: Iterable[Migration] | None = None,
) -> list[str]:
    """
    Creates the document, version, chunk and citation tables in ``schema``.

    ``dimensions`` sizes every vector column and must match the dimension the
    ``VectorProvider`` reconciles to. Recorded versions are skipped, so running this
    again is a no-op; a recorded migration whose SQL has since changed is only
    reported. Concurrent runners are serialized with an advisory lock.
    """
    if not 0 < dimensions <= MAX_INDEXED_DIMENSIONS:
        raise ValueError(f"dimensions must be between 1 and {MAX_INDEXED_DIMENSIONS}")
    if migrations is None:
        migrations = discover_migrations()

    applied: list[str] = []
    with psycopg.connect(dsn) as conn:
        conn.execute("set timezone to 'UTC'")
        with conn.transaction():
            conn.execute("select pg_advisory_xact_lock(hashtext(%s))", (_LOCK_KEY,))
            _prepare(conn, schema)
            done = _applied(conn)

            for mig in migrations:
                sql = mig.render(dimensions=dimensions)
                checksum = _checksum(sql)
                if mig.version in done:
                    if done[mig.version] not in (None, checksum):
                        logger.warning("Migration %s changed after it was applied to %s", mig.version, schema)
                    continue
                conn.execute(sql)
                conn.execute(
                    "insert into schema_migrations(version, checksum) values (%s, %s)",
                    (mig.version, checksum),
                )
                logger.info("Applied migration %s to schema %s", mig.version, schema)
                applied.append(mig.version)
        conn.commit()

    return applied
