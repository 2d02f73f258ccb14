from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

import psycopg
from pydantic import SecretStr


@dataclass(frozen=True)
class PostgresConfig:
    dsn: str | None = None
    host: str | None = None
    port: int = 5432
    db: str | None = None
    user: str | None = None
    password: SecretStr | str | None = None

    def build_dsn(self) -> str:
        if self.dsn:
            return self.dsn
        missing = []
        if not self.host:
            missing.append("POSTGRES_HOST")
        if not self.db:
            missing.append("POSTGRES_DB")
        if not self.user:
            missing.append("POSTGRES_USER")
        if not self.password:
            missing.append("POSTGRES_PASSWORD")
        if missing:
            raise ValueError(f"Missing Postgres config: {', '.join(missing)} (or set PG_DSN)")
        password = (
            self.password.get_secret_value()
            if isinstance(self.password, SecretStr)
            else self.password
        )
        return (
            f"postgresql://{self.user}:{password}"
            f"@{self.host}:{self.port}/{self.db}"
        )


@contextmanager
def connect(dsn: str, *, schema: str = "public") -> Iterator[psycopg.Connection]:
    options = f"-c search_path={schema},public -c timezone=UTC"
    with psycopg.connect(dsn, options=options) as conn:
        yield conn


@contextmanager
def atomic(conn: psycopg.Connection) -> Iterator[psycopg.Connection]:
    """
    Runs the block in one transaction and commits it.

    Any implicit transaction already open on the connection is committed together
    with the block; an exception rolls the block back.
    """
    with conn.transaction():
        yield conn
    conn.commit()


def vector_literal(vector: Sequence[float]) -> str:
    """Text form accepted by a pgvector ``%s::vector`` cast."""
    return "[" + ",".join(repr(float(v)) for v in vector) + "]"


def parse_vector(value: object) -> list[float] | None:
    if value is None:
        return None
    if isinstance(value, str):
        body = value.strip().lstrip("[").rstrip("]")
        return [float(v) for v in body.split(",") if v.strip()]
    return [float(v) for v in value]  # type: ignore[union-attr]
