"""Database connection, crawl result storage and health checks."""

from __future__ import annotations

import logging
import os
import shlex
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import create_engine, inspect, select, text
from sqlalchemy.engine import URL, Engine, Row, make_url
from sqlalchemy.pool import StaticPool

from .schema import crawl_results, drop_schema, setup_schema
from .tasks import TaskQueue

log = logging.getLogger(__name__)

DEFAULT_PORT = "5432"
DEFAULT_SSLMODE = "require"
SLOW_OPERATION_SECONDS = 1.0

_POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 15,
    "pool_recycle": 300,
    "pool_pre_ping": True,
}


@dataclass
class StoredCrawlResult:
    """A crawl result as kept in the crawl_results table."""

    url: str
    response_time: int = 0
    status_code: int = 0
    error: str = ""
    cache_status: str = ""
    content_type: str = ""
    job_id: str = ""
    task_id: str = ""
    id: int = 0
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the result as a JSON-ready mapping, leaving out empty optional fields."""
        data: dict[str, Any] = {"id": self.id}
        if self.job_id:
            data["job_id"] = self.job_id
        if self.task_id:
            data["task_id"] = self.task_id
        data["url"] = self.url
        data["response_time_ms"] = self.response_time
        data["status_code"] = self.status_code
        for key in ("error", "cache_status", "content_type"):
            value = getattr(self, key)
            if value:
                data[key] = value
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data


@dataclass
class HealthCheck:
    """Outcome of a database health check. Latency is in seconds."""

    connected: bool = False
    latency: float = 0.0
    tables: list[str] = field(default_factory=list)
    error: str = ""

    @property
    def tables_count(self) -> int:
        return len(self.tables)

    def to_dict(self) -> dict[str, Any]:
        """Return the health check as a JSON-ready mapping."""
        data: dict[str, Any] = {
            "connected": self.connected,
            "latency_ms": self.latency * 1000.0,
        }
        if self.tables:
            data["tables"] = list(self.tables)
        data["tables_count"] = self.tables_count
        if self.error:
            data["error"] = self.error
        return data


def connection_string_from_env(environ: Mapping[str, str] | None = None) -> str | None:
    """Build a connection string from DATABASE_URL or the PG* variables.

    Returns None when the required variables are missing.
    """
    env = os.environ if environ is None else environ
    database_url = env.get("DATABASE_URL", "")
    if database_url:
        return database_url

    host = env.get("PGHOST", "")
    port = env.get("PGPORT", "") or DEFAULT_PORT
    user = env.get("PGUSER", "")
    password = env.get("PGPASSWORD", "")
    dbname = env.get("PGDATABASE", "")
    sslmode = env.get("PGSSLMODE", "") or DEFAULT_SSLMODE

    if not (host and user and password and dbname):
        return None
    return (
        f"host={host} port={port} user={user} password={password} "
        f"dbname={dbname} sslmode={sslmode}"
    )


def to_sqlalchemy_url(connection_string: str) -> URL:
    """Turn a URL or a key=value PostgreSQL connection string into a SQLAlchemy URL."""
    if "://" in connection_string:
        if connection_string.startswith("postgres://"):
            connection_string = "postgresql://" + connection_string[len("postgres://"):]
        return make_url(connection_string)

    params: dict[str, str] = {}
    for token in shlex.split(connection_string):
        key, sep, value = token.partition("=")
        if not sep:
            raise ValueError(f"malformed connection parameter: {token}")
        params[key] = value

    port = params.pop("port", "")
    return URL.create(
        "postgresql",
        username=params.pop("user", None) or None,
        password=params.pop("password", None) or None,
        host=params.pop("host", None) or None,
        port=int(port) if port else None,
        database=params.pop("dbname", None) or None,
        query=params,
    )


def _build_engine(url: URL) -> Engine:
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(url)
    return create_engine(url, **_POOL_OPTIONS)


class Database:
    """A database connection holding the jobs, tasks and crawl_results tables."""

    def __init__(self, url_or_engine: str | URL | Engine) -> None:
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
        else:
            url = (
                to_sqlalchemy_url(url_or_engine)
                if isinstance(url_or_engine, str)
                else url_or_engine
            )
            self.engine = _build_engine(url)

        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            raise ConnectionError(f"failed to ping database: {exc}") from exc

        try:
            setup_schema(self.engine)
        except Exception as exc:
            raise RuntimeError(f"failed to setup schema: {exc}") from exc

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Database:
        """Connect using DATABASE_URL or the PG* environment variables."""
        connection_string = connection_string_from_env(environ)
        if not connection_string:
            raise ValueError("missing PostgreSQL connection information")
        log.info("Initializing database connection")
        return cls(connection_string)

    def close(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def store_crawl_result(self, result: StoredCrawlResult) -> int:
        """Insert a crawl result and return its new id."""
        log.debug(
            "Storing crawl result: url=%s response_time=%d status=%d",
            result.url,
            result.response_time,
            result.status_code,
        )
        try:
            with self.engine.begin() as conn:
                inserted = conn.execute(
                    crawl_results.insert().values(
                        job_id=result.job_id,
                        task_id=result.task_id,
                        url=result.url,
                        response_time=result.response_time,
                        status_code=result.status_code,
                        error=result.error,
                        cache_status=result.cache_status,
                        content_type=result.content_type,
                    )
                )
                new_id = int(inserted.inserted_primary_key[0])
        except Exception:
            log.error("Failed to store crawl result for %s", result.url)
            raise
        log.info("Successfully stored crawl result for %s", result.url)
        return new_id

    def get_recent_results(self, limit: int) -> list[StoredCrawlResult]:
        """Return up to limit crawl results, newest first."""
        c = crawl_results.c
        stmt = (
            select(
                c.id,
                c.job_id,
                c.task_id,
                c.url,
                c.response_time,
                c.status_code,
                c.error,
                c.cache_status,
                c.content_type,
                c.created_at,
            )
            .order_by(c.created_at.desc(), c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [
            StoredCrawlResult(
                id=row.id,
                job_id=row.job_id or "",
                task_id=row.task_id or "",
                url=row.url,
                response_time=row.response_time or 0,
                status_code=row.status_code or 0,
                error=row.error or "",
                cache_status=row.cache_status or "",
                content_type=row.content_type or "",
                created_at=row.created_at,
            )
            for row in rows
        ]

    def reset_schema(self) -> None:
        """Drop every table and create the schema afresh."""
        log.warning("Resetting database schema")
        drop_schema(self.engine)
        setup_schema(self.engine)

    def check_health(self) -> HealthCheck:
        """Ping the database and list its tables."""
        health = HealthCheck()
        start = time.monotonic()
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:  # noqa: BLE001 - reported in the result
            health.latency = time.monotonic() - start
            health.error = str(exc)
            return health
        health.latency = time.monotonic() - start
        health.connected = True

        try:
            health.tables = list(inspect(self.engine).get_table_names())
        except Exception as exc:  # noqa: BLE001 - reported in the result
            health.error = f"Connected but failed to list tables: {exc}"
        return health

    def exec_with_metrics(self, query: str, params: Mapping[str, Any] | None = None) -> int:
        """Execute a statement in a transaction and return the affected row count."""
        start = time.monotonic()
        try:
            with self.engine.begin() as conn:
                return conn.execute(text(query), dict(params or {})).rowcount
        finally:
            self._log_if_slow("Slow database operation detected", query, start)

    def query_with_metrics(
        self, query: str, params: Mapping[str, Any] | None = None
    ) -> list[Row]:
        """Run a query and return all its rows."""
        start = time.monotonic()
        try:
            with self.engine.connect() as conn:
                return list(conn.execute(text(query), dict(params or {})).all())
        finally:
            self._log_if_slow("Slow database query detected", query, start)

    def get_queue(self) -> TaskQueue:
        """Return a task queue using this database."""
        return TaskQueue(self.engine)

    @staticmethod
    def _log_if_slow(message: str, query: str, start: float) -> None:
        duration = time.monotonic() - start
        if duration > SLOW_OPERATION_SECONDS:
            log.warning("%s (%.3fs): %s", message, duration, query)