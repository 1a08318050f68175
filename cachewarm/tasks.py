"""Crawl task queue backed by the tasks and jobs tables."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine

from .schema import jobs, tasks

log = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Lifecycle states of a task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Task:
    """A single URL to crawl as part of a job."""

    id: str
    job_id: str
    url: str
    status: TaskStatus = TaskStatus.PENDING
    depth: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int = 0
    error: str = ""
    source_type: str = ""
    source_url: str = ""
    status_code: int = 0
    response_time: int = 0
    cache_status: str = ""
    content_type: str = ""


class TaskQueue:
    """Claims, enqueues and finishes tasks, keeping job progress up to date."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def execute(self, fn: Callable[[Connection], Any]) -> Any:
        """Run fn(connection) in a transaction, committing on success."""
        with self.engine.begin() as conn:
            return fn(conn)

    def get_next_pending_task(self, job_id: str = "") -> Task | None:
        """Claim the oldest pending task, optionally within one job, and mark it running."""

        def claim(conn: Connection) -> Task | None:
            stmt = select(
                tasks.c.id,
                tasks.c.job_id,
                tasks.c.url,
                tasks.c.depth,
                tasks.c.created_at,
                tasks.c.retry_count,
                tasks.c.source_type,
                tasks.c.source_url,
            ).where(tasks.c.status == TaskStatus.PENDING.value)
            if job_id:
                stmt = stmt.where(tasks.c.job_id == job_id)
            stmt = (
                stmt.order_by(tasks.c.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = conn.execute(stmt).first()
            if row is None:
                return None

            now = datetime.now()
            conn.execute(
                tasks.update()
                .where(tasks.c.id == row.id)
                .values(status=TaskStatus.RUNNING.value, started_at=now)
            )
            return Task(
                id=row.id,
                job_id=row.job_id,
                url=row.url,
                status=TaskStatus.RUNNING,
                depth=row.depth,
                created_at=row.created_at,
                started_at=now,
                retry_count=row.retry_count,
                source_type=row.source_type,
                source_url=row.source_url or "",
            )

        return self.execute(claim)

    def get_next_task(self) -> Task | None:
        """Claim the oldest pending task of any job."""
        return self.get_next_pending_task("")

    def enqueue_urls(
        self,
        job_id: str,
        urls: Iterable[str],
        source_type: str,
        source_url: str = "",
        depth: int = 0,
    ) -> None:
        """Add a pending task for every non-empty URL and raise the job's task total."""
        url_list = list(urls)
        if not url_list:
            return

        def insert(conn: Connection) -> None:
            conn.execute(
                jobs.update()
                .where(jobs.c.id == job_id)
                .values(total_tasks=jobs.c.total_tasks + len(url_list))
            )
            now = datetime.now()
            rows = [
                {
                    "id": str(uuid.uuid4()),
                    "job_id": job_id,
                    "url": url,
                    "status": TaskStatus.PENDING.value,
                    "depth": depth,
                    "created_at": now,
                    "retry_count": 0,
                    "source_type": source_type,
                    "source_url": source_url,
                }
                for url in url_list
                if url
            ]
            if rows:
                conn.execute(tasks.insert(), rows)

        self.execute(insert)
        log.info("Enqueued %d tasks for job %s", len(url_list), job_id)

    def complete_task(self, task: Task) -> None:
        """Record a task's results and mark it completed."""
        task.status = TaskStatus.COMPLETED
        task.completed_at = datetime.now()

        def update(conn: Connection) -> None:
            conn.execute(
                tasks.update()
                .where(tasks.c.id == task.id)
                .values(
                    status=task.status.value,
                    completed_at=task.completed_at,
                    status_code=task.status_code,
                    response_time=task.response_time,
                    cache_status=task.cache_status,
                    content_type=task.content_type,
                )
            )
            if task.job_id:
                self._update_job_progress(conn, task.job_id)

        self.execute(update)

    def fail_task(self, task: Task, error: BaseException | str | None = None) -> None:
        """Mark a task failed with the given error message."""
        message = str(error) if error is not None else ""
        task.status = TaskStatus.FAILED
        task.completed_at = datetime.now()
        task.error = message

        def update(conn: Connection) -> None:
            conn.execute(
                tasks.update()
                .where(tasks.c.id == task.id)
                .values(
                    status=task.status.value,
                    completed_at=task.completed_at,
                    error=message,
                )
            )
            self._update_job_progress(conn, task.job_id)

        self.execute(update)

    @staticmethod
    def _update_job_progress(conn: Connection, job_id: str) -> None:
        def count(*conditions: Any) -> int:
            stmt = select(func.count()).select_from(tasks).where(tasks.c.job_id == job_id, *conditions)
            return int(conn.execute(stmt).scalar_one())

        total = count()
        completed = count(tasks.c.status == TaskStatus.COMPLETED.value)
        failed = count(tasks.c.status == TaskStatus.FAILED.value)
        progress = (completed + failed) / total * 100.0 if total > 0 else 0.0

        values: dict[str, Any] = {
            "progress": progress,
            "completed_tasks": completed,
            "failed_tasks": failed,
        }
        if progress >= 100.0:
            values["status"] = TaskStatus.COMPLETED.value
            values["completed_at"] = datetime.now()
        conn.execute(jobs.update().where(jobs.c.id == job_id).values(**values))