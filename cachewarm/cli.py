"""Command that checks a database connection with a task queue round trip."""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import delete, select

from .database import Database
from .schema import jobs, tasks

log = logging.getLogger(__name__)

TEST_URLS = (
    "https://example.com/page1",
    "https://example.com/page2",
    "https://example.com/page3",
)


class _CheckFailed(Exception):
    """A step of the check did not give the expected outcome."""


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cachewarm-dbcheck",
        description="Connect to the database and run a task queue round trip.",
    )
    parser.add_argument(
        "--env-file", default=".env", help="file of environment variables to load"
    )
    return parser.parse_args(argv)


def _run_check(db: Database) -> None:
    job_id = str(uuid.uuid4())
    with db.engine.begin() as conn:
        conn.execute(
            jobs.insert().values(
                id=job_id,
                domain="example.com",
                status="pending",
                progress=0.0,
                total_tasks=0,
                completed_tasks=0,
                failed_tasks=0,
                created_at=datetime.now(),
                concurrency=3,
                find_links=True,
                include_paths=[],
                exclude_paths=[],
            )
        )
    log.info("Created test job %s", job_id)

    try:
        queue = db.get_queue()
        queue.enqueue_urls(job_id, TEST_URLS, "test", "", 0)
        log.info("Enqueued %d test tasks", len(TEST_URLS))

        task = queue.get_next_task()
        if task is None:
            raise _CheckFailed("No task found, expected at least one")
        log.info("Successfully retrieved task %s: %s", task.id, task.url)

        task.status_code = 200
        task.response_time = 150
        task.cache_status = "MISS"
        task.content_type = "text/html"
        queue.complete_task(task)
        log.info("Successfully completed task %s", task.id)

        with db.engine.connect() as conn:
            progress = conn.execute(
                select(jobs.c.progress).where(jobs.c.id == job_id)
            ).scalar_one()
        log.info("Job progress updated: %s", progress)
    finally:
        _clean_up(db, job_id)


def _clean_up(db: Database, job_id: str) -> None:
    try:
        with db.engine.begin() as conn:
            conn.execute(delete(tasks).where(tasks.c.job_id == job_id))
    except Exception as exc:  # noqa: BLE001 - cleanup is best effort
        log.error("Failed to clean up tasks: %s", exc)
    try:
        with db.engine.begin() as conn:
            conn.execute(delete(jobs).where(jobs.c.id == job_id))
    except Exception as exc:  # noqa: BLE001 - cleanup is best effort
        log.error("Failed to clean up job: %s", exc)


def main(argv: list[str] | None = None) -> int:
    """Run the connection check and return the exit status."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG,
        stream=sys.stdout,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    env_file = Path(args.env_file)
    if not env_file.is_file():
        log.error("Error loading %s file", env_file)
        return 1
    load_dotenv(env_file)

    log.info("Testing database connection")
    try:
        db = Database.from_env()
    except Exception as exc:  # noqa: BLE001 - reported to the user
        log.error("Failed to connect to database: %s", exc)
        return 1

    with db:
        log.info("Successfully connected to database")
        try:
            _run_check(db)
        except Exception as exc:  # noqa: BLE001 - reported to the user
            log.error("Check failed: %s", exc)
            return 1

    log.info("Test completed successfully!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())