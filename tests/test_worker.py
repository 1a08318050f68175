import threading
from datetime import datetime

import pytest
from sqlalchemy import select

from cachewarm.crawler import CrawlError
from cachewarm.database import Database
from cachewarm.models import CrawlResult
from cachewarm.schema import jobs, tasks
from cachewarm.tasks import TaskStatus
from cachewarm.worker import WorkerPool

JOB_ID = "job-1"


class FakeCrawler:
    def __init__(self, fail_urls=(), expected_calls=None):
        self.fail_urls = set(fail_urls)
        self.calls = []
        self.expected_calls = expected_calls
        self.done = threading.Event()
        self._lock = threading.Lock()

    def warm_url(self, target_url, timeout=None):
        with self._lock:
            self.calls.append(target_url)
            if self.expected_calls is not None and len(self.calls) >= self.expected_calls:
                self.done.set()
        if target_url in self.fail_urls:
            result = CrawlResult(url=target_url, status_code=404, content_type="text/html")
            result.error = "HTTP 404: Page not found"
            raise CrawlError(result.error, result)
        return CrawlResult(
            url=target_url,
            status_code=200,
            cache_status="HIT",
            content_type="text/html",
            response_time=5,
        )


class BrokenQueue:
    def __init__(self):
        self.calls = 0
        self.recovered = threading.Event()

    def get_next_task(self):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("database unavailable")
        self.recovered.set()
        return None

    def complete_task(self, task):
        raise AssertionError("no task should complete")

    def fail_task(self, task, error=None):
        raise AssertionError("no task should fail")


@pytest.fixture
def db():
    database = Database("sqlite://")
    with database.engine.begin() as conn:
        conn.execute(
            jobs.insert().values(
                id=JOB_ID,
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
    yield database
    database.close()


def _task_rows(db):
    with db.engine.connect() as conn:
        return conn.execute(select(tasks).order_by(tasks.c.url)).all()


def _job_row(db):
    with db.engine.connect() as conn:
        return conn.execute(select(jobs).where(jobs.c.id == JOB_ID)).one()


def test_no_pending_task_returns_none(db):
    crawler = FakeCrawler()
    pool = WorkerPool(db.get_queue(), crawler, worker_count=1, task_interval=0.01)
    assert pool.process_next_task(0) is None
    assert crawler.calls == []


def test_successful_task_is_completed(db):
    queue = db.get_queue()
    queue.enqueue_urls(JOB_ID, ["https://example.com/page1"], "test")
    pool = WorkerPool(queue, FakeCrawler(), worker_count=1, task_interval=0.01)

    task = pool.process_next_task(0)

    assert task.url == "https://example.com/page1"
    assert task.status == TaskStatus.COMPLETED
    assert task.status_code == 200
    assert task.cache_status == "HIT"
    (row,) = _task_rows(db)
    assert row.status == "completed"
    assert row.status_code == 200
    assert row.cache_status == "HIT"
    assert row.content_type == "text/html"
    job = _job_row(db)
    assert job.completed_tasks == 1
    assert job.progress == pytest.approx(100.0)
    assert job.status == "completed"


def test_crawl_error_marks_task_failed(db):
    url = "https://example.com/missing"
    queue = db.get_queue()
    queue.enqueue_urls(JOB_ID, [url], "test")
    pool = WorkerPool(queue, FakeCrawler(fail_urls=[url]), worker_count=1)

    task = pool.process_next_task(0)

    assert task.status == TaskStatus.FAILED
    assert task.status_code == 404
    assert task.error == "HTTP 404: Page not found"
    (row,) = _task_rows(db)
    assert row.status == "failed"
    assert row.error == "HTTP 404: Page not found"
    assert _job_row(db).failed_tasks == 1


def test_queue_error_propagates():
    pool = WorkerPool(BrokenQueue(), FakeCrawler(), worker_count=1)
    with pytest.raises(RuntimeError, match="database unavailable"):
        pool.process_next_task(0)


def test_started_pool_processes_all_tasks(db):
    urls = [
        "https://example.com/page1",
        "https://example.com/page2",
        "https://example.com/page3",
    ]
    queue = db.get_queue()
    queue.enqueue_urls(JOB_ID, urls, "test")
    crawler = FakeCrawler(expected_calls=len(urls))
    pool = WorkerPool(queue, crawler, worker_count=1, task_interval=0.01)

    pool.start()
    try:
        assert crawler.done.wait(5)
    finally:
        pool.stop()

    assert sorted(crawler.calls) == urls
    assert [row.status for row in _task_rows(db)] == ["completed"] * 3
    assert _job_row(db).completed_tasks == 3


def test_worker_keeps_running_after_queue_error():
    queue = BrokenQueue()
    pool = WorkerPool(queue, FakeCrawler(), worker_count=1, task_interval=0.01)
    pool.start()
    try:
        assert queue.recovered.wait(5)
    finally:
        pool.stop()
    assert queue.calls >= 2


def test_stop_is_idempotent(db):
    pool = WorkerPool(db.get_queue(), FakeCrawler(), worker_count=2, task_interval=0.01)
    pool.start()
    pool.stop()
    pool.stop()
    assert pool.process_next_task(0) is None