"""A pool of threads that claim crawl tasks and warm their URLs."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from .crawler import CrawlError
from .models import CrawlResult
from .tasks import Task

log = logging.getLogger(__name__)

DEFAULT_TASK_INTERVAL = 0.1
ERROR_BACKOFF_FACTOR = 10


class _Queue(Protocol):
    def get_next_task(self) -> Task | None: ...

    def complete_task(self, task: Task) -> None: ...

    def fail_task(self, task: Task, error: BaseException | str | None = None) -> None: ...


class _Warmer(Protocol):
    def warm_url(self, target_url: str, timeout: float | None = None) -> CrawlResult: ...


class WorkerPool:
    """Runs worker threads that take pending tasks from a queue and crawl them."""

    def __init__(
        self,
        queue: _Queue,
        crawler: _Warmer,
        worker_count: int,
        task_interval: float = DEFAULT_TASK_INTERVAL,
    ) -> None:
        self.queue = queue
        self.crawler = crawler
        self.worker_count = worker_count
        self.task_interval = task_interval
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the worker threads."""
        with self._lock:
            if self._threads:
                return
            self._stop_event.clear()
            log.info("Starting worker pool with %d workers", self.worker_count)
            for worker_id in range(self.worker_count):
                thread = threading.Thread(
                    target=self._work,
                    args=(worker_id,),
                    name=f"crawl-worker-{worker_id}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)

    def stop(self) -> None:
        """Signal every worker to stop and wait for them to finish."""
        log.debug("Stopping worker pool")
        self._stop_event.set()
        with self._lock:
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join()
        log.debug("Worker pool stopped")

    def process_next_task(self, worker_id: int) -> Task | None:
        """Claim and crawl one task; return it, or None when nothing is pending.

        Errors from the queue propagate; crawl failures mark the task failed.
        """
        task = self.queue.get_next_task()
        if task is None:
            return None

        log.debug("Worker %d processing task %s: %s", worker_id, task.id, task.url)
        try:
            result = self.crawler.warm_url(task.url)
        except CrawlError as exc:
            self._record(task, exc.result)
            log.error("Worker %d task %s failed for %s: %s", worker_id, task.id, task.url, exc)
            task.error = str(exc)
            self.queue.fail_task(task, exc)
            return task

        self._record(task, result)
        self.queue.complete_task(task)
        return task

    @staticmethod
    def _record(task: Task, result: CrawlResult | None) -> None:
        if result is None:
            return
        task.status_code = result.status_code
        task.response_time = result.response_time
        task.cache_status = result.cache_status
        task.content_type = result.content_type

    def _work(self, worker_id: int) -> None:
        log.debug("Starting worker %d", worker_id)
        while not self._stop_event.is_set():
            try:
                self.process_next_task(worker_id)
            except Exception:  # noqa: BLE001 - keep the worker alive
                log.exception("Worker %d error processing task", worker_id)
                self._stop_event.wait(self.task_interval * ERROR_BACKOFF_FACTOR)
            else:
                self._stop_event.wait(self.task_interval)
        log.debug("Worker %d received stop signal", worker_id)