"""A queue that runs database operations on a small pool of worker threads."""

from __future__ import annotations

import logging
import queue
import threading
import time
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.engine import Connection, Engine

log = logging.getLogger(__name__)

QUEUE_CAPACITY = 200
DEFAULT_WORKERS = 2
MAX_ATTEMPTS = 3
STOP_TIMEOUT = 5.0

_SENTINEL = None


class QueueStoppedError(RuntimeError):
    """Raised when an operation is submitted to a stopped queue."""


def _is_lock_error(exc: BaseException) -> bool:
    return "database is locked" in str(exc)


@dataclass
class _Operation:
    fn: Callable[[Connection], Any]
    deadline: float | None
    start: float
    op_id: str
    future: Future = field(default_factory=Future)


class DbQueue:
    """Runs each submitted function in its own transaction, retrying on lock errors."""

    def __init__(self, engine: Engine, worker_count: int = DEFAULT_WORKERS) -> None:
        self.engine = engine
        self.worker_count = worker_count
        self._ops: queue.Queue[_Operation | None] = queue.Queue(maxsize=QUEUE_CAPACITY)
        self._threads: list[threading.Thread] = []
        self._stopped = False
        self._lock = threading.Lock()
        self.start()

    def start(self) -> None:
        """Start the worker threads if they are not running."""
        with self._lock:
            if self._stopped:
                raise QueueStoppedError("queue is stopped")
            if self._threads:
                return
            for worker_id in range(self.worker_count):
                thread = threading.Thread(
                    target=self._work, args=(worker_id,), name=f"dbqueue-{worker_id}", daemon=True
                )
                thread.start()
                self._threads.append(thread)

    def stop(self) -> None:
        """Stop accepting work and wait up to five seconds for queued work to finish."""
        with self._lock:
            first_stop = not self._stopped
            self._stopped = True
            threads = list(self._threads)

        deadline = time.monotonic() + STOP_TIMEOUT
        if first_stop:
            for _ in threads:
                try:
                    self._ops.put(_SENTINEL, timeout=max(0.0, deadline - time.monotonic()))
                except queue.Full:
                    break
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))

        if any(thread.is_alive() for thread in threads):
            log.warning("Queue stop timed out")
        else:
            log.debug("Queue stopped gracefully")

    def execute(self, fn: Callable[[Connection], Any], timeout: float | None = None) -> Any:
        """Run fn(connection) inside a transaction on a worker and return its value.

        Raises QueueStoppedError if the queue is stopped and TimeoutError if the
        operation could not start within timeout seconds.
        """
        if self._stopped:
            raise QueueStoppedError("queue is stopped")

        start = time.monotonic()
        op = _Operation(
            fn=fn,
            deadline=start + timeout if timeout is not None else None,
            start=start,
            op_id=uuid.uuid4().hex[:8],
        )
        log.debug("DB operation %s submitted (queue size %d)", op.op_id, self._ops.qsize())
        try:
            self._ops.put(op, timeout=timeout)
        except queue.Full:
            log.debug("DB operation %s cancelled before execution", op.op_id)
            raise TimeoutError("operation cancelled before execution") from None

        try:
            return op.future.result()
        finally:
            log.debug(
                "DB operation %s completed in %.1f ms",
                op.op_id,
                (time.monotonic() - start) * 1000,
            )

    def __enter__(self) -> DbQueue:
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def _work(self, worker_id: int) -> None:
        while True:
            op = self._ops.get()
            if op is _SENTINEL:
                return
            self._run(op, worker_id)

    def _run(self, op: _Operation, worker_id: int) -> None:
        log.debug(
            "Worker %d starting DB operation %s after %.1f ms in queue",
            worker_id,
            op.op_id,
            (time.monotonic() - op.start) * 1000,
        )
        if op.deadline is not None and time.monotonic() >= op.deadline:
            op.future.set_exception(TimeoutError("operation deadline exceeded"))
            return

        last_error: Exception | None = None
        for attempt in range(MAX_ATTEMPTS):
            if attempt:
                backoff = 0.1 * (1 << attempt)
                log.warning(
                    "Retrying DB operation %s (attempt %d) after %.1fs: %s",
                    op.op_id,
                    attempt + 1,
                    backoff,
                    last_error,
                )
                time.sleep(backoff)
            try:
                value = self._transact(op.fn)
            except Exception as exc:  # noqa: BLE001 - forwarded to the caller
                last_error = exc
                if _is_lock_error(exc):
                    continue
                break
            op.future.set_result(value)
            return

        log.error(
            "Database operation %s failed on worker %d: %s", op.op_id, worker_id, last_error
        )
        op.future.set_exception(last_error)

    def _transact(self, fn: Callable[[Connection], Any]) -> Any:
        with self.engine.connect() as conn:
            with conn.begin():
                return fn(conn)