"""Background execution of AI suggestion jobs."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fastapi.concurrency import run_in_threadpool


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


@dataclass
class JobRecord:
    label: str
    scheduled_at: datetime = field(default_factory=_utc_now)


class BackgroundRunner:
    """Runs jobs after the response path has returned, without letting them get lost.

    Jobs go to a thread pool and are tracked until they finish so ``shutdown``
    can wait for them before the process exits. When the pool no longer accepts
    work the job runs inline instead: slower for the caller, but it still runs.
    Exceptions raised by a job are logged and never reach the caller.
    """

    def __init__(self, max_workers: int = 4, thread_name_prefix: str = "ai_suggestion"):
        self._executor: ThreadPoolExecutor | None = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        self._pending: dict[Future, JobRecord] = {}
        self._lock = threading.Lock()  # Protects _pending and _executor across threads

    def schedule(self, job: Callable[[], Any], *, label: str = "job") -> Future | None:
        """Hand a job to the pool, or run it inline when the pool is unavailable.

        Returns the future for pooled jobs and None for jobs that already ran inline.
        """
        future = self._submit(job, label)
        if future is None:
            logging.warning("Background pool unavailable, running %s inline", label)
            self._run_inline(job, label)
        return future

    async def schedule_async(self, job: Callable[[], Any], *, label: str = "job") -> Future | None:
        """Like ``schedule``, for callers on the event loop.

        The inline fallback runs in the threadpool so a blocking job never
        stalls the loop; the caller still waits for it to finish.
        """
        future = self._submit(job, label)
        if future is None:
            logging.warning("Background pool unavailable, running %s inline off the event loop", label)
            await run_in_threadpool(self._run_inline, job, label)
        return future

    def _submit(self, job: Callable[[], Any], label: str) -> Future | None:
        future = None
        with self._lock:
            executor = self._executor
            if executor is not None:
                try:
                    future = executor.submit(job)
                except RuntimeError:
                    # Pool was shut down between the check and submit
                    future = None
                if future is not None:
                    self._pending[future] = JobRecord(label=label)

        if future is not None:
            future.add_done_callback(self._on_done)
        return future

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for every job scheduled so far. Returns False on timeout."""
        with self._lock:
            futures = list(self._pending)
        if not futures:
            return True
        _, not_done = wait_futures(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting pooled jobs; by default block until running ones complete."""
        with self._lock:
            executor = self._executor
            self._executor = None
        if executor is not None:
            pending = self.pending_count()
            if pending:
                logging.info("Waiting for %d background job(s) before shutdown", pending)
            executor.shutdown(wait=wait)

    @property
    def is_accepting(self) -> bool:
        with self._lock:
            return self._executor is not None

    def _on_done(self, future: Future) -> None:
        with self._lock:
            record = self._pending.pop(future, None)
        label = record.label if record else "job"
        elapsed = (_utc_now() - record.scheduled_at).total_seconds() if record else 0.0

        if future.cancelled():
            logging.warning("Background job %s was cancelled", label)
            return

        error = future.exception()
        if error is not None:
            logging.error("Background job %s failed after %.2fs: %s", label, elapsed, error, exc_info=error)
        else:
            logging.debug("Background job %s finished in %.2fs", label, elapsed)

    @staticmethod
    def _run_inline(job: Callable[[], Any], label: str) -> None:
        try:
            job()
        except Exception as e:
            logging.error("Inline job %s failed: %s", label, e, exc_info=e)
