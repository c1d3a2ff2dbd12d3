"""Background execution of job stages.

Request handlers never run engine work themselves; they submit a callable
here and return. Two implementations share one interface and are picked at
startup with TASK_RUNNER:

- pool: concurrent.futures.ThreadPoolExecutor
- queue: a queue.Queue drained by daemon worker threads
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from pdf_size_chooser.core.settings import ServiceSettings

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class TaskRunner:
    """Submit job work off the request thread."""

    name = "base"

    def __init__(self, num_workers: int) -> None:
        self.num_workers = max(1, num_workers)
        self._lock = threading.Lock()
        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._active = 0

    def submit(self, job_id: str, task: Task) -> None:
        raise NotImplementedError

    def shutdown(self, wait: bool = False) -> None:
        raise NotImplementedError

    def pending(self) -> int:
        return 0

    def _run(self, job_id: str, task: Task) -> None:
        with self._lock:
            self._active += 1
        start = time.time()
        try:
            task()
        except Exception as e:
            logger.exception(f"[{job_id}] Background task failed: {e}")
            with self._lock:
                self._failed += 1
        else:
            with self._lock:
                self._completed += 1
            logger.debug(f"[{job_id}] Background task finished in {time.time() - start:.1f}s")
        finally:
            with self._lock:
                self._active -= 1

    def _count_submit(self, job_id: str) -> None:
        with self._lock:
            self._submitted += 1
        logger.info(f"[{job_id}] Job enqueued")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "runner": self.name,
                "workers": self.num_workers,
                "waiting": self.pending(),
                "active": self._active,
                "submitted": self._submitted,
                "completed": self._completed,
                "failed": self._failed,
            }


class ThreadPoolTaskRunner(TaskRunner):
    name = "pool"

    def __init__(self, num_workers: int) -> None:
        super().__init__(num_workers)
        self._executor = ThreadPoolExecutor(max_workers=self.num_workers, thread_name_prefix="job-worker")
        self._waiting = 0

    def submit(self, job_id: str, task: Task) -> None:
        def wrapped() -> None:
            with self._lock:
                self._waiting -= 1
            self._run(job_id, task)

        with self._lock:
            self._waiting += 1
        self._count_submit(job_id)
        self._executor.submit(wrapped)

    def pending(self) -> int:
        return self._waiting

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)


class QueueTaskRunner(TaskRunner):
    name = "queue"

    _STOP = object()

    def __init__(self, num_workers: int) -> None:
        super().__init__(num_workers)
        self._work_queue: queue.Queue = queue.Queue()
        self._threads = []
        for i in range(self.num_workers):
            worker_thread = threading.Thread(target=self._worker, daemon=True, name=f"job-worker-{i}")
            worker_thread.start()
            self._threads.append(worker_thread)
        logger.info(f"Started {self.num_workers} job queue workers")

    def submit(self, job_id: str, task: Task) -> None:
        self._count_submit(job_id)
        self._work_queue.put((job_id, task))

    def pending(self) -> int:
        return self._work_queue.qsize()

    def _worker(self) -> None:
        while True:
            item = self._work_queue.get()
            try:
                if item is self._STOP:
                    return
                job_id, task = item
                logger.info(f"[{job_id}] Processing started")
                self._run(job_id, task)
            finally:
                self._work_queue.task_done()

    def join(self) -> None:
        """Block until every submitted task has run."""
        self._work_queue.join()

    def shutdown(self, wait: bool = False) -> None:
        for _ in self._threads:
            self._work_queue.put(self._STOP)
        if wait:
            for worker_thread in self._threads:
                worker_thread.join()


def build_task_runner(settings: ServiceSettings, num_workers: Optional[int] = None) -> TaskRunner:
    workers = num_workers or settings.async_workers
    if settings.task_runner == "queue":
        return QueueTaskRunner(workers)
    return ThreadPoolTaskRunner(workers)
