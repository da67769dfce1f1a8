"""
Bounded pool for independent per-frame engine jobs.
===================================================

Jobs run on a :class:`~concurrent.futures.ThreadPoolExecutor`; a counting
semaphore admits at most ``max_concurrency`` of them at once.  A slot is
taken before a job starts and given back however the job ends, so a
failing job never starves the rest of the batch.  The pool returns only
after every job has reached a terminal state.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

__all__ = ["JobStatus", "ConformerJob", "BoundedWorkerPool"]

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass
class ConformerJob:
    frame_index: int
    input_path: Path
    output_path: Path
    status: JobStatus = JobStatus.PENDING
    error: Optional[BaseException] = None
    wall_time: float = 0.0


class BoundedWorkerPool:
    def __init__(self, max_concurrency: int) -> None:
        if int(max_concurrency) < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = int(max_concurrency)
        self._slots = threading.BoundedSemaphore(self.max_concurrency)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        with self._lock:
            return self._peak

    def run(self, jobs: Sequence[ConformerJob], work: Callable[[ConformerJob], None]) -> List[ConformerJob]:
        """Execute ``work(job)`` for every job; returns the jobs with final statuses."""

        jobs = list(jobs)
        if not jobs:
            return jobs
        workers = min(self.max_concurrency, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="batch") as executor:
            futures = [executor.submit(self._execute, job, work) for job in jobs]
            wait(futures)
        failed = sum(1 for job in jobs if job.status is JobStatus.FAILED)
        logger.info("Batch finished: %d succeeded, %d failed.", len(jobs) - failed, failed)
        return jobs

    def _execute(self, job: ConformerJob, work: Callable[[ConformerJob], None]) -> None:
        self._slots.acquire()
        try:
            with self._lock:
                self._in_flight += 1
                self._peak = max(self._peak, self._in_flight)
            job.status = JobStatus.RUNNING
            start = time.time()
            try:
                work(job)
            except Exception as exc:
                job.error = exc
                job.status = JobStatus.FAILED
                logger.warning("Job for frame %d failed: %s", job.frame_index, exc)
            else:
                job.status = JobStatus.SUCCEEDED
            finally:
                job.wall_time = time.time() - start
        finally:
            with self._lock:
                self._in_flight -= 1
            self._slots.release()
