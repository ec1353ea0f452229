"""
Complaint Work Queue
====================

Bounded asyncio.Queue consumed by a fixed number of worker tasks.

Only ProviderUnavailableException is retried, with exponential backoff.
Malformed model output is not retried; the complaint stays un-triaged
for a manual re-run.
"""

import asyncio
from dataclasses import replace
from typing import Awaitable, Callable, Optional, Set

from complaint_triage.config import settings
from complaint_triage.core import (
    ApplicationException,
    MalformedModelOutputException,
    ProviderUnavailableException,
)
from complaint_triage.intake.application.services import ComplaintJob
from complaint_triage.shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)

JobHandler = Callable[[ComplaintJob], Awaitable[object]]


class ComplaintWorkQueue:
    """Queue of complaint jobs with N concurrent workers."""

    def __init__(
        self,
        handler: JobHandler,
        concurrency: Optional[int] = None,
        max_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_base_seconds: Optional[float] = None
    ):
        self._handler = handler
        self._concurrency = concurrency or settings.worker_concurrency
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size or settings.worker_queue_size)
        self._max_attempts = max_attempts or settings.worker_max_attempts
        self._retry_base = settings.worker_retry_base_seconds if retry_base_seconds is None else retry_base_seconds
        self._workers: list = []
        self._pending_retries: Set[asyncio.Task] = set()
        self._running = False
        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._running:
            logger.warning("Complaint work queue already running")
            return

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"complaint-worker-{index}")
            for index in range(self._concurrency)
        ]
        logger.info("Complaint work queue started", extra={"concurrency": self._concurrency})

    async def stop(self) -> None:
        """Cancel workers and pending retries. Queued jobs are dropped."""
        if not self._running:
            return

        self._running = False
        for task in list(self._pending_retries) + self._workers:
            task.cancel()
        await asyncio.gather(*self._pending_retries, *self._workers, return_exceptions=True)
        self._workers = []
        self._pending_retries.clear()
        logger.info(
            "Complaint work queue stopped",
            extra={"processed": self.processed, "failed": self.failed}
        )

    async def enqueue(self, job: ComplaintJob) -> None:
        await self._queue.put(job)
        logger.info(
            "Complaint enqueued",
            extra={"complaint_id": job.complaint_id, "tenant_id": job.tenant_id, "attempt": job.attempt}
        )

    async def join(self) -> None:
        """Wait until every queued job, including scheduled retries, is done."""
        while True:
            await self._queue.join()
            if not self._pending_retries:
                return
            await asyncio.gather(*list(self._pending_retries), return_exceptions=True)

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: ComplaintJob) -> None:
        job_logger = get_context_logger(__name__, correlation_id=job.complaint_id)
        try:
            await self._handler(job)
            self.processed += 1
        except ProviderUnavailableException as e:
            if job.attempt >= self._max_attempts:
                self.failed += 1
                job_logger.error(
                    "Complaint processing failed, retries exhausted",
                    extra={"tenant_id": job.tenant_id, "attempt": job.attempt, "error": e.message}
                )
                return
            delay = self._retry_base * (2 ** (job.attempt - 1))
            job_logger.warning(
                "Model provider unavailable, retrying complaint",
                extra={"tenant_id": job.tenant_id, "attempt": job.attempt, "retry_in_seconds": delay}
            )
            self._schedule_retry(replace(job, attempt=job.attempt + 1), delay)
        except MalformedModelOutputException as e:
            self.failed += 1
            job_logger.error(
                "Malformed model output, complaint left for manual re-triage",
                extra={"tenant_id": job.tenant_id, "stage": e.stage}
            )
        except ApplicationException as e:
            self.failed += 1
            job_logger.error(
                "Complaint processing failed",
                extra={"tenant_id": job.tenant_id, "error": e.message, "details": e.details}
            )
        except Exception:
            self.failed += 1
            job_logger.exception("Unexpected error processing complaint", extra={"tenant_id": job.tenant_id})

    def _schedule_retry(self, job: ComplaintJob, delay: float) -> None:
        async def requeue() -> None:
            await asyncio.sleep(delay)
            await self.enqueue(job)

        task = asyncio.create_task(requeue())
        self._pending_retries.add(task)
        task.add_done_callback(self._pending_retries.discard)
