"""
Background job processor: feeds job ids to the worker.
"""
import asyncio
import logging
from typing import List, Optional, Set

from phrasecast.config import Settings
from phrasecast.models import JobStatus
from phrasecast.services.job_worker import JobOutcome, JobWorker

logger = logging.getLogger(__name__)


class JobProcessor:
    """
    Background job processor using asyncio.Queue.

    Processes jobs sequentially. Jobs sent back to queued are re-enqueued
    after the retry delay the worker reports, and a periodic sweep picks up
    anything queued elsewhere or left behind by a crashed worker.
    """

    def __init__(self, worker: JobWorker, sweep_interval: float = 30.0, sweep_batch_size: int = 20):
        self.worker = worker
        self.sweep_interval = sweep_interval
        self.sweep_batch_size = sweep_batch_size
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._sweep_task: Optional[asyncio.Task] = None
        self._retry_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings, worker: JobWorker) -> 'JobProcessor':
        return cls(
            worker,
            sweep_interval=settings.sweep_interval_seconds,
            sweep_batch_size=settings.sweep_batch_size,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, sweep: bool = True):
        """Start the background job processor."""
        self._running = True
        self._task = asyncio.create_task(self._process_loop())
        if sweep:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        """Stop the background job processor gracefully."""
        self._running = False

        background = [t for t in [self._sweep_task, *self._retry_tasks] if t]
        for task in background:
            task.cancel()
        for task in background:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
        self._retry_tasks.clear()

        if self._task:
            # Put a sentinel to wake up the queue if waiting
            await self._queue.put('')
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

    async def enqueue(self, job_id: str):
        """Add a job ID to the processing queue."""
        await self._queue.put(job_id)

    async def run_sweep(self) -> List[JobOutcome]:
        """Process claimable jobs now, outside the queue."""
        outcomes = await self.worker.process_queued_jobs(limit=self.sweep_batch_size)
        for outcome in outcomes:
            self._after_outcome(outcome)
        return outcomes

    async def _process_loop(self):
        """Main processing loop - consumes jobs from queue."""
        while self._running:
            try:
                # Wait for a job with timeout to allow checking _running flag
                try:
                    job_id = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                # Check for sentinel value
                if not job_id:
                    continue

                outcome = await self._process_job(job_id)
                self._queue.task_done()
                if outcome is not None:
                    self._after_outcome(outcome)

            except Exception:
                # Log but don't crash the loop
                logger.exception('Error in job processor loop')

    async def _process_job(self, job_id: str) -> Optional[JobOutcome]:
        """Process a single job."""
        return await self.worker.process_job(job_id)

    async def _sweep_loop(self):
        while self._running:
            await asyncio.sleep(self.sweep_interval)
            try:
                job_ids = await self.worker.store.list_claimable_jobs(
                    self.worker.stale_after, self.sweep_batch_size
                )
            except Exception:
                logger.exception('Job sweep failed')
                continue
            if job_ids:
                logger.info('Sweep found %d claimable job(s)', len(job_ids))
            for job_id in job_ids:
                await self.enqueue(job_id)

    def _after_outcome(self, outcome: JobOutcome):
        if outcome.claimed and outcome.status == JobStatus.queued:
            self._schedule_retry(outcome.job_id, outcome.retry_delay_seconds)

    def _schedule_retry(self, job_id: str, delay: float):
        if not self._running:
            return

        async def _requeue():
            await asyncio.sleep(delay)
            await self.enqueue(job_id)

        task = asyncio.create_task(_requeue())
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)
