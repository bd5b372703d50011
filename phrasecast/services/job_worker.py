"""
Job worker: drives one synthesis job from claim to a terminal state.
"""
import logging
import os
import socket
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import httpx

from phrasecast.config import Settings
from phrasecast.errors import AlreadyClaimed, DecryptionError, ErrorCode, InternalError, ProviderError
from phrasecast.models import JobStatus
from phrasecast.services.credential_vault import CredentialVault
from phrasecast.services.job_store import JobSnapshot, JobStore
from phrasecast.services.retry_policy import RetryPolicy
from phrasecast.services.tts_client import SpeechSynthesisClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], SpeechSynthesisClient]


def default_worker_id() -> str:
    """host:pid:random, unique per worker instance."""
    return f'{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}'


@dataclass
class JobOutcome:
    """
    Result of one ``process_job`` invocation.

    ``claimed`` is False when another worker already owned the job; the
    remaining fields are then unset. ``status`` is the state the job was
    left in: queued (will be retried after ``retry_delay_seconds``),
    succeeded or failed. It stays processing only when even the failure
    write could not be made, leaving the claim to go stale.

    ``claim_lost`` is True when the claim went stale mid-run and another
    worker took the job over; nothing was written and ``status`` is None.
    """
    job_id: str
    claimed: bool
    status: Optional[JobStatus] = None
    error_code: Optional[ErrorCode] = None
    attempt_count: Optional[int] = None
    retry_delay_seconds: float = 0.0
    result_count: int = 0
    claim_lost: bool = False

    @property
    def already_claimed(self) -> bool:
        return not self.claimed


class JobWorker:
    """
    Processes jobs one at a time: claim, decrypt, synthesize, persist, release.

    Jobs are all-or-nothing. Audio is kept in memory until every phrase has
    succeeded and only then stored; a permanent failure on any phrase fails
    the whole job and discards what was synthesized.
    """

    def __init__(
        self,
        store: JobStore,
        vault: CredentialVault,
        client_factory: ClientFactory,
        retry_policy: RetryPolicy,
        stale_after: timedelta,
        worker_id: Optional[str] = None,
    ):
        self.store = store
        self.vault = vault
        self.client_factory = client_factory
        self.retry_policy = retry_policy
        self.stale_after = stale_after
        self.worker_id = worker_id or default_worker_id()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: JobStore,
        vault: CredentialVault,
        http_client: httpx.AsyncClient,
    ) -> 'JobWorker':
        def client_factory(api_key: str) -> SpeechSynthesisClient:
            return SpeechSynthesisClient.from_settings(api_key, settings, http_client)

        return cls(
            store=store,
            vault=vault,
            client_factory=client_factory,
            retry_policy=RetryPolicy.from_settings(settings),
            stale_after=timedelta(seconds=settings.stale_claim_seconds),
            worker_id=settings.worker_id,
        )

    async def process_job(self, job_id: str) -> JobOutcome:
        """
        Process a single job to a terminal state, or back to queued for retry.

        Never raises for job-level failures; those are recorded on the job.
        """
        try:
            await self._claim(job_id)
        except AlreadyClaimed:
            logger.debug('Job %s not claimable by %s, skipping', job_id, self.worker_id)
            return JobOutcome(job_id=job_id, claimed=False)

        attempt_count = None
        try:
            job = await self.store.get_job(job_id)
            if job is None:
                raise InternalError(f'Job {job_id} disappeared after claim')
            attempt_count = job.attempt_count
            return await self._run(job)
        except Exception:
            logger.exception('Job %s failed with an internal error (attempt %s)', job_id, attempt_count)
            return await self._fail_after_fault(job_id, attempt_count)

    async def process_queued_jobs(self, limit: int = 20) -> List[JobOutcome]:
        """Process claimable jobs sequentially, oldest first."""
        job_ids = await self.store.list_claimable_jobs(self.stale_after, limit)
        outcomes = []
        for job_id in job_ids:
            outcomes.append(await self.process_job(job_id))
        return outcomes

    async def _claim(self, job_id: str):
        claimed = await self.store.claim_job(job_id, self.worker_id, self.stale_after)
        if not claimed:
            raise AlreadyClaimed(job_id)
        logger.info('Job %s claimed by %s', job_id, self.worker_id)

    async def _run(self, job: JobSnapshot) -> JobOutcome:
        credential = await self.store.get_credential(job.user_id)
        if credential is None:
            logger.warning('Job %s: no stored credential for user %s', job.id, job.user_id)
            return await self._finish(job, JobStatus.failed, ErrorCode.credential_error)

        try:
            api_key = self.vault.decrypt_text(credential)
        except DecryptionError as e:
            logger.error('Job %s: credential for user %s could not be decrypted: %s', job.id, job.user_id, e)
            return await self._finish(job, JobStatus.failed, ErrorCode.credential_error)

        client = self.client_factory(api_key)
        del api_key

        audio_chunks = []
        try:
            for index, phrase in enumerate(job.phrases):
                try:
                    audio = await client.synthesize(phrase.text, phrase.voice_id, phrase.language_code)
                except ProviderError as e:
                    return await self._handle_provider_error(job, index, e)
                audio_chunks.append(audio)
        finally:
            client.close()

        try:
            for index, audio in enumerate(audio_chunks):
                await self.store.store_result(job.id, index, audio)
        except Exception:
            await self._discard_results(job.id)
            raise

        logger.info('Job %s succeeded with %d phrase(s)', job.id, len(audio_chunks))
        return await self._finish(job, JobStatus.succeeded, None, result_count=len(audio_chunks))

    async def _handle_provider_error(self, job: JobSnapshot, index: int, error: ProviderError) -> JobOutcome:
        decision = self.retry_policy.decide(error.kind, job.attempt_count)
        if decision.retry:
            logger.info(
                'Job %s phrase %d: %s on attempt %d/%d, requeueing (retry in %.1fs)',
                job.id, index, error.kind.value, job.attempt_count,
                self.retry_policy.max_attempts, decision.delay_seconds,
            )
            return await self._finish(
                job,
                JobStatus.queued,
                None,
                retry_delay_seconds=decision.delay_seconds,
                not_before=datetime.utcnow() + timedelta(seconds=decision.delay_seconds),
            )

        logger.warning(
            'Job %s phrase %d: %s on attempt %d, failing job',
            job.id, index, decision.error_code.value, job.attempt_count,
        )
        return await self._finish(job, JobStatus.failed, decision.error_code)

    async def _finish(
        self,
        job: JobSnapshot,
        status: JobStatus,
        error_code: Optional[ErrorCode],
        retry_delay_seconds: float = 0.0,
        result_count: int = 0,
        not_before: Optional[datetime] = None,
    ) -> JobOutcome:
        written = await self.store.update_job_status(
            job.id, self.worker_id, status, error_code, job.attempt_count, not_before=not_before,
        )
        if not written:
            return self._claim_lost(job.id, job.attempt_count, status)
        return JobOutcome(
            job_id=job.id,
            claimed=True,
            status=status,
            error_code=error_code,
            attempt_count=job.attempt_count,
            retry_delay_seconds=retry_delay_seconds,
            result_count=result_count,
        )

    async def _fail_after_fault(self, job_id: str, attempt_count: Optional[int]) -> JobOutcome:
        try:
            written = await self.store.update_job_status(
                job_id, self.worker_id, JobStatus.failed, ErrorCode.internal_error, attempt_count,
            )
        except Exception:
            # Claim stays until it goes stale and another worker reclaims it
            logger.exception('Job %s: could not record internal error, leaving claim to expire', job_id)
            return JobOutcome(
                job_id=job_id,
                claimed=True,
                status=JobStatus.processing,
                error_code=ErrorCode.internal_error,
                attempt_count=attempt_count,
            )
        if not written:
            return self._claim_lost(job_id, attempt_count, JobStatus.failed)
        return JobOutcome(
            job_id=job_id,
            claimed=True,
            status=JobStatus.failed,
            error_code=ErrorCode.internal_error,
            attempt_count=attempt_count,
        )

    def _claim_lost(self, job_id: str, attempt_count: Optional[int], status: JobStatus) -> JobOutcome:
        logger.warning(
            'Job %s: claim of %s was taken over by another worker, %s result dropped',
            job_id, self.worker_id, status.value,
        )
        return JobOutcome(
            job_id=job_id,
            claimed=True,
            attempt_count=attempt_count,
            claim_lost=True,
        )

    async def _discard_results(self, job_id: str):
        try:
            await self.store.discard_results(job_id)
        except Exception:
            logger.exception('Job %s: could not discard partially stored results', job_id)
