"""
Persistence operations used by the job worker.

``JobStore`` is the narrow contract the worker depends on; ``SqlJobStore``
implements it with SQLAlchemy. Tests substitute an in-memory store.
"""
import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Protocol

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from phrasecast.errors import ErrorCode
from phrasecast.models import Credential, Job, JobStatus, SynthesisResult, TERMINAL_STATUSES
from phrasecast.services.credential_vault import EncryptedCredential

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {
    'MP3': 'mp3',
    'LINEAR16': 'wav',
    'OGG_OPUS': 'ogg',
    'MULAW': 'wav',
    'ALAW': 'wav',
}


@dataclass(frozen=True)
class Phrase:
    """One unit of text to synthesize."""
    text: str
    voice_id: str
    language_code: str

    @classmethod
    def from_dict(cls, data: dict) -> 'Phrase':
        return cls(
            text=data['text'],
            voice_id=data['voice_id'],
            language_code=data['language_code'],
        )

    def to_dict(self) -> dict:
        return {
            'text': self.text,
            'voice_id': self.voice_id,
            'language_code': self.language_code,
        }


@dataclass
class JobSnapshot:
    """Read-only view of a job row."""
    id: str
    user_id: str
    status: JobStatus
    attempt_count: int
    phrases: List[Phrase] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None


class JobStore(Protocol):
    """Operations the worker needs from persistence and audio storage."""

    async def claim_job(self, job_id: str, worker_id: str, stale_after: timedelta) -> bool:
        """Conditionally take the claim; False if another worker holds a live one."""
        ...

    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        ...

    async def get_credential(self, user_id: str) -> Optional[EncryptedCredential]:
        ...

    async def update_job_status(
        self,
        job_id: str,
        worker_id: str,
        status: JobStatus,
        error_code: Optional[ErrorCode],
        attempt_count: Optional[int],
        not_before: Optional[datetime] = None,
    ) -> bool:
        """
        Write a status transition and release the claim.

        Only applies while ``worker_id`` still holds the claim; returns False
        when it was taken over. None leaves attempt_count as is.
        """
        ...

    async def store_result(self, job_id: str, phrase_index: int, audio: bytes) -> None:
        ...

    async def discard_results(self, job_id: str) -> None:
        """Remove every stored result of a job."""
        ...

    async def list_claimable_jobs(self, stale_after: timedelta, limit: int) -> List[str]:
        ...


def claimable_condition(now: datetime, stale_after: timedelta):
    """WHERE clause for jobs a worker may claim at ``now``."""
    stale_before = now - stale_after
    return or_(
        and_(
            Job.status == JobStatus.queued.value,
            Job.locked_at.is_(None),
            or_(Job.not_before.is_(None), Job.not_before <= now),
        ),
        and_(
            Job.status == JobStatus.processing.value,
            or_(Job.locked_at.is_(None), Job.locked_at < stale_before),
        ),
    )


class SqlJobStore:
    """
    JobStore backed by SQLAlchemy, with audio files under ``audio_dir``.

    Each operation runs in its own session and commits immediately.
    """

    def __init__(self, session_factory: async_sessionmaker, audio_dir: Path, audio_encoding: str = 'MP3'):
        self._session_factory = session_factory
        self._audio_dir = Path(audio_dir)
        self._extension = AUDIO_EXTENSIONS.get(audio_encoding.upper(), 'bin')

    async def claim_job(self, job_id: str, worker_id: str, stale_after: timedelta) -> bool:
        """
        Claim a job with a single conditional UPDATE.

        Sets status to processing, stamps the lock and increments the
        attempt counter. Only one of several concurrent callers can match
        the WHERE clause, so at most one succeeds.
        """
        now = datetime.utcnow()
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .where(claimable_condition(now, stale_after))
            .values(
                status=JobStatus.processing.value,
                locked_at=now,
                locked_by=worker_id,
                attempt_count=Job.attempt_count + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            claimed = result.rowcount == 1
            await session.commit()
        return claimed

    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        async with self._session_factory() as session:
            result = await session.execute(select(Job).where(Job.id == job_id))
            job = result.scalar_one_or_none()

        if job is None:
            return None

        return JobSnapshot(
            id=job.id,
            user_id=job.user_id,
            status=JobStatus(job.status),
            attempt_count=job.attempt_count,
            phrases=[Phrase.from_dict(p) for p in (job.phrases or [])],
            error_code=ErrorCode(job.error_code) if job.error_code else None,
        )

    async def get_credential(self, user_id: str) -> Optional[EncryptedCredential]:
        async with self._session_factory() as session:
            result = await session.execute(select(Credential).where(Credential.user_id == user_id))
            credential = result.scalar_one_or_none()

        if credential is None:
            return None

        return EncryptedCredential(
            ciphertext=credential.ciphertext,
            iv=credential.iv,
            auth_tag=credential.auth_tag,
        )

    async def update_job_status(
        self,
        job_id: str,
        worker_id: str,
        status: JobStatus,
        error_code: Optional[ErrorCode],
        attempt_count: Optional[int],
        not_before: Optional[datetime] = None,
    ) -> bool:
        """
        Conditional on ``locked_by == worker_id``, so a worker whose claim
        went stale and was taken over cannot overwrite the new owner's state.
        """
        now = datetime.utcnow()
        status = JobStatus(status)
        values = {
            'status': status.value,
            'error_code': ErrorCode(error_code).value if (error_code and status == JobStatus.failed) else None,
            'locked_at': None,
            'locked_by': None,
            'not_before': not_before if status == JobStatus.queued else None,
            'updated_at': now,
            'completed_at': now if status in TERMINAL_STATUSES else None,
        }
        if attempt_count is not None:
            values['attempt_count'] = attempt_count
        async with self._session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.locked_by == worker_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            written = result.rowcount == 1
            await session.commit()
        return written

    def audio_path(self, job_id: str, phrase_index: int) -> Path:
        return self._audio_dir / job_id / f'{phrase_index:04d}.{self._extension}'

    async def store_result(self, job_id: str, phrase_index: int, audio: bytes) -> None:
        path = self.audio_path(job_id, phrase_index)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(audio)

        await asyncio.to_thread(_write)

        async with self._session_factory() as session:
            # Reprocessing after a stale claim overwrites the earlier row
            await session.execute(
                delete(SynthesisResult).where(
                    SynthesisResult.job_id == job_id,
                    SynthesisResult.phrase_index == phrase_index,
                )
            )
            session.add(SynthesisResult(
                job_id=job_id,
                phrase_index=phrase_index,
                audio_path=str(path),
                size_bytes=len(audio),
            ))
            await session.commit()
        logger.debug('Stored audio for job %s phrase %d at %s (%d bytes)', job_id, phrase_index, path, len(audio))

    async def discard_results(self, job_id: str) -> None:
        job_dir = self._audio_dir / job_id

        def _remove():
            if job_dir.exists():
                shutil.rmtree(job_dir)

        async with self._session_factory() as session:
            await session.execute(delete(SynthesisResult).where(SynthesisResult.job_id == job_id))
            await session.commit()
        await asyncio.to_thread(_remove)
        logger.info('Discarded stored results for job %s', job_id)

    async def list_claimable_jobs(self, stale_after: timedelta, limit: int) -> List[str]:
        """Ids of claimable jobs, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job.id)
                .where(claimable_condition(datetime.utcnow(), stale_after))
                .order_by(Job.created_at)
                .limit(limit)
            )
            return [row[0] for row in result.fetchall()]
