"""
Job model for TTS synthesis tasks.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, JSON, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class JobStatus(str, enum.Enum):
    """Status states for TTS jobs."""
    queued = 'queued'
    processing = 'processing'
    succeeded = 'succeeded'
    failed = 'failed'


TERMINAL_STATUSES = frozenset({JobStatus.succeeded, JobStatus.failed})


class Job(Base):
    """
    Represents a TTS synthesis job.

    Attributes:
        id: Unique job identifier (UUID)
        user_id: Owner of the job; their stored credential is used
        phrases: Ordered list of {text, voice_id, language_code}
        status: Current job status
        error_code: ErrorCode value, set only when failed
        attempt_count: Processing attempts so far, incremented on claim
        locked_at: When the current claim was taken (null = unclaimed)
        locked_by: Worker identity holding the claim
        not_before: Earliest time a requeued job may be claimed again
        created_at: Job creation timestamp
        updated_at: Last status change
        completed_at: When the job reached a terminal state
    """
    __tablename__ = 'jobs'
    __table_args__ = (
        Index('ix_jobs_status_created_at', 'status', 'created_at'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    phrases = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default=JobStatus.queued.value)
    error_code = Column(String(32), nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    locked_at = Column(DateTime, nullable=True)
    locked_by = Column(String(100), nullable=True)
    not_before = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f'<Job {self.id} status={self.status} attempts={self.attempt_count}>'


class SynthesisResult(Base):
    """
    Audio produced for one phrase of a succeeded job.

    Rows are written only once every phrase of the job has succeeded.
    """
    __tablename__ = 'synthesis_results'
    __table_args__ = (
        Index('ux_synthesis_results_job_phrase', 'job_id', 'phrase_index', unique=True),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), nullable=False, index=True)
    phrase_index = Column(Integer, nullable=False)
    audio_path = Column(Text, nullable=False)
    size_bytes = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<SynthesisResult job={self.job_id} phrase={self.phrase_index}>'
