"""
Error taxonomy for job processing.

``ErrorCode`` values are the only failure detail stored on a job and shown
to users. Provider bodies and cryptographic diagnostics stay in the logs.
"""
import enum
from typing import Optional


class ErrorCode(str, enum.Enum):
    """Values of ``Job.error_code``."""
    invalid_key = 'invalid_key'
    quota_exceeded = 'quota_exceeded'
    timeout = 'timeout'
    provider_error = 'provider_error'
    credential_error = 'credential_error'
    internal_error = 'internal_error'


class PhrasecastError(Exception):
    """Base class for errors raised by the job-processing core."""


class DecryptionError(PhrasecastError):
    """Stored credential could not be decrypted (tampered, corrupt, or wrong key)."""


class ProviderError(PhrasecastError):
    """
    A synthesis request failed.

    Attributes:
        kind: ErrorCode classifying the failure
        status_code: HTTP status from the provider, None for transport faults
    """

    def __init__(self, kind: ErrorCode, message: str = '', status_code: Optional[int] = None):
        super().__init__(message or kind.value)
        self.kind = ErrorCode(kind)
        self.status_code = status_code


class AlreadyClaimed(PhrasecastError):
    """Another worker holds a live claim on the job. Not a failure."""

    def __init__(self, job_id: str):
        super().__init__(f'Job {job_id} is already claimed')
        self.job_id = job_id


class InternalError(PhrasecastError):
    """Unexpected fault inside the worker."""
