"""
Retry decisions for failed synthesis attempts.

Pure functions: no I/O, no clock. The scheduler applies the delay.
"""
from dataclasses import dataclass

from phrasecast.errors import ErrorCode

DEFAULT_MAX_ATTEMPTS = 3

# Need user action; retrying cannot change the outcome
PERMANENT_KINDS = frozenset({
    ErrorCode.invalid_key,
    ErrorCode.quota_exceeded,
    ErrorCode.credential_error,
    ErrorCode.internal_error,
})

RETRYABLE_KINDS = frozenset({
    ErrorCode.timeout,
    ErrorCode.provider_error,
})


@dataclass(frozen=True)
class RetryDecision:
    """
    Outcome of ``decide``.

    Attributes:
        retry: True to requeue the job
        error_code: The failure kind, recorded on the job when not retrying
        delay_seconds: Suggested wait before the next attempt (0 when permanent)
    """
    retry: bool
    error_code: ErrorCode
    delay_seconds: float = 0.0


def backoff_delay(attempt_count: int, base_seconds: float, max_seconds: float) -> float:
    """Exponential backoff: base, 2*base, 4*base... capped at max_seconds."""
    exponent = max(0, attempt_count - 1)
    return min(max_seconds, base_seconds * (2 ** exponent))


def decide(
    error_kind: ErrorCode,
    attempt_count: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_base_seconds: float = 0.0,
    backoff_max_seconds: float = 0.0,
) -> RetryDecision:
    """
    Decide whether a failed attempt should be retried.

    Args:
        error_kind: Classified failure
        attempt_count: Attempts made so far, including the one that failed
        max_attempts: Attempt ceiling for retryable kinds

    Returns:
        RetryDecision
    """
    kind = ErrorCode(error_kind)
    if kind in RETRYABLE_KINDS and attempt_count < max_attempts:
        return RetryDecision(
            retry=True,
            error_code=kind,
            delay_seconds=backoff_delay(attempt_count, backoff_base_seconds, backoff_max_seconds),
        )
    return RetryDecision(retry=False, error_code=kind)


class RetryPolicy:
    """``decide`` bound to configured limits."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base_seconds: float = 5.0,
        backoff_max_seconds: float = 300.0,
    ):
        if max_attempts < 1:
            raise ValueError('max_attempts must be at least 1')
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    @classmethod
    def from_settings(cls, settings) -> 'RetryPolicy':
        return cls(
            max_attempts=settings.max_attempts,
            backoff_base_seconds=settings.retry_backoff_base_seconds,
            backoff_max_seconds=settings.retry_backoff_max_seconds,
        )

    def decide(self, error_kind: ErrorCode, attempt_count: int) -> RetryDecision:
        return decide(
            error_kind,
            attempt_count,
            max_attempts=self.max_attempts,
            backoff_base_seconds=self.backoff_base_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
        )
