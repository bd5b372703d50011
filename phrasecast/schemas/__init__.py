"""
Pydantic schemas for API request/response validation.
"""
from phrasecast.schemas.job import (
    PhraseIn,
    JobCreate,
    JobResponse,
    JobListResponse,
    SynthesisResultResponse,
    SweepResponse,
)
from phrasecast.schemas.credential import CredentialSave, CredentialState

__all__ = [
    'PhraseIn',
    'JobCreate',
    'JobResponse',
    'JobListResponse',
    'SynthesisResultResponse',
    'SweepResponse',
    'CredentialSave',
    'CredentialState',
]
