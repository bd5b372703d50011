"""
Pydantic schemas for Job API operations.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


class PhraseIn(BaseModel):
    """One phrase to synthesize."""
    text: str = Field(..., min_length=1, max_length=5000, description='The text to synthesize')
    voice_id: str = Field(..., min_length=1, max_length=100, description="Provider voice name, e.g. 'en-US-Standard-A'")
    language_code: str = Field(
        ...,
        min_length=2,
        max_length=35,
        pattern=r'^[A-Za-z]{2,3}(-[A-Za-z0-9]{2,8})*$',
        description="BCP-47 language code, e.g. 'en-US'",
    )


class JobCreate(BaseModel):
    """Schema for creating a new TTS job."""
    phrases: List[PhraseIn] = Field(default_factory=list, max_length=500)


class SynthesisResultResponse(BaseModel):
    """Audio produced for one phrase."""
    model_config = ConfigDict(from_attributes=True)

    phrase_index: int
    audio_path: str
    size_bytes: int


class JobResponse(BaseModel):
    """Schema for job response."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    phrases: List[PhraseIn]
    status: str
    error_code: Optional[str]
    attempt_count: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]
    results: List[SynthesisResultResponse] = Field(default_factory=list)


class JobListResponse(BaseModel):
    """Schema for paginated job list response."""
    jobs: List[JobResponse]
    total: int
    limit: int
    offset: int


class SweepResponse(BaseModel):
    """Summary of one pass over claimable jobs."""
    processed: int
    succeeded: int
    failed: int
    requeued: int
    skipped: int
