"""
Pydantic schemas for TTS credential operations.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class CredentialSave(BaseModel):
    """Provider API key submitted by the user."""
    api_key: str = Field(..., min_length=1, max_length=512)


class CredentialState(BaseModel):
    """What the user may see about their stored key. Never the key itself."""
    is_configured: bool
    key_fingerprint: Optional[str] = None
    last_validated_at: Optional[datetime] = None
