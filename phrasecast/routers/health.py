"""
Health check endpoint.
"""
from pydantic import BaseModel
from fastapi import APIRouter, Depends

from phrasecast.config import APP_VERSION
from phrasecast.dependencies import get_job_processor, get_vault
from phrasecast.services.credential_vault import CredentialVault
from phrasecast.services.job_processor import JobProcessor


router = APIRouter(tags=['health'])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    vault_ok: bool
    processor_running: bool
    version: str


@router.get('/health', response_model=HealthResponse)
async def health_check(
    vault: CredentialVault = Depends(get_vault),
    processor: JobProcessor = Depends(get_job_processor),
) -> HealthResponse:
    """
    Check server health status.

    Fast response - no database queries.
    """
    vault_ok = vault.self_check()
    return HealthResponse(
        status='ok' if vault_ok else 'degraded',
        vault_ok=vault_ok,
        processor_running=processor.is_running,
        version=APP_VERSION,
    )
