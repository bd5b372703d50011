"""
TTS credential endpoints.

The key is verified with the provider, encrypted, and stored. It is never
returned; callers only see whether one is configured and its fingerprint.
"""
import logging
from datetime import datetime

import httpx
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from phrasecast.config import Settings
from phrasecast.database import get_db
from phrasecast.dependencies import get_current_user_id, get_http_client, get_settings, get_vault
from phrasecast.errors import ErrorCode, ProviderError
from phrasecast.models import Credential
from phrasecast.schemas.credential import CredentialSave, CredentialState
from phrasecast.services.credential_vault import CredentialVault, key_fingerprint
from phrasecast.services.tts_client import SpeechSynthesisClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/tts-credentials', tags=['credentials'])

# HTTP status returned to our caller per provider failure kind
_PROVIDER_ERROR_STATUS = {
    ErrorCode.invalid_key: 400,
    ErrorCode.quota_exceeded: 402,
    ErrorCode.timeout: 504,
    ErrorCode.provider_error: 502,
}


@router.get('', response_model=CredentialState)
async def get_credential_state(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> CredentialState:
    """Report whether the caller has a stored key."""
    result = await db.execute(select(Credential).where(Credential.user_id == user_id))
    credential = result.scalar_one_or_none()

    if not credential:
        return CredentialState(is_configured=False)

    return CredentialState(
        is_configured=True,
        key_fingerprint=credential.key_fingerprint,
        last_validated_at=credential.last_validated_at,
    )


@router.put('', response_model=CredentialState)
async def save_credential(
    payload: CredentialSave,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> CredentialState:
    """
    Verify, encrypt and store the caller's provider key.

    Raises:
        400/402/504/502: the provider rejected or failed the verification call
    """
    api_key = payload.api_key.strip()
    client = SpeechSynthesisClient.from_settings(api_key, settings, http_client)
    try:
        await client.verify_key()
    except ProviderError as e:
        raise HTTPException(
            status_code=_PROVIDER_ERROR_STATUS.get(e.kind, 502),
            detail={'code': e.kind.value, 'message': 'TTS credential verification failed'},
        ) from None
    finally:
        client.close()

    sealed = vault.encrypt(api_key)
    fingerprint = key_fingerprint(api_key)
    now = datetime.utcnow()

    result = await db.execute(select(Credential).where(Credential.user_id == user_id))
    credential = result.scalar_one_or_none()
    if credential is None:
        credential = Credential(user_id=user_id)
        db.add(credential)

    credential.ciphertext = sealed.ciphertext
    credential.iv = sealed.iv
    credential.auth_tag = sealed.auth_tag
    credential.key_fingerprint = fingerprint
    credential.last_validated_at = now
    await db.commit()

    logger.info('Stored TTS credential for user %s (%s)', user_id, fingerprint)

    return CredentialState(
        is_configured=True,
        key_fingerprint=fingerprint,
        last_validated_at=now,
    )


@router.delete('', status_code=204)
async def delete_credential(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Remove the caller's stored key."""
    await db.execute(delete(Credential).where(Credential.user_id == user_id))
    await db.commit()
