"""
FastAPI dependencies.

Components are built once in the server lifespan and kept on
``app.state``; these accessors hand them to route handlers.
"""
import uuid
from typing import Optional

import httpx
from fastapi import Header, HTTPException, Request

from phrasecast.config import Settings
from phrasecast.services.credential_vault import CredentialVault
from phrasecast.services.job_processor import JobProcessor


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_job_processor(request: Request) -> JobProcessor:
    return request.app.state.job_processor


async def get_current_user_id(x_user_id: Optional[str] = Header(None, alias='X-User-Id')) -> str:
    """
    Caller identity, set by the authenticating gateway in front of this service.

    Usage:
        @router.get('/jobs')
        async def list_jobs(user_id: str = Depends(get_current_user_id)):
            ...
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail='Authentication required')
    try:
        return str(uuid.UUID(x_user_id))
    except ValueError:
        raise HTTPException(status_code=401, detail='Invalid user identity') from None
