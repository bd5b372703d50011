#!/usr/bin/env python3
"""
Phrasecast FastAPI Server

Stores users' TTS provider keys encrypted at rest and converts submitted
phrases to audio asynchronously through a background job worker.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI

from phrasecast.config import APP_NAME, APP_VERSION, SERVER_HOST, SERVER_PORT, Settings, load_settings
from phrasecast.database import close_db, create_engine, create_session_factory, init_db
from phrasecast.routers import credentials_router, health_router, jobs_router
from phrasecast.services.credential_vault import CredentialVault
from phrasecast.services.job_processor import JobProcessor
from phrasecast.services.job_store import SqlJobStore
from phrasecast.services.job_worker import JobWorker

logger = logging.getLogger('phrasecast')


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


async def startup(app: FastAPI, settings: Settings):
    """
    Build every component from one Settings value and attach them to app.state.

    Startup:
        - Create engine and tables
        - Build the credential vault from the configured key
        - Open the shared HTTP client for provider calls
        - Build the job worker and start the job processor
    """
    engine = create_engine(settings)
    await init_db(engine, settings)
    session_factory = create_session_factory(engine)

    vault = CredentialVault(settings.encryption_key_bytes)
    http_client = httpx.AsyncClient()

    store = SqlJobStore(session_factory, settings.audio_dir, settings.audio_encoding)
    worker = JobWorker.from_settings(settings, store, vault, http_client)
    processor = JobProcessor.from_settings(settings, worker)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.vault = vault
    app.state.http_client = http_client
    app.state.job_worker = worker
    app.state.job_processor = processor

    await processor.start()
    logger.info('Job processor started as worker %s', worker.worker_id)


async def shutdown(app: FastAPI):
    """Stop the job processor, close the HTTP client and the database."""
    await app.state.job_processor.stop()
    await app.state.http_client.aclose()
    await close_db(app.state.engine)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Settings are loaded at startup when not given, so a missing or malformed
    encryption key stops the server before any job is processed.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or load_settings()
        configure_logging(resolved.log_level)
        logger.info('Starting %s v%s...', APP_NAME, APP_VERSION)

        await startup(app, resolved)
        logger.info('Server ready at http://%s:%s', SERVER_HOST, SERVER_PORT)

        yield

        logger.info('Shutting down...')
        await shutdown(app)
        logger.info('Shutdown complete.')

    app = FastAPI(
        title=APP_NAME,
        description='Asynchronous text-to-speech jobs with encrypted provider credentials.',
        version=APP_VERSION,
        lifespan=lifespan,
    )

    app.include_router(health_router)
    app.include_router(credentials_router)
    app.include_router(jobs_router)

    return app


app = create_app()


if __name__ == '__main__':
    uvicorn.run(
        app,
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=False,
        log_level='info',
    )
