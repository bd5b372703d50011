"""
FastAPI routers.
"""
from phrasecast.routers.health import router as health_router
from phrasecast.routers.jobs import router as jobs_router
from phrasecast.routers.credentials import router as credentials_router

__all__ = ['health_router', 'jobs_router', 'credentials_router']
