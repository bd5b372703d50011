"""
SQLAlchemy models.
"""
from phrasecast.models.job import Base, Job, JobStatus, SynthesisResult, TERMINAL_STATUSES
from phrasecast.models.credential import Credential

__all__ = ['Base', 'Job', 'JobStatus', 'SynthesisResult', 'TERMINAL_STATUSES', 'Credential']
