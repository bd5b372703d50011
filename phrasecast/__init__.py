"""
Phrasecast: asynchronous text-to-speech jobs with encrypted provider credentials.
"""
from phrasecast.config import APP_VERSION

__version__ = APP_VERSION
