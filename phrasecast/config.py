"""
Application configuration and paths.

Settings are loaded once at startup by ``load_settings()`` and passed
explicitly to every component. Nothing else reads the environment.
"""
import re
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Application identity
APP_NAME = 'Phrasecast'
APP_VERSION = '0.1.0'

# Server configuration
SERVER_HOST = '127.0.0.1'
SERVER_PORT = 5111

# Default data directory
DATA_DIR = Path.home() / '.phrasecast'

# Database configuration
DATABASE_PATH = DATA_DIR / 'phrasecast.db'
DATABASE_URL = f'sqlite+aiosqlite:///{DATABASE_PATH}'

# Audio storage
AUDIO_DIR = DATA_DIR / 'audio'

# Google Cloud Text-to-Speech REST endpoint
PROVIDER_BASE_URL = 'https://texttospeech.googleapis.com/v1'

_HEX_KEY_RE = re.compile(r'^[0-9a-fA-F]{64}\Z')


class Settings(BaseSettings):
    """
    Process-wide configuration.

    Values come from ``PHRASECAST_*`` environment variables or a ``.env``
    file. The model is frozen so one instance can be shared by reference.
    """
    model_config = SettingsConfigDict(
        env_prefix='PHRASECAST_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        frozen=True,
    )

    # 32-byte AES key as 64 hex characters
    encryption_key: str

    database_url: str = DATABASE_URL
    audio_dir: Path = AUDIO_DIR

    # Provider
    provider_base_url: str = PROVIDER_BASE_URL
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    audio_encoding: str = 'MP3'
    sample_rate_hertz: int = Field(default=22050, gt=0)
    speaking_rate: float = Field(default=1.0, gt=0)

    # Retry policy
    max_attempts: int = Field(default=3, ge=1)
    retry_backoff_base_seconds: float = Field(default=5.0, ge=0)
    retry_backoff_max_seconds: float = Field(default=300.0, ge=0)

    # Worker
    stale_claim_seconds: float = Field(default=600.0, gt=0)
    sweep_interval_seconds: float = Field(default=30.0, gt=0)
    sweep_batch_size: int = Field(default=20, ge=1)
    worker_id: Optional[str] = None

    log_level: str = 'INFO'

    @field_validator('encryption_key')
    @classmethod
    def _check_encryption_key(cls, value: str) -> str:
        if len(value) != 64:
            raise ValueError(
                f'encryption key must be a 64-character hex string (got {len(value)} characters)'
            )
        if not _HEX_KEY_RE.match(value):
            raise ValueError('encryption key contains non-hexadecimal characters')
        return value

    @property
    def encryption_key_bytes(self) -> bytes:
        return bytes.fromhex(self.encryption_key)


def load_settings(**overrides) -> Settings:
    """
    Load and validate settings once at process start.

    Raises pydantic.ValidationError if the encryption key is missing or
    malformed, so a misconfigured process never reaches job processing.
    """
    return Settings(**overrides)


def ensure_directories(settings: Settings):
    """Create required directories if they don't exist."""
    settings.audio_dir.mkdir(parents=True, exist_ok=True)
    if settings.database_url.startswith('sqlite') and ':///' in settings.database_url:
        db_path = settings.database_url.split(':///', 1)[1]
        if db_path and db_path != ':memory:':
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
