"""
Encrypted TTS provider credential, one per user.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, LargeBinary

from phrasecast.models.job import Base


class Credential(Base):
    """
    A user's provider API key, encrypted with AES-256-GCM.

    Only ciphertext, IV and tag are stored; the fingerprint is a truncated
    SHA-256 of the key for display.
    """
    __tablename__ = 'tts_credentials'

    user_id = Column(String(36), primary_key=True)
    ciphertext = Column(LargeBinary, nullable=False)
    iv = Column(LargeBinary, nullable=False)
    auth_tag = Column(LargeBinary, nullable=False)
    key_fingerprint = Column(String(32), nullable=True)
    last_validated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Credential user={self.user_id} fingerprint={self.key_fingerprint}>'
