"""
Credential vault: AES-256-GCM encryption of provider API keys.

The key is always passed in explicitly. ``CredentialVault`` binds the
process-wide key loaded from Settings; the module-level ``encrypt`` and
``decrypt`` take it as an argument.
"""
import hashlib
import logging
import os
import re
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from phrasecast.errors import DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # 256 bits
IV_LENGTH = 12  # 96 bits, the GCM standard nonce size
TAG_LENGTH = 16  # 128 bits

_HEX_KEY_RE = re.compile(r'^[0-9a-fA-F]{64}\Z')


@dataclass(frozen=True)
class EncryptedCredential:
    """Ciphertext, nonce and authentication tag as stored."""
    ciphertext: bytes
    iv: bytes
    auth_tag: bytes


def parse_encryption_key(hex_key: str) -> bytes:
    """
    Convert a 64-character hex string into 32 key bytes.

    Raises:
        ValueError: wrong length or non-hex characters
    """
    hex_key = hex_key or ''
    if len(hex_key) != KEY_LENGTH * 2:
        raise ValueError(
            f'Encryption key must be a {KEY_LENGTH * 2}-character hex string (got {len(hex_key)})'
        )
    if not _HEX_KEY_RE.match(hex_key):
        raise ValueError('Encryption key contains invalid hex characters')
    return bytes.fromhex(hex_key)


def key_fingerprint(api_key: str) -> str:
    """SHA-256 fingerprint of an API key for display purposes only."""
    digest = hashlib.sha256(api_key.encode('utf-8')).hexdigest()
    return f'SHA256:{digest[:16]}'


def encrypt(plaintext: Union[bytes, str], key: bytes) -> EncryptedCredential:
    """
    Encrypt ``plaintext`` with a fresh random IV.

    Args:
        plaintext: Bytes, or text which is encoded as UTF-8
        key: 32-byte AES key

    Returns:
        EncryptedCredential with the tag split off the ciphertext
    """
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise ValueError(f'Encryption key must be {KEY_LENGTH} bytes')
    if isinstance(plaintext, str):
        plaintext = plaintext.encode('utf-8')

    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(bytes(key)).encrypt(iv, bytes(plaintext), None)
    return EncryptedCredential(
        ciphertext=sealed[:-TAG_LENGTH],
        iv=iv,
        auth_tag=sealed[-TAG_LENGTH:],
    )


def decrypt(ciphertext: bytes, iv: bytes, auth_tag: bytes, key: bytes) -> bytes:
    """
    Decrypt and authenticate a stored credential.

    Raises:
        DecryptionError: malformed component, wrong key length, or the tag
            does not verify (tampering, corruption, or a different key)
    """
    for name, value in (('ciphertext', ciphertext), ('iv', iv), ('auth_tag', auth_tag), ('key', key)):
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise DecryptionError(f'{name} must be bytes')
    if len(key) != KEY_LENGTH:
        raise DecryptionError('Encryption key has the wrong length')
    if len(iv) != IV_LENGTH:
        raise DecryptionError('IV has the wrong length')
    if len(auth_tag) != TAG_LENGTH:
        raise DecryptionError('Authentication tag has the wrong length')

    try:
        return AESGCM(bytes(key)).decrypt(bytes(iv), bytes(ciphertext) + bytes(auth_tag), None)
    except InvalidTag:
        raise DecryptionError('Authentication tag did not verify') from None


class CredentialVault:
    """
    Encrypts and decrypts provider API keys with one injected key.

    The key is immutable for the lifetime of the vault. Rotating it makes
    previously stored credentials undecryptable.
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise ValueError(f'Encryption key must be {KEY_LENGTH} bytes')
        self._key = bytes(key)

    @classmethod
    def from_hex(cls, hex_key: str) -> 'CredentialVault':
        return cls(parse_encryption_key(hex_key))

    def encrypt(self, plaintext: Union[bytes, str]) -> EncryptedCredential:
        return encrypt(plaintext, self._key)

    def decrypt(self, credential: EncryptedCredential) -> bytes:
        return decrypt(credential.ciphertext, credential.iv, credential.auth_tag, self._key)

    def decrypt_text(self, credential: EncryptedCredential) -> str:
        """Decrypt to a UTF-8 string; undecodable plaintext is a DecryptionError."""
        plaintext = bytearray(self.decrypt(credential))
        try:
            return plaintext.decode('utf-8')
        except UnicodeDecodeError:
            raise DecryptionError('Decrypted credential is not valid UTF-8') from None
        finally:
            plaintext[:] = bytes(len(plaintext))

    def self_check(self) -> bool:
        """Round-trip a throwaway value to confirm the key works."""
        sample = b'phrasecast-vault-self-check'
        try:
            return self.decrypt(self.encrypt(sample)) == sample
        except DecryptionError:
            logger.exception('Credential vault self-check failed')
            return False
