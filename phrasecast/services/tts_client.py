"""
Speech synthesis client for the Google Cloud Text-to-Speech REST API.

One request per call, no retries. HTTP outcomes are classified into
ErrorCode kinds; retry decisions belong to the retry policy and worker.
"""
import base64
import binascii
import logging
import re
from typing import Optional

import httpx

from phrasecast.config import Settings
from phrasecast.errors import ErrorCode, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_VOICE_NAME = 'en-US-Standard-A'

# Error bodies are only logged; keep them short
_MAX_LOGGED_BODY = 500

_STATUS_KINDS = {
    400: ErrorCode.invalid_key,
    402: ErrorCode.quota_exceeded,
    504: ErrorCode.timeout,
}


def classify_status(status_code: int) -> ErrorCode:
    """Map a non-2xx provider status to an error kind."""
    return _STATUS_KINDS.get(status_code, ErrorCode.provider_error)


def _redact(text: str, api_key: str) -> str:
    rendered = text or ''
    if api_key:
        rendered = rendered.replace(api_key, '***')
    return re.sub(r'(?i)(key=)[^&\s"\']+', r'\1***', rendered)


class SpeechSynthesisClient:
    """
    Stateless wrapper around the provider's REST endpoints.

    Built per job with the decrypted key and the shared httpx client; it
    keeps no state between calls.
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str,
        timeout_seconds: float = 30.0,
        audio_encoding: str = 'MP3',
        sample_rate_hertz: int = 22050,
        speaking_rate: float = 1.0,
    ):
        self._api_key = api_key
        self._http = http_client
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout_seconds
        self.audio_encoding = audio_encoding
        self.sample_rate_hertz = sample_rate_hertz
        self.speaking_rate = speaking_rate

    @classmethod
    def from_settings(cls, api_key: str, settings: Settings, http_client: httpx.AsyncClient) -> 'SpeechSynthesisClient':
        return cls(
            api_key=api_key,
            http_client=http_client,
            base_url=settings.provider_base_url,
            timeout_seconds=settings.provider_timeout_seconds,
            audio_encoding=settings.audio_encoding,
            sample_rate_hertz=settings.sample_rate_hertz,
            speaking_rate=settings.speaking_rate,
        )

    def close(self):
        """Drop the key reference once the job is done with it."""
        self._api_key = ''

    def build_request_body(self, text: str, voice_id: str, language_code: str) -> dict:
        return {
            'input': {'text': text},
            'voice': {
                'languageCode': language_code,
                'name': voice_id,
            },
            'audioConfig': {
                'audioEncoding': self.audio_encoding,
                'sampleRateHertz': self.sample_rate_hertz,
                'speakingRate': self.speaking_rate,
            },
        }

    async def _send(self, method: str, path: str, json: Optional[dict] = None) -> httpx.Response:
        headers = {
            'X-goog-api-key': self._api_key,
            'Content-Type': 'application/json',
        }
        try:
            response = await self._http.request(
                method,
                f'{self._base_url}{path}',
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning('Provider request %s %s timed out', method, path)
            raise ProviderError(ErrorCode.timeout, 'Provider request timed out') from e
        except httpx.HTTPError as e:
            logger.warning('Provider request %s %s failed: %s', method, path, type(e).__name__)
            raise ProviderError(ErrorCode.provider_error, 'Provider request failed') from e

        if not response.is_success:
            kind = classify_status(response.status_code)
            logger.warning(
                'Provider returned %s for %s %s (%s): %s',
                response.status_code,
                method,
                path,
                kind.value,
                _redact(response.text[:_MAX_LOGGED_BODY], self._api_key),
            )
            raise ProviderError(kind, f'Provider returned HTTP {response.status_code}', response.status_code)

        return response

    async def synthesize(self, text: str, voice_id: str, language_code: str) -> bytes:
        """
        Synthesize one phrase.

        Args:
            text: Text to speak
            voice_id: Provider voice name, e.g. 'en-US-Standard-A'
            language_code: BCP-47 code, e.g. 'en-US'

        Returns:
            Decoded audio bytes

        Raises:
            ProviderError: classified failure
        """
        response = await self._send(
            'POST',
            '/text:synthesize',
            json=self.build_request_body(text, voice_id, language_code),
        )
        try:
            audio_content = response.json()['audioContent']
            return base64.b64decode(audio_content, validate=True)
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            logger.warning('Provider returned a malformed synthesis response')
            raise ProviderError(
                ErrorCode.provider_error,
                'Malformed synthesis response',
                response.status_code,
            ) from e

    async def verify_key(self) -> str:
        """
        Check the key against the voices listing.

        Returns:
            Name of the first voice offered, as a sample
        """
        response = await self._send('GET', '/voices')
        try:
            voices = response.json().get('voices') or []
        except (ValueError, AttributeError) as e:
            raise ProviderError(ErrorCode.provider_error, 'Malformed voices response', response.status_code) from e
        if voices and isinstance(voices[0], dict) and voices[0].get('name'):
            return voices[0]['name']
        return DEFAULT_VOICE_NAME
