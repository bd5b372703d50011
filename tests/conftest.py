"""
Pytest fixtures for testing.
"""
import asyncio
import base64
from datetime import datetime, timedelta
from typing import AsyncGenerator, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from phrasecast.config import load_settings
from phrasecast.models import Base, JobStatus
from phrasecast.services.credential_vault import CredentialVault, EncryptedCredential
from phrasecast.services.job_processor import JobProcessor
from phrasecast.services.job_store import JobSnapshot, Phrase, SqlJobStore
from phrasecast.services.job_worker import JobWorker
from phrasecast.services.retry_policy import RetryPolicy


TEST_KEY_HEX = '00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff'
OTHER_KEY_HEX = 'ffeeddccbbaa99887766554433221100ffeeddccbbaa99887766554433221100'
TEST_API_KEY = 'AIzaSy-test-provider-key-123'
USER_ID = '11111111-1111-1111-1111-111111111111'
OTHER_USER_ID = '22222222-2222-2222-2222-222222222222'


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a temporary database and audio directory."""
    return load_settings(
        encryption_key=TEST_KEY_HEX,
        database_url=f'sqlite+aiosqlite:///{tmp_path / "test.db"}',
        audio_dir=tmp_path / 'audio',
        provider_base_url='https://tts.test/v1',
        worker_id='test-worker',
        retry_backoff_base_seconds=0,
        retry_backoff_max_seconds=0,
    )


@pytest.fixture
def vault():
    return CredentialVault.from_hex(TEST_KEY_HEX)


@pytest_asyncio.fixture(scope='function')
async def test_engine(test_settings):
    """Create a test database engine."""
    engine = create_async_engine(test_settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope='function')
async def test_session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def sql_store(test_session_factory, test_settings):
    return SqlJobStore(test_session_factory, test_settings.audio_dir, test_settings.audio_encoding)


class InMemoryJobStore:
    """
    JobStore fake holding rows in dicts.

    claim_job has no await between check and write, so it is atomic under
    asyncio just like the conditional UPDATE it stands in for.
    """

    def __init__(self):
        self.jobs: Dict[str, dict] = {}
        self.credentials: Dict[str, EncryptedCredential] = {}
        self.results: Dict[tuple, bytes] = {}
        self.status_updates: List[tuple] = []
        self.discarded: List[str] = []
        self.fail_updates = False
        self.fail_result_at: Optional[int] = None

    def add_job(
        self,
        job_id: str,
        phrases: List[Phrase],
        user_id: str = USER_ID,
        status: JobStatus = JobStatus.queued,
        attempt_count: int = 0,
        locked_at: Optional[datetime] = None,
        locked_by: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        self.jobs[job_id] = {
            'user_id': user_id,
            'phrases': list(phrases),
            'status': status,
            'error_code': None,
            'attempt_count': attempt_count,
            'locked_at': locked_at,
            'locked_by': locked_by,
            'not_before': None,
            'created_at': created_at or datetime.utcnow(),
        }
        return job_id

    @staticmethod
    def _claimable(job, now, stale_after):
        if job['status'] == JobStatus.queued:
            return job['locked_at'] is None and (job['not_before'] is None or job['not_before'] <= now)
        if job['status'] == JobStatus.processing:
            return job['locked_at'] is None or job['locked_at'] < now - stale_after
        return False

    async def claim_job(self, job_id, worker_id, stale_after):
        job = self.jobs.get(job_id)
        now = datetime.utcnow()
        if job is None or not self._claimable(job, now, stale_after):
            return False
        job.update(
            status=JobStatus.processing,
            locked_at=now,
            locked_by=worker_id,
            attempt_count=job['attempt_count'] + 1,
        )
        return True

    async def get_job(self, job_id):
        job = self.jobs.get(job_id)
        if job is None:
            return None
        return JobSnapshot(
            id=job_id,
            user_id=job['user_id'],
            status=job['status'],
            attempt_count=job['attempt_count'],
            phrases=list(job['phrases']),
            error_code=job['error_code'],
        )

    async def get_credential(self, user_id):
        return self.credentials.get(user_id)

    async def update_job_status(self, job_id, worker_id, status, error_code, attempt_count, not_before=None):
        if self.fail_updates:
            raise RuntimeError('database unavailable')
        self.status_updates.append((job_id, status, error_code, attempt_count))
        job = self.jobs.get(job_id)
        if job is None or job['locked_by'] != worker_id:
            return False
        job.update(
            status=status,
            error_code=error_code if status == JobStatus.failed else None,
            locked_at=None,
            locked_by=None,
            not_before=not_before if status == JobStatus.queued else None,
        )
        if attempt_count is not None:
            job['attempt_count'] = attempt_count
        return True

    async def store_result(self, job_id, phrase_index, audio):
        if phrase_index == self.fail_result_at:
            raise OSError('disk full')
        self.results[(job_id, phrase_index)] = audio

    async def discard_results(self, job_id):
        self.discarded.append(job_id)
        for key in [k for k in self.results if k[0] == job_id]:
            del self.results[key]

    async def list_claimable_jobs(self, stale_after, limit):
        now = datetime.utcnow()
        ids = [
            job_id for job_id, job in sorted(self.jobs.items(), key=lambda item: item[1]['created_at'])
            if self._claimable(job, now, stale_after)
        ]
        return ids[:limit]


class FakeSynthesisClient:
    """
    Stands in for SpeechSynthesisClient.

    ``script`` is consumed one entry per synthesize call: bytes are returned,
    exceptions are raised. When it runs out, audio derived from the text is
    returned.
    """

    def __init__(self, api_key: str, script: list, calls: list):
        self.api_key = api_key
        self._script = script
        self.calls = calls
        self.closed = False

    async def synthesize(self, text, voice_id, language_code):
        self.calls.append((text, voice_id, language_code))
        await asyncio.sleep(0)
        if self._script:
            item = self._script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return f'audio:{text}'.encode()

    def close(self):
        self.closed = True


class FakeClientFactory:
    """Records the keys it is given and the clients it builds."""

    def __init__(self):
        self.script: list = []
        self.calls: list = []
        self.api_keys: List[str] = []
        self.clients: List[FakeSynthesisClient] = []

    def __call__(self, api_key: str) -> FakeSynthesisClient:
        self.api_keys.append(api_key)
        client = FakeSynthesisClient(api_key, self.script, self.calls)
        self.clients.append(client)
        return client


@pytest.fixture
def memory_store(vault):
    store = InMemoryJobStore()
    store.credentials[USER_ID] = vault.encrypt(TEST_API_KEY)
    return store


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def make_worker(vault, client_factory):
    """Build a JobWorker over the given store with the fake client factory."""

    def _make(store, worker_id='worker-a', max_attempts=3, stale_after=timedelta(minutes=10), backoff_base_seconds=0):
        return JobWorker(
            store=store,
            vault=vault,
            client_factory=client_factory,
            retry_policy=RetryPolicy(
                max_attempts=max_attempts,
                backoff_base_seconds=backoff_base_seconds,
                backoff_max_seconds=60,
            ),
            stale_after=stale_after,
            worker_id=worker_id,
        )

    return _make


@pytest.fixture
def phrases():
    return [
        Phrase(text='Hello', voice_id='en-US-Standard-A', language_code='en-US'),
        Phrase(text='Hola', voice_id='es-ES-Standard-A', language_code='es-ES'),
    ]


def provider_handler(status_code: int = 200, audio: bytes = b'ID3fake-mp3', voices: Optional[list] = None) -> Callable:
    """httpx.MockTransport handler imitating the provider."""

    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={'error': {'code': status_code, 'message': 'nope'}})
        if request.url.path.endswith('/voices'):
            return httpx.Response(200, json={'voices': voices if voices is not None else [{'name': 'en-US-Wavenet-D'}]})
        return httpx.Response(200, json={'audioContent': base64.b64encode(audio).decode()})

    return handler


@pytest.fixture
def mock_job_processor():
    """Create a mock job processor for route tests."""
    processor = MagicMock(spec=JobProcessor)
    processor.enqueue = AsyncMock()
    processor.run_sweep = AsyncMock(return_value=[])
    processor.is_running = True
    return processor


@pytest.fixture
def provider_state():
    """Mutable provider behaviour for the API client fixture."""
    return {'status_code': 200}


@pytest_asyncio.fixture
async def client(test_settings, test_engine, test_session_factory, vault, mock_job_processor, provider_state):
    """Create a test client with test components on app.state."""
    from server import create_app

    app = create_app(test_settings)

    def handler(request):
        return provider_handler(provider_state['status_code'])(request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    # ASGITransport does not run the lifespan, so wire state directly
    app.state.settings = test_settings
    app.state.engine = test_engine
    app.state.session_factory = test_session_factory
    app.state.vault = vault
    app.state.http_client = http_client
    app.state.job_processor = mock_job_processor

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url='http://test',
        headers={'X-User-Id': USER_ID},
    ) as client:
        yield client

    await http_client.aclose()