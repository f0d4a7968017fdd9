import os
import sys
from concurrent.futures import Executor, Future

import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()

from replaylist.application.events import EventLoop  # noqa: E402
from replaylist.application.migration import MigrationSession  # noqa: E402
from replaylist.crosscutting.config import Settings  # noqa: E402
from replaylist.domain.errors import UnsupportedProvider  # noqa: E402
from replaylist.domain.providers import Provider  # noqa: E402


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(result)
        return future


class FakeBackend:
    """In-memory backend recording every call in issue order."""

    def __init__(self):
        self.status = {}
        self.playlists = {}
        self.calls = []
        self.transfers = []
        self.registered_tokens = []
        self.status_error = None
        self.transfer_errors = {}
        self.register_error = None
        self.devtoken_error = None

    def login_status(self):
        self.calls.append(('GET', '/api/login/status'))
        if self.status_error is not None:
            raise self.status_error
        return dict(self.status)

    def logout_all(self):
        self.calls.append(('POST', '/api/logout_all'))
        self.status = {}

    def logout(self, provider):
        self.calls.append(('POST', f'/api/logout/{provider.value}'))
        self.status.pop(provider.value, None)

    def fetch_playlists(self, provider):
        self.calls.append(('GET', f'/api/{provider.value}/playlists'))
        if provider is Provider.AMAZON:
            raise UnsupportedProvider("No playlist endpoint for amazon")
        payload = self.playlists.get(provider, [])
        if isinstance(payload, Exception):
            raise payload
        return payload

    def apple_developer_token(self):
        self.calls.append(('GET', '/api/apple/devtoken'))
        if self.devtoken_error is not None:
            raise self.devtoken_error
        return "dev-token"

    def register_apple_token(self, token):
        self.calls.append(('POST', '/api/apple/usertoken'))
        if self.register_error is not None:
            raise self.register_error
        self.registered_tokens.append(token)
        self.status['apple'] = True

    def transfer(self, destination, playlist):
        self.calls.append(('POST', f'/api/transfer/to/{destination.value}'))
        error = self.transfer_errors.get(playlist['id'])
        if error is not None:
            raise error
        self.transfers.append((destination, playlist))


class RecordingBridge:
    def __init__(self):
        self.triggers = 0

    def trigger_login(self):
        self.triggers += 1


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def bridge():
    return RecordingBridge()


@pytest.fixture
def inline_executor():
    return InlineExecutor


@pytest.fixture
def inline_loop():
    loop = EventLoop(executor=InlineExecutor())
    yield loop
    loop.close()


@pytest.fixture
def make_session(backend, bridge):
    """Factory for a MigrationSession whose requests all run inline."""
    created = []

    def _make(settings=None, **overrides):
        session = MigrationSession(
            overrides.get('backend', backend),
            bridge=overrides.get('bridge', bridge),
            settings=settings or Settings(apple_retry_ms=20),
            loop=EventLoop(executor=InlineExecutor()),
            transfer_executor_factory=lambda workers: InlineExecutor(),
        )
        created.append(session)
        return session

    yield _make
    for session in created:
        session.close()


@pytest.fixture
def playlist_payload():
    return [
        {
            "id": "p1", "name": "Chill", "cover": "u", "track_count": 2,
            "tracks": [
                {"title": "A", "artist": "X", "isrc": None},
                {"title": "B", "artist": "Y", "isrc": "US123"},
            ],
        },
        {
            "id": "p2", "name": "Workout", "cover": "v", "track_count": 40,
            "tracks": [],
        },
    ]


@pytest.fixture(autouse=True)
def _clear_replaylist_env():
    """Keep REPLAYLIST_* and OAuth variables from leaking into tests."""
    prefixes = ('REPLAYLIST_', 'SPOTIFY_', 'YOUTUBE_', 'AMAZON_')
    backup = {k: v for k, v in os.environ.items() if k.startswith(prefixes)}
    for k in backup:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k in [k for k in os.environ if k.startswith(prefixes)]:
            os.environ.pop(k, None)
        os.environ.update(backup)
