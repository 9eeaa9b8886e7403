import pytest
import responses
from fastapi.testclient import TestClient

from chatbroker.engine import EngineClient
from chatbroker.lifecycle import JobLifecycle
from chatbroker.main import create_app
from chatbroker.settings import Settings
from chatbroker.storage import InMemoryJobStore

ENGINE_URL = "http://engine.test/webhook/chat"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENGINE_WEBHOOK_URL=ENGINE_URL,
        REAPER_ENABLED=False,
        DISPATCH_TIMEOUT_SECONDS=1.0,
        SYNC_TIMEOUT_SECONDS=1.0,
        PING_TIMEOUT_SECONDS=1.0,
    )


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def lifecycle(store, clock):
    return JobLifecycle(store, clock=clock)


@pytest.fixture
def engine(settings):
    client = EngineClient(settings)
    yield client
    client.close()


@pytest.fixture
def mocked_engine():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def broker(app):
    return app.state.broker


@pytest.fixture
def client(app):
    return TestClient(app)
