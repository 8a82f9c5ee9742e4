"""Global test configuration and fixtures."""

import datetime as dt

import pytest
from fastapi.testclient import TestClient

from step_rewards.config import Settings
from step_rewards.dependencies import get_engine
from step_rewards.engine import RewardsEngine
from step_rewards.main import create_app
from step_rewards.models import RewardEvent
from step_rewards.storage import InMemoryStore

NOW = dt.datetime(2026, 3, 10, 12, 0, tzinfo=dt.UTC)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: dt.datetime = NOW):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Collects dispatched reward events."""

    def __init__(self):
        self.events: list[RewardEvent] = []

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def dispatch(self, event: RewardEvent) -> None:
        self.events.append(event)


def native_sample(steps, minutes_before: int = 0, now: dt.datetime = NOW, **extra) -> dict:
    """Native health payload timestamped ``minutes_before`` minutes before ``now``."""
    ts = now - dt.timedelta(minutes=minutes_before)
    return {"source": "native-health", "steps": steps, "end_date": ts.isoformat(), **extra}


@pytest.fixture()
def settings():
    """Settings isolated from .env files, with the background rollover disabled."""
    return Settings(_env_file=None, rollover_enabled=False, log_format="console")


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store():
    return InMemoryStore()


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def engine(store, settings, clock, dispatcher):
    return RewardsEngine(store, settings, clock=clock, dispatcher=dispatcher)


@pytest.fixture()
def client(settings, store, dispatcher, engine):
    """Test client whose routes use the fixture engine."""
    app = create_app(settings, store=store, dispatcher=dispatcher)
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture()
def payload():
    """Factory for native health payloads."""
    return native_sample
