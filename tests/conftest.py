"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# Set test environment before importing app modules
_TEST_DIR = Path(tempfile.mkdtemp(prefix="ugc-engine-tests-"))
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'app.db'}"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["CELERY_BROKER_URL"] = "redis://localhost:6379/1"
os.environ["CELERY_RESULT_BACKEND"] = "redis://localhost:6379/1"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOCAL_STORAGE_PATH"] = str(_TEST_DIR / "storage")
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["QUEUE_INLINE_FALLBACK"] = "false"

from ugc_engine.adapters.render.base import (  # noqa: E402
    RenderJobRequest,
    RenderProvider,
    RenderStatus,
)
from ugc_engine.adapters.script.stub import StubScriptGenerator  # noqa: E402
from ugc_engine.adapters.storage.local import LocalAssetStore  # noqa: E402
from ugc_engine.db.models import Base  # noqa: E402
from ugc_engine.domain.enums import RenderState  # noqa: E402
from ugc_engine.jobs.queue import GenerationQueue  # noqa: E402
from ugc_engine.services.credits import CreditLedger  # noqa: E402
from ugc_engine.services.orchestrator import RenderOrchestrator  # noqa: E402
from ugc_engine.services.users import create_user  # noqa: E402
from ugc_engine.services.video_store import VideoStore  # noqa: E402
from ugc_engine.services.videos import VideoService  # noqa: E402

PRODUCT_DATA: dict[str, Any] = {
    "url": "https://shop.example.com/products/glow-serum",
    "title": "Glow Serum 30ml",
    "description": "Vitamin C serum for daily use.",
    "price": "$19.99",
    "images": [
        "https://cdn.example.com/glow-serum/front.jpg",
        "https://cdn.example.com/glow-serum/side.jpg",
    ],
}


# =============================================================================
# Doubles
# =============================================================================


class FakeRedis:
    """In-memory stand-in for the redis commands the queue and limiter issue."""

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.lists: dict[str, list[bytes]] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise redis.exceptions.ConnectionError("Connection refused")

    def set(self, key: str, value: Any, nx: bool = False, ex: int | None = None) -> bool | None:
        self._check()
        if nx and key in self.values:
            return None
        self.values[key] = value.encode() if isinstance(value, str) else value
        return True

    def get(self, key: str) -> bytes | None:
        self._check()
        return self.values.get(key)

    def delete(self, *keys: str) -> int:
        self._check()
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    def lpush(self, key: str, *values: Any) -> int:
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value.encode() if isinstance(value, str) else value)
        return len(items)

    def lrange(self, key: str, start: int, end: int) -> list[bytes]:
        self._check()
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]

    def ltrim(self, key: str, start: int, end: int) -> bool:
        self._check()
        items = self.lists.get(key, [])
        self.lists[key] = items[start:] if end == -1 else items[start : end + 1]
        return True

    def zremrangebyscore(self, key: str, low: float, high: float) -> int:
        self._check()
        members = self.zsets.get(key, {})
        doomed = [m for m, score in members.items() if low <= score <= high]
        for member in doomed:
            del members[member]
        return len(doomed)

    def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self._check()
        members = self.zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update(mapping)
        return added

    def zcard(self, key: str) -> int:
        self._check()
        return len(self.zsets.get(key, {}))

    def zrem(self, key: str, *members: str) -> int:
        self._check()
        zset = self.zsets.get(key, {})
        return sum(1 for member in members if zset.pop(member, None) is not None)

    def zrange(
        self, key: str, start: int, end: int, withscores: bool = False
    ) -> list[Any]:
        self._check()
        ordered = sorted(self.zsets.get(key, {}).items(), key=lambda item: (item[1], item[0]))
        ordered = ordered[start:] if end == -1 else ordered[start : end + 1]
        if withscores:
            return [(member.encode(), score) for member, score in ordered]
        return [member.encode() for member, _ in ordered]

    def expire(self, key: str, seconds: int) -> bool:
        self._check()
        return key in self.zsets or key in self.values or key in self.lists

    def ping(self) -> bool:
        self._check()
        return True

    def pipeline(self) -> "FakePipeline":
        return FakePipeline(self)


class FakePipeline:
    """Buffers commands until ``execute``."""

    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.commands: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Any:
        def buffer(*args: Any, **kwargs: Any) -> "FakePipeline":
            self.commands.append((name, args, kwargs))
            return self

        return buffer

    def execute(self) -> list[Any]:
        return [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in self.commands]


class ScriptedRenderProvider(RenderProvider):
    """Render provider that replays a fixed list of statuses.

    The last status repeats once the list is exhausted.
    """

    def __init__(
        self,
        statuses: list[RenderStatus | Exception] | None = None,
        create_error: Exception | None = None,
    ) -> None:
        self.statuses = statuses or [
            RenderStatus(
                state=RenderState.COMPLETED,
                progress=100,
                result_url="https://renders.example.com/out.mp4",
            )
        ]
        self.create_error = create_error
        self.requests: list[RenderJobRequest] = []
        self.polls = 0

    @property
    def name(self) -> str:
        return "scripted"

    async def create_job(self, request: RenderJobRequest) -> str:
        if self.create_error is not None:
            raise self.create_error
        self.requests.append(request)
        return f"task-{len(self.requests)}"

    async def get_status(self, external_job_id: str) -> RenderStatus:
        status = self.statuses[min(self.polls, len(self.statuses) - 1)]
        self.polls += 1
        if isinstance(status, Exception):
            raise status
        return status

    async def download(self, url: str) -> bytes:
        return b"MP4DATA:" + url.encode()


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """File-backed SQLite engine with serialized write transactions."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory: sessionmaker[Session]) -> CreditLedger:
    return CreditLedger(session_factory=session_factory)


@pytest.fixture
def store(session_factory: sessionmaker[Session]) -> VideoStore:
    return VideoStore(session_factory=session_factory)


@pytest.fixture
def make_user(session_factory: sessionmaker[Session], ledger: CreditLedger) -> Any:
    """Factory creating a user with a starting balance; returns the user id."""

    def _make(credits: int = 5, email: str | None = None) -> UUID:
        with session_factory() as session:
            with session.begin():
                user = create_user(
                    session,
                    ledger,
                    email or f"user-{uuid4().hex[:10]}@example.com",
                    signup_credits=credits,
                )
                return user.id

    return _make


# =============================================================================
# Queue and providers
# =============================================================================


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def celery_mock() -> MagicMock:
    return MagicMock()


@pytest.fixture
def queue(celery_mock: MagicMock, fake_redis: FakeRedis) -> GenerationQueue:
    return GenerationQueue(celery_app=celery_mock, redis_client=fake_redis)


@pytest.fixture
def render_provider() -> ScriptedRenderProvider:
    return ScriptedRenderProvider()


@pytest.fixture
def asset_store(tmp_path: Path) -> LocalAssetStore:
    return LocalAssetStore(
        base_path=tmp_path / "assets",
        base_url="http://testserver/media",
        secret="test-signing-secret",
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def orchestrator(
    store: VideoStore,
    ledger: CreditLedger,
    render_provider: ScriptedRenderProvider,
    asset_store: LocalAssetStore,
    sleep: RecordingSleep,
) -> RenderOrchestrator:
    return RenderOrchestrator(
        store=store,
        ledger=ledger,
        provider=render_provider,
        asset_store=asset_store,
        poll_interval=10.0,
        max_poll_attempts=5,
        sleep=sleep,
        asset_folder="ugc-videos",
        download_ttl_seconds=7 * 24 * 3600,
        credits_per_attempt=1,
    )


@pytest.fixture
def video_service(
    store: VideoStore, ledger: CreditLedger, queue: GenerationQueue
) -> VideoService:
    return VideoService(
        store=store,
        ledger=ledger,
        queue=queue,
        script_generator=StubScriptGenerator(),
        credits_per_generation=1,
    )


@pytest.fixture
def product_data() -> dict[str, Any]:
    return {**PRODUCT_DATA, "images": list(PRODUCT_DATA["images"])}


# =============================================================================
# API
# =============================================================================


@pytest.fixture(scope="session")
def test_client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    from ugc_engine.main import app

    with TestClient(app) as client:
        yield client


@pytest.fixture
def api_client(
    session_factory: sessionmaker[Session],
    ledger: CreditLedger,
    video_service: VideoService,
) -> Generator[TestClient, None, None]:
    """Test client wired to the per-test database and queue doubles."""
    from ugc_engine.api.deps import get_ledger, get_payment_service, get_video_service
    from ugc_engine.main import app
    from ugc_engine.services.payments import PaymentService

    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_video_service] = lambda: video_service
    app.dependency_overrides[get_payment_service] = lambda: PaymentService(
        ledger=ledger, session_factory=session_factory
    )
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
