"""Shared test fixtures and configuration for pytest."""

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field

import pytest
import pytest_asyncio

from brandprobe import db
from brandprobe.analysis import AnalysisPipeline
from brandprobe.config import Settings
from brandprobe.credentials import encrypt_secret
from brandprobe.engines import Citation, EngineReply
from brandprobe.lifecycle import SessionLifecycleManager
from brandprobe.models import AnalysisSession, Credential, Keyword, Project, QueryTask, TargetEngine
from brandprobe.notifier import Notifier
from brandprobe.progress import ProgressBroadcaster
from brandprobe.rate_limit import RetryController

TEST_SECRET = "test-encryption-secret"
SQLITE_URL = "sqlite+aiosqlite://"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url_override=SQLITE_URL,
        encryption_secret=TEST_SECRET,
        analysis_enabled=False,
        notification_url=None,
        redis_progress_enabled=False,
        session_timeout_seconds=30,
        rate_limits={
            "openai": {"inter_call_delay_ms": 1000, "max_retries": 3},
            "google": {"inter_call_delay_ms": 2500, "max_retries": 5},
        },
    )


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None]:
    """Bind the db module to a fresh in-memory SQLite database."""
    engine = db.configure(SQLITE_URL)
    await db.init_db()
    yield
    await db.drop_db()
    await engine.dispose()


class RecordedSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeAdapter:
    """Engine adapter whose outcomes are scripted per (provider, query)."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self._scripts: dict[tuple[str, str], list[object]] = {}

    def script(self, provider: str, query_text: str, *outcomes: object) -> None:
        self._scripts[(provider, query_text)] = list(outcomes)

    async def call(self, provider: str, credential: str, query_text: str) -> EngineReply:
        self.calls.append((provider, credential, query_text))
        queue = self._scripts.get((provider, query_text))
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            assert isinstance(outcome, EngineReply)
            return outcome
        return EngineReply(
            content=f"For '{query_text}' I recommend Acme. Globex is another option.",
            citations=[Citation(url="https://www.reddit.com/r/acme/comments/1")],
        )


class RecordingNotifier(Notifier):
    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.sent: list[tuple[str, str]] = []

    async def notify(self, title: str, content: str) -> bool:
        self.sent.append((title, content))
        return True


@dataclass
class Seeded:
    project_id: str
    session_id: str
    engine_ids: list[str] = field(default_factory=list)
    query_ids: list[str] = field(default_factory=list)


async def seed(
    *,
    engines: tuple[tuple[str, str | None], ...] = (("ChatGPT", "openai"), ("Gemini", "google")),
    queries: tuple[str, ...] = ("best running shoes", "durable trail shoes"),
    credentials: dict[str, str] | None = None,
    user_id: str = "user-1",
    brand_name: str = "Acme",
    competitors: tuple[str, ...] = ("Globex",),
) -> Seeded:
    if credentials is None:
        credentials = {"openai": "sk-openai-test", "google": "google-test-key"}

    async with db.get_session() as session:
        project = Project(
            user_id=user_id,
            name="Acme visibility",
            brand_name=brand_name,
            competitors=list(competitors),
        )
        session.add(project)
        await session.flush()

        keyword = Keyword(project_id=project.id, keyword="shoes", position=0)
        session.add(keyword)
        await session.flush()

        query_rows = [
            QueryTask(keyword_id=keyword.id, query_text=text, position=i)
            for i, text in enumerate(queries)
        ]
        engine_rows = [
            TargetEngine(name=name, provider=provider, position=i)
            for i, (name, provider) in enumerate(engines)
        ]
        credential_rows = [
            Credential(user_id=user_id, provider=provider, encrypted_secret=encrypt_secret(key, TEST_SECRET))
            for provider, key in credentials.items()
        ]
        session.add_all([*query_rows, *engine_rows, *credential_rows])

        record = AnalysisSession(project_id=project.id, status="pending")
        session.add(record)
        await session.flush()

        return Seeded(
            project_id=project.id,
            session_id=record.id,
            engine_ids=[e.id for e in engine_rows],
            query_ids=[q.id for q in query_rows],
        )


@pytest.fixture
def sleep() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def broadcaster(test_settings: Settings) -> ProgressBroadcaster:
    return ProgressBroadcaster(test_settings)


@pytest.fixture
def notifier(test_settings: Settings) -> RecordingNotifier:
    return RecordingNotifier(test_settings)


@pytest.fixture
def retry(test_settings: Settings, sleep: RecordedSleep) -> RetryController:
    return RetryController(test_settings, sleep=sleep, rand=lambda: 0.5)


@pytest.fixture
def make_manager(
    test_settings: Settings,
    adapter: FakeAdapter,
    broadcaster: ProgressBroadcaster,
    notifier: RecordingNotifier,
    retry: RetryController,
) -> Callable[..., SessionLifecycleManager]:
    def build(**overrides: object) -> SessionLifecycleManager:
        options: dict[str, object] = {
            "broadcaster": broadcaster,
            "adapter": adapter,
            "pipeline": AnalysisPipeline(None),
            "notifier": notifier,
            "retry": retry,
            "settings": test_settings,
        }
        options.update(overrides)
        return SessionLifecycleManager(**options)  # type: ignore[arg-type]

    return build
