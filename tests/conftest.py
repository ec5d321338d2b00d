"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default environment, before the app is imported
os.environ.setdefault("ESCROW_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite:///./milestone_escrow_test.db")

from app import db as app_db  # noqa: E402
from app.config import Settings, get_settings  # noqa: E402
from app.db import build_sessionmaker, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Base, Job, JobStatus, Milestone, MilestoneStatus, User  # noqa: E402
from app.models.api_key import ApiKey, ApiScope  # noqa: E402
from app.services.notifications import EventEmitter, get_event_emitter  # noqa: E402
from app.utils.apikey import hash_key  # noqa: E402
from app.utils.time import utcnow  # noqa: E402


class RecordingDispatcher:
    """Notification dispatcher that keeps every call for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, str, dict[str, Any]]] = []

    def dispatch(self, target_user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        self.calls.append((target_user_id, event_type, payload))

    def events(self) -> list[str]:
        return [event_type for _, event_type, _ in self.calls]

    def targets(self, event_type: str) -> list[int]:
        return [target for target, kind, _ in self.calls if kind == event_type]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def engine(tmp_path, monkeypatch) -> Iterator[Engine]:
    """A fresh SQLite file per test, wired into ``app.db``."""

    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'escrow.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=test_engine)
    monkeypatch.setattr(app_db, "engine", test_engine)
    monkeypatch.setattr(app_db, "SessionLocal", build_sessionmaker(test_engine))
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return app_db.get_sessionmaker()


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def emitter(dispatcher: RecordingDispatcher) -> EventEmitter:
    return EventEmitter(dispatcher)


@pytest.fixture(autouse=True)
def override_dependencies(db_session: Session, emitter: EventEmitter) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_event_emitter] = lambda: emitter
    yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_event_emitter, None)


@pytest.fixture
def settings(monkeypatch) -> Callable[..., Settings]:
    """Override settings attributes for the duration of a test."""

    current = get_settings()

    def _override(**values: Any) -> Settings:
        for name, value in values.items():
            monkeypatch.setattr(current, name, value)
        return current

    return _override


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(name: str = "user", *, is_active: bool = True) -> User:
        user = User(name=name, email=f"{name}-{uuid4().hex[:8]}@example.com", is_active=is_active)
        db_session.add(user)
        db_session.commit()
        return user

    return _factory


@pytest.fixture
def client_user(make_user) -> User:
    return make_user("client")


@pytest.fixture
def freelancer_user(make_user) -> User:
    return make_user("freelancer")


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user("admin")


@pytest.fixture
def outsider_user(make_user) -> User:
    return make_user("outsider")


@pytest.fixture
def job(db_session: Session, client_user: User, freelancer_user: User) -> Job:
    row = Job(
        title="Website redesign",
        client_id=client_user.id,
        freelancer_id=freelancer_user.id,
        status=JobStatus.IN_PROGRESS,
    )
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture
def make_milestone(db_session: Session, job: Job) -> Callable[..., Milestone]:
    """Insert a milestone directly in the requested status."""

    def _factory(
        *,
        status: MilestoneStatus = MilestoneStatus.PENDING,
        amount: str = "500.00",
        title: str | None = None,
        target_job: Job | None = None,
        submitted_hours_ago: float | None = None,
        **fields: Any,
    ) -> Milestone:
        owner = target_job or job
        now = utcnow()
        milestone = Milestone(
            job_id=owner.id,
            title=title or f"Milestone {uuid4().hex[:6]}",
            amount=Decimal(amount),
            currency="USD",
            status=status,
            **fields,
        )
        if status in (MilestoneStatus.SUBMITTED, MilestoneStatus.APPROVED, MilestoneStatus.DISPUTED):
            milestone.submitted_at = now - timedelta(hours=submitted_hours_ago or 1)
        db_session.add(milestone)
        db_session.commit()
        return milestone

    return _factory


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., dict[str, str]]:
    """Create a key for ``user`` and return matching request headers."""

    def _factory(user: User | None, scope: ApiScope = ApiScope.user, *, is_active: bool = True) -> dict[str, str]:
        token = f"test-{scope.value}-{uuid4().hex}"
        api_key = ApiKey(
            name=f"key-{uuid4().hex}",
            prefix="test_" + scope.value,
            key_hash=hash_key(token),
            scope=scope,
            user_id=user.id if user is not None else None,
            is_active=is_active,
        )
        db_session.add(api_key)
        db_session.commit()
        return {"Authorization": f"Bearer {token}"}

    return _factory


@pytest.fixture
def client_headers(make_api_key, client_user) -> dict[str, str]:
    return make_api_key(client_user)


@pytest.fixture
def freelancer_headers(make_api_key, freelancer_user) -> dict[str, str]:
    return make_api_key(freelancer_user)


@pytest.fixture
def admin_headers(make_api_key, admin_user) -> dict[str, str]:
    return make_api_key(admin_user, ApiScope.admin)


@pytest.fixture
def outsider_headers(make_api_key, outsider_user) -> dict[str, str]:
    return make_api_key(outsider_user)
