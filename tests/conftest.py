from __future__ import annotations

import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["LOG_FILE"] = ""
os.environ["EXPIRY_SWEEP_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Dict, List, Optional, Sequence

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from assessment_engine.core.config import settings
from assessment_engine.db.deps import Base, get_db
from assessment_engine.main import create_app
from assessment_engine.models import Question, QuestionOption, Test, User
from assessment_engine.services.certificate_notifier import get_certificate_notifier
from assessment_engine.utils.enums import Role, ValidationType


class FakeClock:
    """Controllable replacement for get_current_utc_datetime."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    async def submission_passed(self, submission, test) -> None:
        self.calls.append((submission.id, test.id))


class Seeder:
    """Builds users and tests directly through the ORM."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._emails = 0

    async def user(self, role: Role = Role.student, **fields) -> User:
        self._emails += 1
        user = User(
            first_name=fields.pop("first_name", "Ada"),
            last_name=fields.pop("last_name", "Lovelace"),
            email=fields.pop("email", f"user{self._emails}-{role.value}@example.com"),
            role=role,
            is_active=True,
            **fields,
        )
        self.session.add(user)
        await self.session.commit()
        return user

    async def test(self, questions: Sequence[Dict], **config) -> Test:
        """Create a published test.

        Each question is a dict with ``type`` and ``points`` plus, for choice
        types, ``options`` as (text, is_correct) pairs.
        """
        config.setdefault("title", "Unit quiz")
        config.setdefault("passing_score", 60)
        config.setdefault("is_published", True)
        config.setdefault("validation_type", ValidationType.automatic)
        test = Test(**config)
        for index, item in enumerate(questions):
            question = Question(
                question_text=item.get("text", f"Question {index + 1}"),
                type=item["type"],
                points=item["points"],
                order=index,
            )
            for order, (text, is_correct) in enumerate(item.get("options", [])):
                question.options.append(
                    QuestionOption(option_text=text, is_correct=is_correct, order=order)
                )
            test.questions.append(question)
        self.session.add(test)
        await self.session.commit()
        return test

    @staticmethod
    def correct_ids(question: Question) -> List:
        return [o.id for o in question.options if o.is_correct]

    @staticmethod
    def wrong_ids(question: Question) -> List:
        return [o.id for o in question.options if not o.is_correct]


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Ensure pytest-anyio uses asyncio for all async tests."""
    return "asyncio"


@pytest.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'assessment.sqlite'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture()
def seed(db_session) -> Seeder:
    return Seeder(db_session)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def test_app(session_factory, notifier) -> FastAPI:
    app = create_app(lifespan_enabled=False)

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_certificate_notifier] = lambda: notifier
    return app


@pytest.fixture()
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client
    test_app.dependency_overrides.clear()


def create_access_token(subject) -> str:
    """Mint a bearer token the way the identity service does."""
    expire = datetime.now(timezone.utc) + timedelta(hours=1)
    return jwt.encode(
        {"exp": expire, "sub": str(subject)}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
    )


@pytest.fixture()
def token_for():
    def _token(user: User) -> str:
        return create_access_token(user.id)

    return _token


@pytest.fixture()
def auth_headers(token_for):
    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers
