"""Root conftest: shared fixtures for all safewatch tests."""

from __future__ import annotations

import json
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Ensure safewatch/ is on sys.path
_code_dir = str(Path(__file__).resolve().parent)
if _code_dir not in sys.path:
    sys.path.insert(0, _code_dir)

# Keep tests away from a developer's conf.json and real collaborators
os.environ.setdefault("SAFEWATCH_DIR", tempfile.mkdtemp(prefix="safewatch-test-"))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["API_TOKEN"] = "test-token"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["EDUCATOR_WEBHOOK_URL"] = ""
os.environ["MEDIA_SERVICE_URL"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
import models  # noqa: F401 (register all models with Base)

# Use in-memory SQLite for tests; StaticPool ensures all connections share the same DB
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = sessionmaker(bind=TEST_ENGINE, autoflush=False, expire_on_commit=False)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest.fixture(autouse=True)
def _setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db():
    """Yield a test database session."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def subject(db):
    from models.subject import Subject

    s = Subject(
        display_name="Noa",
        age_range="11-13",
        monitoring_enabled=True,
        guardian_email="parent@example.com",
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


@pytest.fixture
def chat(db, subject):
    from models.chat import Chat

    c = Chat(subject_id=subject.id, label="Unknown contact", is_group=False)
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


@pytest.fixture
def add_message(db, subject, chat):
    """Factory: store a message in the test chat, ``minutes_ago`` before now."""
    from models.chat import Message

    def _add(text="hi", minutes_ago=1, sender_role="other", modality="text", **kwargs):
        ts = utcnow() - timedelta(minutes=minutes_ago)
        m = Message(
            chat_id=kwargs.pop("chat_id", chat.id),
            subject_id=kwargs.pop("subject_id", subject.id),
            sender_role=sender_role,
            modality=modality,
            text_content=text,
            sent_at=ts,
            created_at=kwargs.pop("created_at", ts),
            **kwargs,
        )
        db.add(m)
        db.commit()
        db.refresh(m)
        return m

    return _add


def provider_result(content="", status="success", model="gpt-4o-mini", input_tokens=1000, output_tokens=200):
    """A ``ProviderResult`` as the classifier helper would return it."""
    from services.llm import ProviderResult

    if not isinstance(content, str):
        content = json.dumps(content)
    ok = status == "success"
    return ProviderResult(
        status=status,
        model=model,
        content=content if ok else "",
        input_tokens=input_tokens if ok else 0,
        output_tokens=output_tokens if ok else 0,
        latency_ms=120,
        error="" if ok else "RateLimitError: 429",
    )
