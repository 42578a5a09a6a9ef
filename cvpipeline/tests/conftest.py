"""
Pytest fixtures for CV pipeline tests.
Uses in-memory SQLite, scripted LLM fakes (no network) and a queue manager with no worker threads.
"""
import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Use in-memory SQLite for tests - set before config/session load
# Must override any .env DATABASE_URL
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["QUEUE_WORKER_ENABLED"] = "false"
os.environ["OPENAI_API_KEY"] = ""
os.environ["SESSION_CLEANUP_DELAY_SECONDS"] = "3600"

from cvpipeline.app.core.errors import ProviderUnavailableError
from cvpipeline.app.db.base import Base
from cvpipeline.main import app
from cvpipeline.app.core.dependencies import get_db, get_llm, get_queue_manager
from cvpipeline.app.services.queue_manager import QueueManager
from cvpipeline.app.services.session_memory import SessionMemoryStore

# In-memory SQLite for tests - StaticPool ensures all sessions share same DB
engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Patch the session module so services use our test engine
import cvpipeline.app.db.session as session_module
session_module.engine = engine
session_module.SessionLocal = TestingSessionLocal
import cvpipeline.main as main_module
main_module.engine = engine


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


SAMPLE_CV = """Jane Doe
jane.doe@example.com | +1 555-123-4567
Senior Software Engineer

Summary
Backend engineer with eight years of experience building data platforms.

Experience
Senior Software Engineer at Acme Corp | 2019 - Present
- Led migration to Kubernetes
Software Engineer at Beta Ltd | 2015 - 2019

Skills
Python, SQL, Docker, AWS
"""


class FakeLLM:
    """Scripted stand-in for ResilientLLMClient. Replies are returned in call order."""

    def __init__(self, replies=None, model="fake-model", connected=True):
        self.replies = list(replies or [])
        self.calls = []
        self.messages = []
        self.current_model = model
        self.connected = connected

    def complete(self, messages, description="model call"):
        self.calls.append(description)
        self.messages.append(messages)
        if not self.replies:
            raise ProviderUnavailableError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def test_connection(self):
        return self.connected


class FakeExtractor:
    """Records extract calls; returns a canned profile or raises the scripted error."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def extract(self, text, user_id):
        from cvpipeline.app.schemas.profile import ExtractedProfile, PersonalInfo
        self.calls.append((text, user_id))
        if self.error:
            raise self.error
        return ExtractedProfile(personalInfo=PersonalInfo(name="Jane Doe"))


@pytest.fixture(scope="function")
def db_session():
    """Create tables and a fresh DB session per test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the per-test database."""
    return TestingSessionLocal


@pytest.fixture
def session_store(session_factory):
    return SessionMemoryStore(session_factory=session_factory)


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def queue_manager(session_factory, fake_extractor):
    """Queue manager wired to the test DB and a fake extractor; no threads started."""
    return QueueManager(
        session_factory=session_factory,
        extractor_factory=lambda: fake_extractor,
        minutes_per_job=2,
    )


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def client(db_session, queue_manager, fake_llm):
    """TestClient with the test queue manager and fake LLM injected."""
    app.dependency_overrides[get_queue_manager] = lambda: queue_manager
    app.dependency_overrides[get_llm] = lambda: fake_llm
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_queue_manager, None)
        app.dependency_overrides.pop(get_llm, None)


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user-1"}


@pytest.fixture
def other_user_headers():
    return {"X-User-Id": "user-2"}
