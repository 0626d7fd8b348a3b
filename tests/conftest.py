"""Pytest configuration and shared fixtures."""
import os

# Keep the module-level engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bizagent.config import RuleThresholds, Settings
from bizagent.database import Base
from bizagent.models import audit, business  # noqa: F401
from bizagent.models.domain import ActionRequest, new_id
from bizagent.models.enums import ActionKind, Channel, ProposedAction, RequestState, RiskLevel
from bizagent.services.business_store import BusinessStore
from bizagent.services.channels import ChannelError, WebChannel, WebOutbox
from bizagent.services.classifier import Classification
from bizagent.services.notifier import AdminFeed, Notifier
from bizagent.services.pipeline import InboundMessage, MessagePipeline

ADMIN_TOKEN = "test-admin-token"
VERIFY_TOKEN = "test-verify-token"


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # One shared connection, so the TestClient's worker thread sees the same data
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


def classification(intent, confidence=0.9, **entities):
    return Classification(intent=ActionKind(intent), entities=entities, confidence=confidence)


class ScriptedClassifier:
    """Answers with the scripted results in order, repeating the last one.
    An exception in the script is raised instead of returned."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def classify(self, text, context=None, history=None):
        self.calls.append(text)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class RecordingChannel:
    def __init__(self):
        self.sent = []

    def send(self, actor_id, text):
        self.sent.append((actor_id, text))
        return {"provider": "test"}


class FailingChannel:
    """Fails the first `failures` sends, then delivers."""

    def __init__(self, failures=10 ** 6):
        self.failures = failures
        self.attempts = 0
        self.sent = []

    def send(self, actor_id, text):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ChannelError("gateway unavailable")
        self.sent.append((actor_id, text))
        return {"provider": "test"}


class CountingStore(BusinessStore):
    """Business store that counts writes and can be told to fail."""

    def __init__(self, db, failures=0):
        super().__init__(db)
        self.creates = 0
        self.failures = failures

    def create(self, entity_type, data, **kwargs):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("business store unavailable")
        self.creates += 1
        return super().create(entity_type, data, **kwargs)


@pytest.fixture
def channels():
    return {
        Channel.WEB: RecordingChannel(),
        Channel.TELEGRAM: RecordingChannel(),
        Channel.WHATSAPP: RecordingChannel(),
    }


@pytest.fixture
def admin_feed():
    return AdminFeed()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def notifier(db_session, channels, admin_feed, sleeps):
    """Notifier that records backoff delays instead of sleeping."""
    return Notifier(
        db_session,
        channels,
        max_attempts=3,
        backoff_sec=0.5,
        sleep=sleeps.append,
        feed=admin_feed
    )


@pytest.fixture
def store(db_session):
    return CountingStore(db_session)


@pytest.fixture
def make_pipeline(db_session, notifier, store):
    def _make(classifier, thresholds=None):
        return MessagePipeline(db_session, classifier, notifier, thresholds or RuleThresholds(), store)
    return _make


@pytest.fixture
def make_request(db_session):
    """Persist an ActionRequest directly, bypassing the pipeline."""
    def _make(
        actor_id="cust-1",
        kind=ActionKind.CREATE_ORDER,
        entities=None,
        confidence=0.9,
        state=RequestState.CREATED,
        proposed_action=None,
        requires_approval=False,
        risk_level=RiskLevel.LOW
    ):
        request = ActionRequest(
            request_id=new_id(),
            actor_id=actor_id,
            channel=Channel.WEB,
            language="en",
            kind=kind,
            entities=entities or {},
            confidence=confidence,
            source_text="test message",
            proposed_action=proposed_action or ProposedAction.for_kind(kind),
            requires_approval=requires_approval,
            risk_level=risk_level,
            reasons=[],
            state=state
        )
        db_session.add(request)
        db_session.commit()
        db_session.refresh(request)
        return request
    return _make


def message(text="hello", actor_id="cust-1", channel=Channel.WEB, language=None):
    return InboundMessage(actor_id=actor_id, text=text, channel=channel, language=language)


@pytest.fixture
def test_settings():
    return Settings(database_url="sqlite://", admin_token=ADMIN_TOKEN, whatsapp_verify_token=VERIFY_TOKEN)


@pytest.fixture
def web_outbox():
    return WebOutbox()


@pytest.fixture
def client(db_session, admin_feed, web_outbox, sleeps, test_settings):
    """TestClient wired to the test database, keyword classifier and in-memory channels."""
    from bizagent.api import routes
    from bizagent.database import get_db
    from bizagent.main import app
    from bizagent.services.classifier import KeywordIntentClassifier, ResilientClassifier

    api_channels = {
        Channel.WEB: WebChannel(web_outbox),
        Channel.TELEGRAM: RecordingChannel(),
        Channel.WHATSAPP: RecordingChannel(),
    }
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[routes.get_settings] = lambda: test_settings
    app.dependency_overrides[routes.get_classifier] = lambda: ResilientClassifier(KeywordIntentClassifier())
    app.dependency_overrides[routes.get_channels] = lambda: api_channels
    app.dependency_overrides[routes.get_admin_feed] = lambda: admin_feed
    app.dependency_overrides[routes.get_web_outbox] = lambda: web_outbox

    with TestClient(app) as c:
        c.channels = api_channels
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}
