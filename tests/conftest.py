from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

import errand_bot.config as config_mod
from errand_bot.db import build_engine, build_session_factory
from errand_bot.llm_client import TurnDecision
from errand_bot.main import create_app
from errand_bot.routes import limiter
from errand_bot.schemas import ParsedIntent, PlaceCandidate
from errand_bot.services import build_services
from errand_bot.telephony import TwilioTelephony

TEST_JWT_SECRET = "test-jwt-secret"
TEST_BASE_URL = "https://errands.test"
TEST_CALL_SID = "CA00000000000000000000000000000001"


# =============================================================================
# Fake collaborators
# =============================================================================

class FakeLLM:
    """Stands in for LLMClient; every answer can be set per test."""

    def __init__(self):
        self.intent = ParsedIntent(
            service="dentist appointment",
            action="book",
            time_constraint="tomorrow at 3pm",
        )
        self.script = "Hello, I'm calling to book a dentist appointment for tomorrow at 3pm."
        self.parse_error = None
        self.script_error = None
        self.turn_error = None
        self.decisions = []
        self.parsed_texts = []
        self.turns = []

    async def parse_errand_request(self, text):
        self.parsed_texts.append(text)
        if self.parse_error is not None:
            raise self.parse_error
        return self.intent

    async def generate_call_script(self, intent, place_name):
        if self.script_error is not None:
            raise self.script_error
        return self.script

    async def decide_turn(self, intent, conversation, speech):
        self.turns.append((intent, list(conversation), speech))
        if self.turn_error is not None:
            raise self.turn_error
        if self.decisions:
            return self.decisions.pop(0)
        return TurnDecision(kind="speak", text="Would 3pm tomorrow work?")


class FakePlaces:
    """Stands in for PlacesService.find_places."""

    def __init__(self):
        self.places = [
            PlaceCandidate(
                name="Bright Smile Dental",
                address="12 Main St, New York, NY",
                phone="(415) 555-0100",
                place_id="place-1",
                rating=4.6,
            ),
        ]
        self.error = None
        self.queries = []

    def find_places(self, query, location=None):
        self.queries.append((query, location))
        if self.error is not None:
            raise self.error
        return list(self.places)


class RecordingSubscriber:
    """WebSocket stand-in that keeps every pushed message."""

    def __init__(self):
        self.messages = []

    async def send_json(self, message):
        self.messages.append(message)


class BrokenSubscriber:
    """WebSocket stand-in whose connection has gone away."""

    async def send_json(self, message):
        raise RuntimeError("socket closed")


def make_twilio_client(call_sid=TEST_CALL_SID):
    client = MagicMock()
    client.calls.create.return_value = MagicMock(sid=call_sid)
    client.messages.create.return_value = MagicMock(sid="SM00000000000000000000000000000001")
    return client


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def session_factory():
    """In-memory SQLite shared across connections via StaticPool."""
    engine = build_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_places():
    return FakePlaces()


@pytest.fixture
def twilio_client():
    return make_twilio_client()


@pytest.fixture
def telephony(twilio_client):
    return TwilioTelephony(
        account_sid="AC00000000000000000000000000000000",
        auth_token="",
        from_number="+15005550006",
        base_url=TEST_BASE_URL,
        client=twilio_client,
    )


@pytest.fixture
def services(fake_llm, fake_places, telephony):
    """Service container on the memory backend only."""
    return build_services(llm=fake_llm, places=fake_places, telephony=telephony, validate_signatures=False)


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setattr(config_mod, "JWT_SECRET", TEST_JWT_SECRET)
    return TEST_JWT_SECRET


@pytest.fixture
def app(fake_llm, fake_places, telephony, session_factory, jwt_secret):
    return create_app(
        llm=fake_llm,
        places=fake_places,
        telephony=telephony,
        session_factory=session_factory,
        validate_signatures=False,
    )


@pytest.fixture
def client(app):
    """Shared FastAPI TestClient on an in-memory SQLite DB with fake collaborators."""
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    limiter.reset()


@pytest.fixture
def auth_headers(client):
    """Register a user and return (headers, user_id)."""
    resp = client.post("/auth/register", json={"email": "errand.user@mailbox.org", "password": "s3cret-pass"})
    assert resp.status_code == 201
    data = resp.json()
    return {"Authorization": f"Bearer {data['token']}"}, data["user"]["id"]
