import os

# In-memory store for the whole test session; must be set before the app imports
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["VAPI_SIMULATE"] = "false"
os.environ.pop("TRANSCRIPT_TIMESTAMP_SOURCE", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel

from app import app
from database.connection import engine, get_session
from services.vapi_client import VapiError


class FakeVapiClient:
    def __init__(self, call_id="call_123"):
        self.call_id = call_id
        self.create_error = None
        self.end_error = None
        self.created = []
        self.ended = []

    async def create_call(self, candidate_name, candidate_phone, position):
        self.created.append((candidate_name, candidate_phone, position))
        if self.create_error:
            raise self.create_error
        return {"id": self.call_id}

    async def end_call(self, call_id):
        self.ended.append(call_id)
        if self.end_error:
            raise self.end_error


class RecordingBroadcaster:
    def __init__(self):
        self.events = []

    async def broadcast(self, room, event, data):
        self.events.append((room, event, data))

    async def close_all(self):
        pass


class BrokenSession:
    """Stands in for a session whose database went away."""

    def _fail(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    add = commit = exec = get = refresh = _fail

    def rollback(self):
        pass


@pytest.fixture(autouse=True)
def reset_db():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def vapi(client):
    fake = FakeVapiClient()
    app.state.vapi_client = fake
    return fake


@pytest.fixture
def broadcaster(client):
    fake = RecordingBroadcaster()
    app.state.broadcaster = fake
    return fake


@pytest.fixture
def directory(client):
    return app.state.active_calls


@pytest.fixture
def broken_db():
    def _broken_session():
        yield BrokenSession()

    app.dependency_overrides[get_session] = _broken_session
    return _broken_session


@pytest.fixture
def provider_error():
    return VapiError("Vapi API returned 400", status_code=400, details={"message": "invalid phone number"})
