import pytest
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient

from app.models import Chat, Message
from app.services.chat_store import ChatStore
from app.services.connection_registry import ConnectionRegistry

PATIENT = "patient-1"
DOCTOR = "doctor-1"


class RecordingEmitter:
    """Stands where the Socket.IO server would; remembers every emit."""

    def __init__(self):
        self.events = []

    async def emit(self, event, data=None, to=None, **kwargs):
        self.events.append((event, data, to))

    def sent_to(self, sid, event=None):
        return [d for e, d, t in self.events if t == sid and (event is None or e == event)]

    def named(self, event):
        return [(d, t) for e, d, t in self.events if e == event]

    def clear(self):
        self.events.clear()


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    await init_beanie(database=client.get_database("clinic_chat_test"), document_models=[Chat, Message])
    yield client


@pytest.fixture
def store(db):
    return ChatStore()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def emitter():
    return RecordingEmitter()
