import os
import tempfile
from datetime import datetime, timedelta

_DB_DIR = tempfile.mkdtemp(prefix="classchat-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'chat.db')}"

import pytest
from fastapi.testclient import TestClient

from app.main import app as fastapi_app
from app.model_base import Base
from app.db.session import engine, SessionLocal
from app.core.identity import Identity
from app.Chat.chat_gateway import ChatGateway, get_gateway
from app.Chat.typing_store import TypingStore


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 9, 1, 8, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += timedelta(milliseconds=ms)


ALICE = Identity(user_id="1", name="Alice", role="student")
BOB = Identity(user_id="2", name="Bob", role="teacher")
CAROL = Identity(user_id="3", name="Carol", role="student")


def headers_for(who: Identity) -> dict:
    return {"X-User-Id": who.user_id, "X-User-Name": who.name, "X-User-Role": who.role}


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway(clock):
    return ChatGateway(typing=TypingStore(stale_ms=3000, clock=clock))


@pytest.fixture
def client(gateway):
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(fastapi_app)
    finally:
        fastapi_app.dependency_overrides.clear()
