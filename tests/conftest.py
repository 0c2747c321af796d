"""Shared test fixtures: SQLite database, users, missions, authenticated clients."""
import os
import tempfile

# Settings are read at import time; point the app at a throwaway SQLite file first.
_DB_DIR = tempfile.mkdtemp(prefix="mission-chat-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["DEBUG"] = "false"

import pytest
from fastapi.testclient import TestClient

from app.chat.connection_manager import connection_manager
from app.chat.moderation import moderation_registry
from app.core.database import Base, SessionLocal, engine
from app.core.dependencies import validate_session
from app.model import Mission, User
from main import app


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_chat_state():
    """Blocks and subscriptions are process-wide; start every test clean."""
    moderation_registry.clear()
    connection_manager.clear()
    yield
    moderation_registry.clear()
    connection_manager.clear()
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db, faker):
    def _make(role: str = "user") -> User:
        user = User(
            email=faker.unique.email(),
            username=faker.unique.user_name(),
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def setup_user(make_user):
    return make_user("user")


@pytest.fixture
def setup_teacher(make_user):
    return make_user("teacher")


@pytest.fixture
def make_mission(db, faker):
    def _make(title: str | None = None) -> Mission:
        mission = Mission(title=title or faker.sentence(nb_words=3))
        db.add(mission)
        db.commit()
        db.refresh(mission)
        return mission

    return _make


@pytest.fixture
def setup_mission(make_mission):
    return make_mission("Read chapter 3")


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def login_as():
    """Authenticate REST calls as the given user."""
    def _login(user: User) -> None:
        app.dependency_overrides[validate_session] = lambda: {"user_id": str(user.id)}

    return _login


@pytest.fixture
def ws_sessions(monkeypatch):
    """Token -> session store standing in for Redis on the WebSocket endpoint."""
    sessions = {}
    monkeypatch.setattr("app.router.api.v1.chat.get_session", lambda token: sessions.get(token))
    return sessions


@pytest.fixture
def connect(client, ws_sessions):
    """Open an authenticated chat WebSocket for a user."""
    def _connect(user: User):
        token = f"token-{user.id}"
        ws_sessions[token] = {"user_id": str(user.id)}
        return client.websocket_connect(f"/api/v1/chat/ws?token={token}")

    return _connect
