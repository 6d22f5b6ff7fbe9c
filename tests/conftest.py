"""Pytest fixtures for agent action tests."""

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from agent_actions.config import reload_settings
from agent_actions.domains import DomainValidator
from agent_actions.metadata import MetadataCrypto
from agent_actions.models import Agent, Identity, SystemRole
from agent_actions.stores import (
    InMemoryActionStore,
    InMemoryAgentStore,
    SqlActionStore,
    SqlAgentStore,
    get_engine,
    get_session_local,
    init_db,
)
from agent_actions.synchronizer import ActionSynchronizer

TEST_ENCRYPTION_KEY = Fernet.generate_key()


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Reset settings before each test."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("SECRET_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY.decode())
    monkeypatch.delenv("ALLOWED_DOMAINS", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    reload_settings()
    yield
    reload_settings()


@pytest.fixture
def owner():
    return Identity(id="user-1")


@pytest.fixture
def other_user():
    return Identity(id="user-2")


@pytest.fixture
def admin():
    return Identity(id="admin-1", role=SystemRole.ADMIN)


@pytest.fixture
def crypto():
    return MetadataCrypto(TEST_ENCRYPTION_KEY)


@pytest.fixture
def action_store():
    return InMemoryActionStore()


@pytest.fixture
def agent_store():
    return InMemoryAgentStore()


@pytest.fixture
def sync(action_store, agent_store, crypto):
    """Synchronizer over in-memory stores with an open allowlist."""
    return ActionSynchronizer(
        action_store,
        agent_store,
        crypto=crypto,
        domain_validator=DomainValidator([]),
        max_workers=1,
    )


@pytest.fixture
def agent(agent_store, owner):
    """Agent A1 owned by ``owner`` with no bound actions."""
    return agent_store.create(Agent(id="A1", author=owner.id, name="Research"))


@pytest.fixture
def session_factory():
    """Session factory for a fresh in-memory SQLite database."""
    engine = get_engine("sqlite://")
    init_db(engine)
    return get_session_local(engine)


@pytest.fixture
def sql_sync(session_factory, crypto):
    """Synchronizer over SQL stores."""
    return ActionSynchronizer(
        SqlActionStore(session_factory),
        SqlAgentStore(session_factory),
        crypto=crypto,
        domain_validator=DomainValidator([]),
        max_workers=1,
    )


@pytest.fixture
def test_client(sql_sync):
    """Test client for the FastAPI app backed by SQL stores."""
    from agent_actions.router import get_synchronizer
    from agent_actions.server import create_app

    app = create_app()
    app.dependency_overrides[get_synchronizer] = lambda: sql_sync
    return TestClient(app)
