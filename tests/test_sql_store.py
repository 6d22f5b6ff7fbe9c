"""Tests for the SQLAlchemy stores."""

import pytest

from agent_actions.domains import DomainValidator
from agent_actions.errors import CascadeError, NotFound, StoreError
from agent_actions.models import Agent, AgentQuery
from agent_actions.references import encode_action_ref, encode_tool_ref
from agent_actions.stores import (
    SqlActionStore,
    SqlAgentStore,
    get_engine,
    get_session_local,
    init_db,
)
from agent_actions.synchronizer import ActionSynchronizer

LOOKUP = [{"name": "lookup"}]


@pytest.fixture
def action_store(session_factory):
    return SqlActionStore(session_factory)


@pytest.fixture
def agent_store(session_factory):
    return SqlAgentStore(session_factory)


class TestSqlActionStore:
    """Tests for the action table."""

    def test_upsert_and_get(self, action_store):
        """Test creating then updating an action record."""
        created = action_store.upsert("a1", {
            "owner": "user-1",
            "agent_id": "A1",
            "metadata": {"domain": "api.example.com"},
            "function_names": ["lookup"],
        })
        assert created.id == "a1"
        assert created.created_at is not None

        action_store.upsert("a1", {"owner": "user-2", "function_names": ["lookup", "search"]})

        action = action_store.get("a1")
        assert action.owner == "user-2"
        assert action.agent_id == "A1"
        assert action.metadata == {"domain": "api.example.com"}
        assert action.function_names == ["lookup", "search"]
        assert action.domain == "api.example.com"

    def test_get_missing(self, action_store):
        assert action_store.get("missing") is None

    def test_delete_returns_record(self, action_store):
        """Test deleting returns the removed action."""
        action_store.upsert("a1", {"owner": "user-1", "metadata": {"domain": "api.example.com"}})

        deleted = action_store.delete("a1")
        assert deleted.metadata == {"domain": "api.example.com"}
        assert action_store.get("a1") is None
        assert action_store.delete("a1") is None

    def test_list_by_owner(self, action_store):
        action_store.upsert("a1", {"owner": "user-1"})
        action_store.upsert("a2", {"owner": "user-2"})
        action_store.upsert("a3", {"owner": "user-1"})

        assert [a.id for a in action_store.list(owner="user-1")] == ["a1", "a3"]
        assert [a.id for a in action_store.list()] == ["a1", "a2", "a3"]


class TestSqlAgentStore:
    """Tests for the agent table."""

    def test_create_and_get(self, agent_store):
        agent_store.create(Agent(id="A1", author="user-1", name="Research", tool_refs=["web_search"]))

        agent = agent_store.get(AgentQuery(id="A1"))
        assert agent == Agent(id="A1", author="user-1", name="Research", tool_refs=["web_search"])

    def test_get_scoped_by_author(self, agent_store):
        """Test the author filter hides other users' agents."""
        agent_store.create(Agent(id="A1", author="user-1"))
        assert agent_store.get(AgentQuery(id="A1", author="user-1")) is not None
        assert agent_store.get(AgentQuery(id="A1", author="user-2")) is None

    def test_query_many_by_action_id(self, agent_store):
        """Test agents are found by an action id inside their refs."""
        agent_store.create(Agent(id="A1", author="u", action_refs=[encode_action_ref("x.com", "abc")]))
        agent_store.create(Agent(id="A2", author="u", action_refs=[encode_action_ref("y.com", "def")]))
        agent_store.create(Agent(id="A3", author="u", action_refs=[
            encode_action_ref("y.com", "def"), encode_action_ref("x.com", "abc"),
        ]))

        assert [a.id for a in agent_store.query_many(AgentQuery(action_id="abc"))] == ["A1", "A3"]

    def test_query_many_escapes_like_wildcards(self, agent_store):
        """Test LIKE wildcards in action ids match literally."""
        agent_store.create(Agent(id="A1", author="u", action_refs=[encode_action_ref("x.com", "a_b")]))
        agent_store.create(Agent(id="A2", author="u", action_refs=[encode_action_ref("x.com", "axb")]))
        agent_store.create(Agent(id="A3", author="u", action_refs=[encode_action_ref("x.com", "a%b")]))

        assert [a.id for a in agent_store.query_many(AgentQuery(action_id="a_b"))] == ["A1"]
        assert [a.id for a in agent_store.query_many(AgentQuery(action_id="a%b"))] == ["A3"]

    def test_update(self, agent_store):
        agent_store.create(Agent(id="A1", author="u"))

        updated = agent_store.update(AgentQuery(id="A1"), {"action_refs": ["r1"], "tool_refs": ["t1"]})

        assert updated.action_refs == ["r1"]
        assert agent_store.get(AgentQuery(id="A1")).tool_refs == ["t1"]

    def test_update_missing(self, agent_store):
        with pytest.raises(NotFound):
            agent_store.update(AgentQuery(id="missing"), {"action_refs": []})

    def test_duplicate_agent_is_store_error(self, agent_store):
        """Test database errors surface as store errors."""
        agent_store.create(Agent(id="A1", author="u"))
        with pytest.raises(StoreError):
            agent_store.create(Agent(id="A1", author="u"))
        assert agent_store.get(AgentQuery(id="A1")) is not None


class TestSqlSynchronizer:
    """Tests for the synchronizer over SQL stores."""

    def test_full_lifecycle(self, sql_sync, owner):
        """Test create, bind, update, unbind and delete against the database."""
        agents = sql_sync.agent_store
        agents.create(Agent(id="A1", author=owner.id, tool_refs=["web_search"]))

        action = sql_sync.create_action("A1", LOOKUP, {"domain": "api.example.com", "api_key": "k"}, owner)
        assert "api_key" not in action["metadata"]
        assert sql_sync.action_store.get(action["id"]).metadata["api_key"] != "k"

        sql_sync.bind_action("A1", action["id"], owner)
        sql_sync.update_action(action["id"], LOOKUP, {"domain": "api2.example.com"}, owner)

        agent = agents.get(AgentQuery(id="A1"))
        assert agent.action_refs == [encode_action_ref("api2.example.com", action["id"])]
        assert agent.tool_refs == ["web_search", encode_tool_ref("lookup", "api2.example.com")]

        sql_sync.unbind_action("A1", action["id"], owner)
        assert agents.get(AgentQuery(id="A1")).tool_refs == ["web_search"]

        sql_sync.bind_action("A1", action["id"], owner)
        sql_sync.delete_action(action["id"])
        agent = agents.get(AgentQuery(id="A1"))
        assert agent.action_refs == []
        assert agent.tool_refs == ["web_search"]

    def test_concurrent_cascade_on_file_database(self, tmp_path, crypto, owner):
        """Test a multi-worker cascade against a file-backed database."""
        engine = get_engine(f"sqlite:///{tmp_path / 'actions.db'}")
        init_db(engine)
        factory = get_session_local(engine)
        sync = ActionSynchronizer(
            SqlActionStore(factory),
            SqlAgentStore(factory),
            crypto=crypto,
            domain_validator=DomainValidator([]),
            max_workers=4,
        )
        action = sync.create_action("A0", LOOKUP, {"domain": "api.example.com"}, owner)
        ids = [f"A{i}" for i in range(8)]
        for agent_id in ids:
            sync.agent_store.create(Agent(id=agent_id, author=owner.id))
            sync.bind_action(agent_id, action["id"], owner)

        sync.update_action(action["id"], LOOKUP, {"domain": "api2.example.com"}, owner)

        for agent_id in ids:
            agent = sync.agent_store.get(AgentQuery(id=agent_id))
            assert agent.action_refs == [encode_action_ref("api2.example.com", action["id"])]
        engine.dispose()

    def test_store_failure_surfaces_as_cascade_error(self, sql_sync, owner, monkeypatch):
        """Test a failing agent write is reported by id."""
        agents = sql_sync.agent_store
        action = sql_sync.create_action("A1", LOOKUP, {"domain": "api.example.com"}, owner)
        for agent_id in ("A1", "A2"):
            agents.create(Agent(id=agent_id, author=owner.id))
            sql_sync.bind_action(agent_id, action["id"], owner)

        original_update = agents.update

        def flaky_update(query, fields):
            if query.id == "A2":
                raise StoreError("Store operation failed: update_agent")
            return original_update(query, fields)

        monkeypatch.setattr(agents, "update", flaky_update)

        with pytest.raises(CascadeError) as exc_info:
            sql_sync.update_action(action["id"], LOOKUP, {"domain": "api2.example.com"}, owner)
        assert exc_info.value.failed_agent_ids == ["A2"]

        monkeypatch.setattr(agents, "update", original_update)
        sql_sync.reconcile_action(action["id"])
        assert agents.get(AgentQuery(id="A2")).action_refs == [
            encode_action_ref("api2.example.com", action["id"])
        ]
