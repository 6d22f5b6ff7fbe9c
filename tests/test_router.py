"""Tests for the HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient

from agent_actions.models import Agent, AgentQuery
from agent_actions.references import encode_action_ref, encode_tool_ref

BASE = "/api/agents/actions"
OWNER = {"X-User-Id": "user-1"}
OTHER = {"X-User-Id": "user-2"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}

ACTION_BODY = {
    "functions": [{"type": "function", "function": {"name": "lookup", "description": "Look things up"}}],
    "metadata": {"domain": "api.example.com", "api_key": "sk-live"},
}


@pytest.fixture
def agents(sql_sync):
    store = sql_sync.agent_store
    store.create(Agent(id="A1", author="user-1"))
    return store


@pytest.fixture
def created(test_client, agents):
    response = test_client.post(f"{BASE}/A1", json=ACTION_BODY, headers=OWNER)
    assert response.status_code == 200
    return response.json()


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestIdentity:
    """Tests for resolving the caller."""

    def test_missing_user(self, test_client):
        response = test_client.get(BASE)
        assert response.status_code == 401

    def test_unknown_role(self, test_client):
        response = test_client.get(BASE, headers={"X-User-Id": "u", "X-User-Role": "root"})
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "validation_error"


class TestActionEndpoints:
    """Tests for create, update, delete and list."""

    def test_create(self, created):
        """Test the created action is returned without secrets."""
        assert created["function_names"] == ["lookup"]
        assert created["metadata"] == {"domain": "api.example.com"}
        assert created["owner"] == "user-1"
        assert created["agent_id"] == "A1"

    def test_create_without_functions(self, test_client):
        response = test_client.post(f"{BASE}/A1", json={"metadata": {"domain": "api.example.com"}}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["detail"] == {"kind": "validation_error", "message": "No functions provided"}

    def test_create_without_domain(self, test_client):
        body = {"functions": ACTION_BODY["functions"], "metadata": {}}
        response = test_client.post(f"{BASE}/A1", json=body, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "No domain provided"

    def test_create_disallowed_domain(self, test_client, sql_sync):
        """Test allowlist rejections map to 400."""
        from agent_actions.domains import DomainValidator

        sql_sync.domain_validator = DomainValidator(["allowed.example.com"])
        response = test_client.post(f"{BASE}/A1", json=ACTION_BODY, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["detail"] == {"kind": "domain_not_allowed", "message": "Domain not allowed"}

    def test_create_with_delimiter_in_function_name(self, test_client):
        body = {"functions": [{"name": "get_action_x"}], "metadata": {"domain": "api.example.com"}}
        response = test_client.post(f"{BASE}/A1", json=body, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "invalid_reference_format"

    def test_list(self, test_client, created):
        """Test callers only see their own actions."""
        mine = test_client.get(BASE, headers=OWNER).json()
        assert [a["id"] for a in mine] == [created["id"]]
        assert "api_key" not in mine[0]["metadata"]

        assert test_client.get(BASE, headers=OTHER).json() == []
        assert len(test_client.get(BASE, headers=ADMIN).json()) == 1

    def test_update(self, test_client, agents, created):
        """Test updating cascades into bound agents."""
        test_client.post(f"{BASE}/A1/{created['id']}", headers=OWNER)

        body = {"functions": [{"name": "search"}], "metadata": {"domain": "api2.example.com"}}
        response = test_client.put(f"{BASE}/{created['id']}", json=body, headers=OWNER)

        assert response.status_code == 200
        assert response.json()["function_names"] == ["search"]
        agent = agents.get(AgentQuery(id="A1"))
        assert agent.action_refs == [encode_action_ref("api2.example.com", created["id"])]
        assert agent.tool_refs == [encode_tool_ref("search", "api2.example.com")]

    def test_update_missing(self, test_client):
        response = test_client.put(f"{BASE}/missing", json=ACTION_BODY, headers=OWNER)
        assert response.status_code == 404

    def test_delete(self, test_client, agents, created):
        test_client.post(f"{BASE}/A1/{created['id']}", headers=OWNER)

        response = test_client.delete(f"{BASE}/{created['id']}", headers=OWNER)

        assert response.status_code == 200
        assert response.json() == {"message": "Action deleted successfully"}
        assert agents.get(AgentQuery(id="A1")).action_refs == []
        assert test_client.delete(f"{BASE}/{created['id']}", headers=OWNER).status_code == 404


class TestBindingEndpoints:
    """Tests for binding and unbinding."""

    def test_bind(self, test_client, agents, created):
        response = test_client.post(f"{BASE}/A1/{created['id']}", headers=OWNER)

        assert response.status_code == 200
        assert response.json() == {"message": "Action added successfully"}
        assert agents.get(AgentQuery(id="A1")).action_refs == [
            encode_action_ref("api.example.com", created["id"])
        ]

    def test_bind_other_users_agent(self, test_client, created):
        """Test agents of other users look absent."""
        response = test_client.post(f"{BASE}/A1/{created['id']}", headers=OTHER)
        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "not_found"

    def test_bind_as_admin(self, test_client, created):
        assert test_client.post(f"{BASE}/A1/{created['id']}", headers=ADMIN).status_code == 200

    def test_bind_missing_action(self, test_client, agents):
        response = test_client.post(f"{BASE}/A1/missing", headers=OWNER)
        assert response.status_code == 404

    def test_unbind(self, test_client, agents, created):
        test_client.post(f"{BASE}/A1/{created['id']}", headers=OWNER)

        response = test_client.delete(f"{BASE}/A1/{created['id']}", headers=OWNER)

        assert response.status_code == 200
        assert response.json() == {"message": "Action deleted for agent successfully"}
        agent = agents.get(AgentQuery(id="A1"))
        assert agent.action_refs == []
        assert agent.tool_refs == []

    def test_unbind_not_bound(self, test_client, created):
        response = test_client.delete(f"{BASE}/A1/{created['id']}", headers=OWNER)
        assert response.status_code == 400


class TestReconcileEndpoints:
    """Tests for the repair endpoints."""

    def test_reconcile_agent(self, test_client, agents):
        """Test dangling refs are reported and removed."""
        agents.update(AgentQuery(id="A1"), {
            "action_refs": [encode_action_ref("old.example.com", "gone")],
            "tool_refs": [encode_tool_ref("lookup", "old.example.com")],
        })

        response = test_client.post(f"{BASE}/reconcile/agents/A1", headers=OWNER)

        assert response.status_code == 200
        assert response.json()["agents_updated"] == ["A1"]
        assert agents.get(AgentQuery(id="A1")).action_refs == []

    def test_reconcile_agent_of_other_user(self, test_client, agents):
        assert test_client.post(f"{BASE}/reconcile/agents/A1", headers=OTHER).status_code == 404

    def test_reconcile_action_requires_admin(self, test_client, created):
        """Test only admins can re-run an action's cascade."""
        url = f"{BASE}/reconcile/actions/{created['id']}"
        assert test_client.post(url, headers=OWNER).status_code == 404

        response = test_client.post(url, headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["agents_updated"] == []


class TestCascadeFailure:
    """Tests for reporting partial cascade failures."""

    def test_update_reports_failed_agents(self, sync, agent_store, owner):
        """Test a failed cascade is a 500 naming the failed agents."""
        from agent_actions.router import get_synchronizer
        from agent_actions.server import create_app

        app = create_app()
        app.dependency_overrides[get_synchronizer] = lambda: sync
        client = TestClient(app)

        action = sync.create_action("A1", [{"name": "lookup"}], {"domain": "api.example.com"}, owner)
        for agent_id in ("A1", "A2"):
            agent_store.create(Agent(id=agent_id, author=owner.id))
            sync.bind_action(agent_id, action["id"], owner)
        agent_store.fail_updates_for = {"A2"}

        response = client.put(
            f"{BASE}/{action['id']}",
            json={"functions": [{"name": "lookup"}], "metadata": {"domain": "api2.example.com"}},
            headers=OWNER,
        )

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["kind"] == "store_error"
        assert detail["failed_agent_ids"] == ["A2"]


class TestErrorSchema:
    """Tests for the documented error body."""

    def test_error_responses_documented(self, test_client):
        """Test action routes document the structured error body."""
        schema = test_client.get("/openapi.json").json()

        assert "ErrorResponse" in schema["components"]["schemas"]
        responses = schema["paths"][f"{BASE}/{{action_id}}"]["put"]["responses"]
        for status in ("400", "404", "500"):
            assert responses[status]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")

    def test_error_body_matches_schema(self, test_client):
        """Test a real error body fits the documented shape."""
        from agent_actions.schemas import ErrorResponse

        response = test_client.put(
            f"{BASE}/missing",
            json={"functions": [{"name": "lookup"}], "metadata": {"domain": "api.example.com"}},
            headers=OWNER,
        )

        assert response.status_code == 404
        body = ErrorResponse.model_validate(response.json())
        assert body.detail.kind == "not_found"
