"""In-memory stores for tests and local development.

Records are copied on the way in and out, so callers never share
mutable state with the store.
"""

import copy
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import NotFound, StoreError
from ..models import Action, Agent, AgentQuery
from .base import ActionStore, AgentStore

ACTION_FIELDS = {"owner", "agent_id", "metadata", "function_names"}
AGENT_FIELDS = {"action_refs", "tool_refs", "name"}


class InMemoryActionStore(ActionStore):
    """Dictionary-backed action store."""

    def __init__(self):
        self._actions: Dict[str, Action] = {}
        self._lock = threading.Lock()

    def get(self, action_id: str) -> Optional[Action]:
        with self._lock:
            action = self._actions.get(action_id)
            return copy.deepcopy(action) if action else None

    def upsert(self, action_id: str, fields: Dict[str, Any]) -> Action:
        unknown = set(fields) - ACTION_FIELDS
        if unknown:
            raise StoreError(f"Unknown action fields: {sorted(unknown)}")

        now = datetime.now(timezone.utc)
        with self._lock:
            action = self._actions.get(action_id)
            if action is None:
                action = Action(id=action_id, owner=fields.get("owner", ""), created_at=now)
                self._actions[action_id] = action
            for key, value in fields.items():
                setattr(action, key, copy.deepcopy(value))
            action.updated_at = now
            return copy.deepcopy(action)

    def delete(self, action_id: str) -> Optional[Action]:
        with self._lock:
            return self._actions.pop(action_id, None)

    def list(self, owner: Optional[str] = None) -> List[Action]:
        with self._lock:
            return [
                copy.deepcopy(action)
                for action in self._actions.values()
                if owner is None or action.owner == owner
            ]


class InMemoryAgentStore(AgentStore):
    """Dictionary-backed agent store.

    Attributes:
        fail_updates_for: Agent ids whose updates raise ``StoreError``,
            for exercising partial cascade failures
    """

    def __init__(self):
        self._agents: Dict[str, Agent] = {}
        self._lock = threading.Lock()
        self.fail_updates_for: set = set()
        self.update_calls: List[str] = []

    def get(self, query: AgentQuery) -> Optional[Agent]:
        with self._lock:
            for agent in self._agents.values():
                if query.matches(agent):
                    return copy.deepcopy(agent)
        return None

    def query_many(self, query: AgentQuery) -> List[Agent]:
        with self._lock:
            return [copy.deepcopy(a) for a in self._agents.values() if query.matches(a)]

    def update(self, query: AgentQuery, fields: Dict[str, Any]) -> Agent:
        unknown = set(fields) - AGENT_FIELDS
        if unknown:
            raise StoreError(f"Unknown agent fields: {sorted(unknown)}")

        with self._lock:
            agent = next((a for a in self._agents.values() if query.matches(a)), None)
            if agent is None:
                raise NotFound("Agent not found")
            self.update_calls.append(agent.id)
            if agent.id in self.fail_updates_for:
                raise StoreError(f"Simulated write failure for agent {agent.id}")
            for key, value in fields.items():
                setattr(agent, key, list(value) if isinstance(value, list) else value)
            return copy.deepcopy(agent)

    def create(self, agent: Agent) -> Agent:
        with self._lock:
            if agent.id in self._agents:
                raise StoreError(f"Agent '{agent.id}' already exists")
            self._agents[agent.id] = copy.deepcopy(agent)
            return copy.deepcopy(agent)
