"""Store interfaces consumed by the synchronizer.

Implementations must raise ``StoreError`` for persistence failures and
must be safe to call from cascade worker threads.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import Action, Agent, AgentQuery


class ActionStore(ABC):
    """Keyed document store for action records."""

    @abstractmethod
    def get(self, action_id: str) -> Optional[Action]:
        """Get an action by id, or None if absent."""
        pass

    @abstractmethod
    def upsert(self, action_id: str, fields: Dict[str, Any]) -> Action:
        """Create or update an action.

        Args:
            action_id: Action id
            fields: Any of ``owner``, ``agent_id``, ``metadata``, ``function_names``

        Returns:
            The stored action
        """
        pass

    @abstractmethod
    def delete(self, action_id: str) -> Optional[Action]:
        """Delete an action, returning the removed record or None."""
        pass

    @abstractmethod
    def list(self, owner: Optional[str] = None) -> List[Action]:
        """List actions, optionally restricted to one owner."""
        pass


class AgentStore(ABC):
    """Keyed document store for agent records."""

    @abstractmethod
    def get(self, query: AgentQuery) -> Optional[Agent]:
        """Get the first agent matching ``query``, or None."""
        pass

    @abstractmethod
    def query_many(self, query: AgentQuery) -> List[Agent]:
        """Get every agent matching ``query``.

        ``query.action_id`` matches agents with an action reference
        containing the id.
        """
        pass

    @abstractmethod
    def update(self, query: AgentQuery, fields: Dict[str, Any]) -> Agent:
        """Update the agent matching ``query``.

        Args:
            query: Filter identifying a single agent
            fields: Any of ``action_refs``, ``tool_refs``, ``name``

        Raises:
            NotFound: If no agent matches
        """
        pass

    @abstractmethod
    def create(self, agent: Agent) -> Agent:
        """Insert a new agent record."""
        pass
