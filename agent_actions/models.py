"""Record types shared by the synchronizer and the stores."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SystemRole(str, Enum):
    """Roles an acting identity can hold."""
    ADMIN = "ADMIN"
    USER = "USER"


@dataclass(frozen=True)
class Identity:
    """The user performing an operation."""
    id: str
    role: SystemRole = SystemRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == SystemRole.ADMIN


@dataclass
class Action:
    """An externally-defined set of functions served from one domain.

    Attributes:
        id: Opaque unique id, assigned at creation
        owner: Identity id of the creating (or last updating) user
        agent_id: Agent the action was created under
        metadata: Connection metadata; secret fields are stored encrypted
        function_names: Ordered, distinct function names
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """
    id: str
    owner: str
    agent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    function_names: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def domain(self) -> Optional[str]:
        return self.metadata.get("domain")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "owner": self.owner,
            "agent_id": self.agent_id,
            "metadata": dict(self.metadata),
            "function_names": list(self.function_names),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class Agent:
    """An agent and the encoded references to the actions it binds.

    Attributes:
        id: Opaque unique id
        author: Owning identity id
        name: Display name
        action_refs: Encoded action references
        tool_refs: Encoded tool references
    """
    id: str
    author: str
    name: str = ""
    action_refs: List[str] = field(default_factory=list)
    tool_refs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author,
            "name": self.name,
            "action_refs": list(self.action_refs),
            "tool_refs": list(self.tool_refs),
        }


@dataclass(frozen=True)
class AgentQuery:
    """Store filter for agent lookups.

    ``author`` restricts the lookup to agents owned by that identity;
    ``action_id`` matches agents with an action reference containing it.
    """
    id: Optional[str] = None
    author: Optional[str] = None
    action_id: Optional[str] = None

    def matches(self, agent: Agent) -> bool:
        if self.id is not None and agent.id != self.id:
            return False
        if self.author is not None and agent.author != self.author:
            return False
        if self.action_id is not None:
            return any(self.action_id in ref for ref in agent.action_refs)
        return True
