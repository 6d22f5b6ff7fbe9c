"""Action and agent stores.

- ActionStore / AgentStore: interfaces consumed by the synchronizer
- SqlActionStore / SqlAgentStore: SQLAlchemy implementations
- InMemoryActionStore / InMemoryAgentStore: dictionary-backed, for tests
"""

from .base import ActionStore, AgentStore
from .memory import InMemoryActionStore, InMemoryAgentStore
from .sql import (
    SqlActionStore,
    SqlAgentStore,
    get_engine,
    get_session_local,
    init_db,
)

__all__ = [
    "ActionStore",
    "AgentStore",
    "InMemoryActionStore",
    "InMemoryAgentStore",
    "SqlActionStore",
    "SqlAgentStore",
    "get_engine",
    "get_session_local",
    "init_db",
]
