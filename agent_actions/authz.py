"""Authorization gate for agent modifications.

Admins may modify any agent; everyone else only the agents they author.
Non-admin lookups are scoped at the store-filter level, so an agent the
caller does not own is reported as not found rather than forbidden.
"""

from .models import Agent, AgentQuery, Identity, SystemRole


def is_admin(identity: Identity) -> bool:
    """Capability predicate for the admin override."""
    return identity.role == SystemRole.ADMIN


def can_modify(identity: Identity, agent: Agent) -> bool:
    """Check if ``identity`` may change ``agent``'s references."""
    if is_admin(identity):
        return True
    return identity.id == agent.author


def scoped_agent_query(identity: Identity, agent_id: str) -> AgentQuery:
    """Build the agent lookup filter for ``identity``."""
    if is_admin(identity):
        return AgentQuery(id=agent_id)
    return AgentQuery(id=agent_id, author=identity.id)
