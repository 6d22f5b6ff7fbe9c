"""Action-agent binding synchronizer.

Keeps externally-defined actions and the agents that bind them in sync:
- Reference codec for the encoded action/tool references stored on agents
- Metadata sanitizing and encryption of secret fields
- Owner-or-admin authorization for agent modifications
- Synchronizer operations (create, update, delete, bind, unbind, reconcile)

The HTTP layer lives in ``agent_actions.router`` and ``agent_actions.server``;
everything else has no dependency on a web framework.
"""

__version__ = "0.1.0"
