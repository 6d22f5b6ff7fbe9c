"""Action-agent binding synchronizer.

Keeps two separately stored collections consistent:
- actions, each exposing functions served from one domain
- agents, which bind actions through encoded action and tool references

Provides:
- List/create/update/delete of actions, cascading reference changes into
  every agent that binds the action
- Bind/unbind of an action on one agent (owner-or-admin scoped)
- Reconciliation of one agent or one action, for repairing drift left by an
  interrupted cascade

Cascades are not transactional. Every per-agent step is idempotent, so
re-running an operation or reconciling converges.
"""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from pydantic import ValidationError as SchemaValidationError

from .authz import is_admin, scoped_agent_query
from .config import get_settings
from .domains import DomainParser, DomainValidator
from .errors import (
    ActionSyncError,
    CascadeError,
    DomainNotAllowed,
    InvalidReferenceFormat,
    NotFound,
    StoreError,
    ValidationError,
)
from .logging_config import OperationLogger, get_logger
from .metadata import MetadataCrypto, remove_nullish, sanitize
from .models import Action, Agent, AgentQuery, Identity
from .references import (
    action_ref_domain,
    action_ref_matches,
    encode_action_ref,
    encode_tool_ref,
    ensure_component,
    ref_contains_id,
    split_action_ref,
    split_tool_ref,
    tool_ref_domain,
    tool_ref_matches,
)
from .schemas import FunctionTool
from .stores.base import ActionStore, AgentStore

logger = get_logger(__name__)

RefLists = Tuple[List[str], List[str]]


# -----------------------------------------------------------------------------
# Reference transforms
# -----------------------------------------------------------------------------

def _dedupe(values: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def shared_domains(action_refs: Sequence[str], action_id: str) -> Set[str]:
    """Domains served by the other actions an agent binds."""
    return {
        domain
        for domain in (action_ref_domain(ref) for ref in action_refs if not action_ref_matches(ref, action_id))
        if domain
    }


def _drops_tool(
    ref: str,
    action_id: str,
    domains: Iterable[Optional[str]],
    keep_domains: Set[str],
    function_names: Set[str],
) -> bool:
    # Tools on a domain another bound action also serves are only dropped by name
    if ref_contains_id(ref, action_id):
        return True
    if not tool_ref_matches(ref, domains=domains):
        return False
    domain = tool_ref_domain(ref)
    if domain in keep_domains:
        return split_tool_ref(ref)[0] in function_names
    return True


def _remaining_tools(
    action_refs: Sequence[str],
    tool_refs: Sequence[str],
    action_id: str,
    domains: Iterable[Optional[str]],
    function_names: Iterable[str],
) -> List[str]:
    domains = set(domains)
    keep_domains = shared_domains(action_refs, action_id)
    names = set(function_names)
    return [
        ref for ref in tool_refs
        if not _drops_tool(ref, action_id, domains, keep_domains, names)
    ]


def attach_refs(
    action_refs: Sequence[str],
    tool_refs: Sequence[str],
    action_id: str,
    domain: str,
    function_names: Sequence[str],
    stale_domains: Iterable[Optional[str]] = (),
    previous_function_names: Iterable[str] = (),
) -> RefLists:
    """Point an agent's references at the current state of one action.

    Drops every action reference for ``action_id`` and the tool references
    served from a stale domain (or containing the action id), then appends
    one action reference and one tool reference per function. On a domain
    that another bound action also serves, only tools named in
    ``function_names`` or ``previous_function_names`` are dropped.
    """
    new_action_refs = [ref for ref in action_refs if not action_ref_matches(ref, action_id)]
    new_action_refs.append(encode_action_ref(domain, action_id))

    new_tool_refs = _remaining_tools(
        action_refs, tool_refs, action_id, stale_domains,
        {*function_names, *previous_function_names},
    )
    new_tool_refs.extend(encode_tool_ref(name, domain) for name in function_names)
    return new_action_refs, _dedupe(new_tool_refs)


def detach_refs(
    action_refs: Sequence[str],
    tool_refs: Sequence[str],
    action_id: str,
    domains: Iterable[Optional[str]] = (),
    function_names: Iterable[str] = (),
) -> RefLists:
    """Remove one action and the tools served from ``domains`` from an agent.

    Tools on a domain another bound action also serves are kept unless
    named in ``function_names``.
    """
    new_action_refs = [ref for ref in action_refs if not action_ref_matches(ref, action_id)]
    new_tool_refs = _remaining_tools(action_refs, tool_refs, action_id, domains, function_names)
    return new_action_refs, new_tool_refs


def binds_action(agent: Agent, action_id: str) -> bool:
    return any(action_ref_matches(ref, action_id) for ref in agent.action_refs)


def bound_domains(action_refs: Sequence[str], action_id: str) -> List[str]:
    """Domains recorded in the action references for ``action_id``."""
    return _dedupe(
        domain
        for domain in (action_ref_domain(ref) for ref in action_refs if action_ref_matches(ref, action_id))
        if domain
    )


@dataclass
class ReconcileResult:
    """References changed by a reconcile run."""
    agents_updated: List[str] = field(default_factory=list)
    removed_action_refs: List[str] = field(default_factory=list)
    added_action_refs: List[str] = field(default_factory=list)
    removed_tool_refs: List[str] = field(default_factory=list)
    added_tool_refs: List[str] = field(default_factory=list)

    def record(self, before: Agent, after: RefLists) -> None:
        action_refs, tool_refs = after
        if action_refs == before.action_refs and tool_refs == before.tool_refs:
            return
        self.agents_updated.append(before.id)
        self.removed_action_refs.extend(r for r in before.action_refs if r not in action_refs)
        self.added_action_refs.extend(r for r in action_refs if r not in before.action_refs)
        self.removed_tool_refs.extend(r for r in before.tool_refs if r not in tool_refs)
        self.added_tool_refs.extend(r for r in tool_refs if r not in before.tool_refs)

    @property
    def changed(self) -> bool:
        return bool(self.agents_updated)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agents_updated": list(self.agents_updated),
            "removed_action_refs": list(self.removed_action_refs),
            "added_action_refs": list(self.added_action_refs),
            "removed_tool_refs": list(self.removed_tool_refs),
            "added_tool_refs": list(self.added_tool_refs),
        }


# -----------------------------------------------------------------------------
# Synchronizer
# -----------------------------------------------------------------------------

class ActionSynchronizer:
    """Orchestrates action and agent stores for every binding operation.

    Each operation re-reads current state; nothing is cached between calls.
    Validation and not-found conditions are raised before any write.
    """

    def __init__(
        self,
        action_store: ActionStore,
        agent_store: AgentStore,
        crypto: Optional[MetadataCrypto] = None,
        domain_validator: Optional[DomainValidator] = None,
        domain_parser: Optional[DomainParser] = None,
        id_factory: Optional[Callable[[], str]] = None,
        max_workers: Optional[int] = None,
    ):
        """Initialize the synchronizer.

        Args:
            action_store: Store for action records
            agent_store: Store for agent records
            crypto: Metadata encryption (defaults to the configured key)
            domain_validator: Allowlist policy (defaults to configured allowlist)
            domain_parser: Domain normalizer
            id_factory: Generates new action ids
            max_workers: Concurrent agent writes per cascade (1 = sequential)
        """
        self.action_store = action_store
        self.agent_store = agent_store
        self.crypto = crypto or MetadataCrypto.from_settings()
        self.domain_validator = domain_validator or DomainValidator()
        self.domain_parser = domain_parser or DomainParser()
        self.id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self.max_workers = max_workers or get_settings().cascade_max_workers

    @contextmanager
    def _track(self, operation: str, **context) -> Iterator[OperationLogger]:
        op = OperationLogger(logger).start(operation, **context)
        try:
            yield op
        except ActionSyncError as e:
            op.failure(e.message, error_kind=e.kind.value)
            raise

    # -------------------------------------------------------------------------
    # Validation helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _function_names(functions: Optional[Sequence[Any]]) -> List[str]:
        if not functions:
            raise ValidationError("No functions provided")
        names = []
        for tool in functions:
            if not isinstance(tool, FunctionTool):
                try:
                    tool = FunctionTool.model_validate(tool)
                except SchemaValidationError as e:
                    raise ValidationError(f"Invalid function definition: {e.error_count()} error(s)") from e
            names.append(ensure_component(tool.name, "function name"))
        return _dedupe(names)

    def _resolve_domain(self, domain: Optional[str]) -> str:
        return self.domain_parser.parse(domain, strict=True)

    def _prepare_metadata(self, raw_metadata: Optional[Dict[str, Any]]) -> Tuple[Dict[str, Any], str]:
        metadata = self.crypto.encrypt(remove_nullish(raw_metadata))

        if not self.domain_validator.is_allowed(metadata.get("domain")):
            raise DomainNotAllowed(metadata.get("domain"))

        domain = self._resolve_domain(metadata.get("domain"))
        if not domain:
            raise ValidationError("No domain provided")
        return metadata, domain

    @staticmethod
    def _present(action: Action) -> Dict[str, Any]:
        data = action.to_dict()
        data["metadata"] = sanitize(action.metadata)
        return data

    def _scoped_agent(self, agent_id: str, identity: Identity, message: str) -> Tuple[Agent, AgentQuery]:
        query = scoped_agent_query(identity, agent_id)
        agent = self.agent_store.get(query)
        if agent is None:
            raise NotFound(message)
        return agent, query

    # -------------------------------------------------------------------------
    # Cascade
    # -------------------------------------------------------------------------

    def _write_agent(self, agent: Agent, refs: RefLists) -> Agent:
        action_refs, tool_refs = refs
        if action_refs == agent.action_refs and tool_refs == agent.tool_refs:
            return agent
        return self.agent_store.update(
            AgentQuery(id=agent.id),
            {"action_refs": action_refs, "tool_refs": tool_refs},
        )

    def _cascade(
        self,
        action_id: str,
        agents: List[Agent],
        transform: Callable[[Agent], RefLists],
        result: Optional[ReconcileResult] = None,
    ) -> int:
        """Apply ``transform`` to every agent and persist the changes.

        Every agent is attempted even when some writes fail.

        Returns:
            Number of agents processed

        Raises:
            CascadeError: If any agent write failed
        """
        failed: List[str] = []
        lock = threading.Lock()

        def apply(agent: Agent) -> None:
            refs = transform(agent)
            try:
                self._write_agent(agent, refs)
            except NotFound:
                logger.warning(
                    "Agent disappeared during cascade",
                    extra={"agent_id": agent.id, "action_id": action_id},
                )
                return
            except StoreError as e:
                logger.error(
                    "Cascade write failed",
                    extra={"agent_id": agent.id, "action_id": action_id, "error": e.message},
                )
                with lock:
                    failed.append(agent.id)
                return
            if result is not None:
                with lock:
                    result.record(agent, refs)

        if self.max_workers <= 1 or len(agents) <= 1:
            for agent in agents:
                apply(agent)
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(agents))) as pool:
                futures = [pool.submit(apply, agent) for agent in agents]
                for future in as_completed(futures):
                    future.result()

        if failed:
            raise CascadeError(action_id, sorted(failed))
        return len(agents)

    def _agents_binding(self, action_id: str) -> List[Agent]:
        # The store matches by containment; keep agents whose refs name this exact id
        candidates = self.agent_store.query_many(AgentQuery(action_id=action_id))
        return [agent for agent in candidates if binds_action(agent, action_id)]

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def list_actions(self, identity: Identity) -> List[Dict[str, Any]]:
        """List actions visible to ``identity``.

        Regular users see the actions they own; admins see every action.
        """
        owner = None if is_admin(identity) else identity.id
        return [self._present(action) for action in self.action_store.list(owner=owner)]

    def create_action(
        self,
        agent_id: str,
        functions: Sequence[Any],
        metadata: Optional[Dict[str, Any]],
        identity: Identity,
    ) -> Dict[str, Any]:
        """Create a new action under ``agent_id``.

        The action is not bound to any agent; binding is a separate step.

        Returns:
            The stored action with secret metadata removed

        Raises:
            ValidationError: No functions, or no usable domain
            DomainNotAllowed: Domain rejected by the allowlist
            InvalidReferenceFormat: A function name contains the delimiter
        """
        with self._track("create_action", agent_id=agent_id, user_id=identity.id) as op:
            function_names = self._function_names(functions)
            stored_metadata, domain = self._prepare_metadata(metadata)

            action_id = ensure_component(self.id_factory(), "action id")
            action = self.action_store.upsert(action_id, {
                "owner": identity.id,
                "agent_id": agent_id,
                "metadata": stored_metadata,
                "function_names": function_names,
            })

            op.success(action_id=action_id, domain=domain, function_count=len(function_names))
            return self._present(action)

    def update_action(
        self,
        action_id: str,
        functions: Sequence[Any],
        metadata: Optional[Dict[str, Any]],
        identity: Identity,
    ) -> Dict[str, Any]:
        """Update an action and cascade the change into every binding agent.

        The updating identity becomes the action's owner.

        Raises:
            NotFound: Action absent
            ValidationError, DomainNotAllowed, InvalidReferenceFormat: As create
            CascadeError: Some agent writes failed (the action itself was saved)
        """
        with self._track("update_action", action_id=action_id, user_id=identity.id) as op:
            action = self.action_store.get(action_id)
            if action is None:
                raise NotFound("Action not found")

            old_domain = self._resolve_domain(action.domain)

            function_names = self._function_names(functions)
            stored_metadata, domain = self._prepare_metadata(metadata)

            updated = self.action_store.upsert(action_id, {
                "owner": identity.id,
                "metadata": stored_metadata,
                "function_names": function_names,
            })
            if action.owner != identity.id:
                logger.info(
                    "Action owner re-stamped",
                    extra={"action_id": action_id, "previous_owner": action.owner, "owner": identity.id},
                )

            def transform(agent: Agent) -> RefLists:
                stale = {old_domain, *bound_domains(agent.action_refs, action_id)}
                return attach_refs(
                    agent.action_refs, agent.tool_refs, action_id, domain, function_names, stale,
                    previous_function_names=action.function_names,
                )

            count = self._cascade(action_id, self._agents_binding(action_id), transform)

            op.success(old_domain=old_domain, domain=domain, agents=count)
            return self._present(updated)

    def delete_action(self, action_id: str) -> None:
        """Delete an action and remove its references from every agent.

        Raises:
            NotFound: Action absent
            CascadeError: Some agent writes failed (the action is already deleted;
                reconcile the action to finish the cleanup)
        """
        with self._track("delete_action", action_id=action_id) as op:
            action = self.action_store.delete(action_id)
            if action is None:
                raise NotFound("Action not found")

            domain = self._resolve_domain(action.domain)

            def transform(agent: Agent) -> RefLists:
                domains = {domain, *bound_domains(agent.action_refs, action_id)}
                return detach_refs(
                    agent.action_refs, agent.tool_refs, action_id, domains, action.function_names
                )

            count = self._cascade(action_id, self._agents_binding(action_id), transform)
            op.success(domain=domain, agents=count)

    def bind_action(self, agent_id: str, action_id: str, identity: Identity) -> Agent:
        """Attach an existing action to an agent.

        A no-op when the agent already references the action.

        Raises:
            NotFound: Agent not visible to ``identity``, or action absent
        """
        with self._track("bind_action", agent_id=agent_id, action_id=action_id, user_id=identity.id) as op:
            agent, query = self._scoped_agent(agent_id, identity, "Agent not found for adding action")

            action = self.action_store.get(action_id)
            if action is None:
                raise NotFound("Action not found for adding to agent")

            domain = self._resolve_domain(action.domain)
            if not domain:
                raise ValidationError("No domain provided")

            if binds_action(agent, action_id):
                op.success(changed=False)
                return agent

            action_refs, tool_refs = attach_refs(
                agent.action_refs, agent.tool_refs, action_id, domain, action.function_names,
                stale_domains=(domain,),
            )
            updated = self.agent_store.update(query, {"action_refs": action_refs, "tool_refs": tool_refs})
            op.success(changed=True, domain=domain)
            return updated

    def unbind_action(self, agent_id: str, action_id: str, identity: Identity) -> Agent:
        """Detach an action and the tools served from its domain from an agent.

        Tools another bound action serves from the same domain are kept.

        Raises:
            NotFound: Agent not visible to ``identity``
            ValidationError: The agent does not reference the action
        """
        with self._track("unbind_action", agent_id=agent_id, action_id=action_id, user_id=identity.id) as op:
            agent, query = self._scoped_agent(agent_id, identity, "Agent not found for deleting action")

            if not binds_action(agent, action_id):
                raise ValidationError("No domain provided")

            domains = bound_domains(agent.action_refs, action_id)
            action = self.action_store.get(action_id)
            action_refs, tool_refs = detach_refs(
                agent.action_refs, agent.tool_refs, action_id, domains,
                action.function_names if action else (),
            )

            updated = self.agent_store.update(query, {"action_refs": action_refs, "tool_refs": tool_refs})
            op.success(domains=domains)
            return updated

    def reconcile_agent(self, agent_id: str, identity: Identity) -> ReconcileResult:
        """Recompute one agent's references from current action state.

        - Duplicate references to one action collapse into one
        - References to deleted actions (and their domains' tools) are dropped
        - Remaining references are rewritten with each action's current
          domain and function list
        - Unparseable action references are dropped
        """
        with self._track("reconcile_agent", agent_id=agent_id, user_id=identity.id) as op:
            agent, query = self._scoped_agent(agent_id, identity, "Agent not found")

            action_ids: List[str] = []
            stale_domains: Set[str] = set()
            for ref in agent.action_refs:
                try:
                    ref_domain, ref_action_id = split_action_ref(ref)
                except InvalidReferenceFormat:
                    continue
                stale_domains.add(ref_domain)
                if ref_action_id not in action_ids:
                    action_ids.append(ref_action_id)

            live: List[Tuple[str, str, List[str]]] = []
            for action_id in action_ids:
                action = self.action_store.get(action_id)
                domain = self._resolve_domain(action.domain) if action else ""
                if action is None or not domain:
                    continue
                stale_domains.add(domain)
                live.append((action_id, domain, list(action.function_names)))

            dropped_ids = [action_id for action_id in action_ids if action_id not in {a for a, _, _ in live}]
            action_refs = [encode_action_ref(domain, action_id) for action_id, domain, _ in live]
            tool_refs = [
                ref for ref in agent.tool_refs
                if not tool_ref_matches(ref, domains=stale_domains)
                and not any(action_id in ref for action_id in dropped_ids)
            ]
            for _, domain, names in live:
                tool_refs.extend(encode_tool_ref(name, domain) for name in names)
            tool_refs = _dedupe(tool_refs)

            result = ReconcileResult()
            if action_refs != agent.action_refs or tool_refs != agent.tool_refs:
                self.agent_store.update(query, {"action_refs": action_refs, "tool_refs": tool_refs})
                result.record(agent, (action_refs, tool_refs))

            op.success(changed=result.changed, dropped_actions=len(dropped_ids))
            return result

    def reconcile_action(self, action_id: str) -> ReconcileResult:
        """Re-run the cascade for one action from scratch.

        If the action exists, every binding agent is pointed at its current
        domain and functions; otherwise its references are removed. Safe to
        retry after a partial failure.

        Raises:
            CascadeError: Some agent writes failed
        """
        with self._track("reconcile_action", action_id=action_id) as op:
            agents = self._agents_binding(action_id)
            action = self.action_store.get(action_id)
            domain = self._resolve_domain(action.domain) if action else ""
            result = ReconcileResult()

            if action is not None and domain:
                function_names = list(action.function_names)

                def transform(agent: Agent) -> RefLists:
                    stale = bound_domains(agent.action_refs, action_id)
                    return attach_refs(
                        agent.action_refs, agent.tool_refs, action_id, domain, function_names, stale
                    )
            else:
                def transform(agent: Agent) -> RefLists:
                    domains = {domain, *bound_domains(agent.action_refs, action_id)}
                    return detach_refs(agent.action_refs, agent.tool_refs, action_id, domains)

            self._cascade(action_id, agents, transform, result)
            op.success(exists=action is not None, agents=len(result.agents_updated))
            return result
