"""Encoded references linking agents to actions and tools.

Two formats are stored on agents:
- action reference: ``{domain}{ACTION_DELIMITER}{action_id}``
- tool reference: ``{function_name}{ACTION_DELIMITER}{domain}``

No component may contain the delimiter or be empty.
"""

from typing import Optional, Tuple

from .errors import InvalidReferenceFormat

ACTION_DELIMITER = "_action_"


def ensure_component(value: str, label: str = "component") -> str:
    """Validate a single reference component.

    Raises:
        InvalidReferenceFormat: If the value is empty or contains the delimiter
    """
    if not isinstance(value, str) or not value:
        raise InvalidReferenceFormat(f"Reference {label} must be a non-empty string")
    if ACTION_DELIMITER in value:
        raise InvalidReferenceFormat(
            f"Reference {label} '{value}' contains reserved delimiter '{ACTION_DELIMITER}'"
        )
    return value


def encode_action_ref(domain: str, action_id: str) -> str:
    """Encode the reference an agent keeps for a bound action."""
    ensure_component(domain, "domain")
    ensure_component(action_id, "action id")
    return f"{domain}{ACTION_DELIMITER}{action_id}"


def encode_tool_ref(function_name: str, domain: str) -> str:
    """Encode the reference an agent keeps for one callable function."""
    ensure_component(function_name, "function name")
    ensure_component(domain, "domain")
    return f"{function_name}{ACTION_DELIMITER}{domain}"


def _split(ref: str) -> Tuple[str, str]:
    if not isinstance(ref, str) or ACTION_DELIMITER not in ref:
        raise InvalidReferenceFormat(f"Reference '{ref}' has no delimiter")
    head, tail = ref.split(ACTION_DELIMITER, 1)
    if not head or not tail or ACTION_DELIMITER in tail:
        raise InvalidReferenceFormat(f"Reference '{ref}' is malformed")
    return head, tail


def split_action_ref(ref: str) -> Tuple[str, str]:
    """Split an action reference into ``(domain, action_id)``."""
    return _split(ref)


def split_tool_ref(ref: str) -> Tuple[str, str]:
    """Split a tool reference into ``(function_name, domain)``."""
    return _split(ref)


def ref_contains_id(ref: str, value: str) -> bool:
    """Substring containment test used for unstructured matching."""
    return bool(ref) and bool(value) and value in ref


def action_ref_matches(ref: str, action_id: str) -> bool:
    """Check whether an action reference points at ``action_id``.

    Parsed references compare the id exactly. Entries that do not parse
    fall back to substring containment so they can still be cleaned up.
    """
    try:
        _, ref_action_id = split_action_ref(ref)
    except InvalidReferenceFormat:
        return ref_contains_id(ref, action_id)
    return ref_action_id == action_id


def action_ref_domain(ref: str) -> Optional[str]:
    """Domain recorded in an action reference, or None if unparseable."""
    try:
        domain, _ = split_action_ref(ref)
    except InvalidReferenceFormat:
        return None
    return domain


def tool_ref_domain(ref: str) -> Optional[str]:
    """Domain a tool reference is served from, or None if unparseable."""
    try:
        _, domain = split_tool_ref(ref)
    except InvalidReferenceFormat:
        return None
    return domain


def tool_ref_matches(ref: str, domains=(), action_id: Optional[str] = None) -> bool:
    """Check whether a tool reference belongs to one of ``domains`` or to ``action_id``.

    Args:
        ref: Encoded tool reference
        domains: Domains whose tools should match (empty values are ignored)
        action_id: Action id matched by substring containment

    Returns:
        True if the reference should be treated as belonging to the action
    """
    if not ref:
        return False
    if action_id and ref_contains_id(ref, action_id):
        return True
    wanted = {d for d in domains if d}
    if not wanted:
        return False
    domain = tool_ref_domain(ref)
    if domain is None:
        return any(ref_contains_id(ref, d) for d in wanted)
    return domain in wanted
