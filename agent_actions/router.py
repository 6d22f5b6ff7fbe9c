"""FastAPI router for agent action endpoints.

Provides:
- Action listing, creation, update and deletion
- Binding and unbinding an action on an agent
- Reconciliation endpoints for repairing drifted references
"""

from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from .authz import is_admin
from .config import get_settings
from .errors import ActionSyncError, ErrorKind
from .logging_config import get_logger
from .models import Identity, SystemRole
from .schemas import (
    ActionRequest,
    ActionResponse,
    ErrorResponse,
    MessageResponse,
    ReconcileResponse,
)
from .stores.sql import SqlActionStore, SqlAgentStore, get_engine, get_session_local, init_db
from .synchronizer import ActionSynchronizer

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/agents/actions",
    tags=["actions"],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid functions, domain or reference"},
        404: {"model": ErrorResponse, "description": "Action or agent not found"},
        500: {"model": ErrorResponse, "description": "Store or cascade failure"},
    },
)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.DOMAIN_NOT_ALLOWED: 400,
    ErrorKind.INVALID_REFERENCE: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STORE: 500,
}


# -------------------------------------------------------------------------
# Dependencies
# -------------------------------------------------------------------------

_synchronizer: Optional[ActionSynchronizer] = None


def get_synchronizer() -> ActionSynchronizer:
    """Get the process-wide synchronizer backed by the configured database."""
    global _synchronizer
    if _synchronizer is None:
        engine = get_engine()
        init_db(engine)
        session_factory = get_session_local(engine)
        _synchronizer = ActionSynchronizer(
            SqlActionStore(session_factory),
            SqlAgentStore(session_factory),
            max_workers=get_settings().cascade_max_workers,
        )
    return _synchronizer


def get_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Identity:
    """Resolve the acting identity from request headers."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        role = SystemRole((x_user_role or SystemRole.USER.value).upper())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={"kind": ErrorKind.VALIDATION.value, "message": f"Unknown role: {x_user_role}"},
        )
    return Identity(id=x_user_id, role=role)


def _raise_http(error: ActionSyncError) -> NoReturn:
    raise HTTPException(status_code=STATUS_BY_KIND.get(error.kind, 500), detail=error.to_dict())


def _raise_unexpected(message: str) -> NoReturn:
    logger.error(message, exc_info=True)
    raise HTTPException(status_code=500, detail={"kind": ErrorKind.STORE.value, "message": message})


# -------------------------------------------------------------------------
# Action Endpoints
# -------------------------------------------------------------------------

@router.get("", response_model=List[ActionResponse])
def list_actions(
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """List the caller's actions (every action for admins)."""
    try:
        return sync.list_actions(identity)
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble listing the Agent Actions")


@router.post("/{agent_id}", response_model=ActionResponse)
def create_action(
    agent_id: str,
    request: ActionRequest,
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """Create an action for an agent.

    Args:
        agent_id: Agent the action is created under
        request: Functions and metadata for the action

    Returns:
        The stored action, secret metadata removed
    """
    try:
        return sync.create_action(agent_id, request.functions, request.metadata, identity)
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble updating the Agent Action")


@router.put("/{action_id}", response_model=ActionResponse)
def update_action(
    action_id: str,
    request: ActionRequest,
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """Update an action and every agent that binds it."""
    try:
        return sync.update_action(action_id, request.functions, request.metadata, identity)
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble updating the Agent Action")


@router.delete("/{action_id}", response_model=MessageResponse)
def delete_action(
    action_id: str,
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """Delete an action and remove it from every agent."""
    try:
        sync.delete_action(action_id)
        return MessageResponse(message="Action deleted successfully")
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble deleting the Agent Action")


# -------------------------------------------------------------------------
# Binding Endpoints
# -------------------------------------------------------------------------

@router.post("/{agent_id}/{action_id}", response_model=MessageResponse)
def bind_action(
    agent_id: str,
    action_id: str,
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """Add an action to an agent the caller owns (any agent for admins)."""
    try:
        sync.bind_action(agent_id, action_id, identity)
        return MessageResponse(message="Action added successfully")
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble adding the Agent Action")


@router.delete("/{agent_id}/{action_id}", response_model=MessageResponse)
def unbind_action(
    agent_id: str,
    action_id: str,
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """Remove an action and its tools from an agent."""
    try:
        sync.unbind_action(agent_id, action_id, identity)
        return MessageResponse(message="Action deleted for agent successfully")
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble deleting the Agent Action")


# -------------------------------------------------------------------------
# Reconcile Endpoints
# -------------------------------------------------------------------------

@router.post("/reconcile/agents/{agent_id}", response_model=ReconcileResponse)
def reconcile_agent(
    agent_id: str,
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """Recompute an agent's references from current action state."""
    try:
        return sync.reconcile_agent(agent_id, identity).to_dict()
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble reconciling the Agent")


@router.post("/reconcile/actions/{action_id}", response_model=ReconcileResponse)
def reconcile_action(
    action_id: str,
    identity: Identity = Depends(get_identity),
    sync: ActionSynchronizer = Depends(get_synchronizer),
):
    """Re-run the cascade for one action (admins only)."""
    if not is_admin(identity):
        raise HTTPException(
            status_code=404,
            detail={"kind": ErrorKind.NOT_FOUND.value, "message": "Action not found"},
        )
    try:
        return sync.reconcile_action(action_id).to_dict()
    except ActionSyncError as e:
        _raise_http(e)
    except Exception:
        _raise_unexpected("Trouble reconciling the Agent Action")
