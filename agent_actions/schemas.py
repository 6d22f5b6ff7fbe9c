"""Pydantic schemas for action requests and responses."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class FunctionSpec(BaseModel):
    """A single function an action exposes."""
    name: str = Field(..., min_length=1, description="Function name, unique within the action")
    description: Optional[str] = Field(None, description="What the function does")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="JSON Schema for arguments")


class FunctionTool(BaseModel):
    """OpenAI-style tool wrapper around a function.

    A bare ``{"name": ...}`` mapping is accepted and wrapped.
    """
    type: str = Field(default="function")
    function: FunctionSpec

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_function(cls, data: Any) -> Any:
        if isinstance(data, dict) and "function" not in data and "name" in data:
            return {"type": "function", "function": data}
        return data

    @property
    def name(self) -> str:
        return self.function.name


class ActionRequest(BaseModel):
    """Request body for creating or updating an action."""
    functions: List[FunctionTool] = Field(default_factory=list, description="Functions to expose")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Connection metadata; must include domain")


class ActionResponse(BaseModel):
    """An action as returned to callers (secret metadata removed)."""
    id: str
    owner: str
    agent_id: Optional[str] = None
    metadata: Dict[str, Any] = {}
    function_names: List[str] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str


class ReconcileResponse(BaseModel):
    """Summary of references changed by a reconcile run."""
    agents_updated: List[str] = []
    removed_action_refs: List[str] = []
    added_action_refs: List[str] = []
    removed_tool_refs: List[str] = []
    added_tool_refs: List[str] = []


class ErrorDetail(BaseModel):
    """Structured error carried in ``detail``."""
    kind: str
    message: str
    failed_agent_ids: Optional[List[str]] = Field(None, description="Agents a cascade failed to update")


class ErrorResponse(BaseModel):
    """Error body returned for 4xx/5xx responses."""
    detail: ErrorDetail
