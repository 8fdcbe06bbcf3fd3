"""Pydantic models for the conversation log, session index and permission payloads."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolCallStatus(str, Enum):
    """Lifecycle of a tool call as shown to the client."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolKind(str, Enum):
    """Capability kinds understood by the client."""
    READ = "read"
    SEARCH = "search"
    EDIT = "edit"
    MOVE = "move"
    DELETE = "delete"
    EXECUTE = "execute"
    THINK = "think"
    OTHER = "other"


class ToolCallDescriptor(BaseModel):
    """One tool invocation announced by an assistant turn."""
    id: str | None = None
    tool: str | None = None
    args: Any = None


class ConversationEvent(BaseModel):
    """One line of the agent's ``conversation.jsonl``."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: str  # "user", "assistant", "tool" or "system"
    content: str = ""
    tool_calls: list[ToolCallDescriptor] = Field(default_factory=list, alias="toolCalls")
    name: str | None = None
    tool_call_id: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict, alias="_meta")

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return str(value)

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _coerce_tool_calls(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("meta", mode="before")
    @classmethod
    def _coerce_meta(cls, value: Any) -> dict:
        return value if isinstance(value, dict) else {}

    @property
    def stream(self) -> str | None:
        """Output stream tag for partial tool output, if any."""
        stream = self.meta.get("stream")
        if stream in ("stdout", "stderr"):
            return stream
        return None


class SessionIndexEntry(BaseModel):
    """Entry of ``<home>/sessions/index.json``."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    project_path: str = Field(default="", alias="projectPath")
    created_at: str = Field(default="", alias="createdAt")


class HistoryTurn(BaseModel):
    """A role-tagged text turn kept for context replay."""
    role: str  # "user" or "assistant"
    content: str


class PermissionContext(BaseModel):
    """Action the agent wants approved."""
    tool: str = ""
    command: str | None = None
    args: list[str] | None = None
    path: str | None = None
    description: str | None = None


class PromptChoice(BaseModel):
    name: str
    message: str = ""


class PermissionRequest(BaseModel):
    """Body posted by the agent to the permission callback endpoint."""
    type: str  # "permission_request", "confirm", "select" or "input"
    message: str = ""
    choices: list[PromptChoice] | None = None
    initial: str | None = None
    context: PermissionContext | None = None


class PermissionDecision(BaseModel):
    """Answer returned to the agent."""
    allowed: bool
    reason: str | None = None
    choice: str | None = None
    value: str | None = None
