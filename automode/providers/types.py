"""
Provider Types
==============

Normalized shapes shared by every CLI provider.

ProviderMessage is the one event union the orchestration core consumes,
whatever vendor CLI produced it:

- assistant: message.content holds text, tool_use or tool_result blocks
- result: terminal success marker (subtype "success")
- error: terminal failure marker with an error string
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

MessageType = Literal["assistant", "result", "error"]
ContentBlockType = Literal["text", "tool_use", "tool_result"]

# Common tool vocabulary rendered by the UI
TOOL_READ = "Read"
TOOL_WRITE = "Write"
TOOL_EDIT = "Edit"
TOOL_BASH = "Bash"
TOOL_GREP = "Grep"
TOOL_GLOB = "Glob"
TOOL_LS = "Ls"
TOOL_WEB_FETCH = "WebFetch"
TOOL_WEB_SEARCH = "WebSearch"
TOOL_TODO_WRITE = "TodoWrite"

# Todo statuses in the common vocabulary (three states)
TODO_PENDING = "pending"
TODO_IN_PROGRESS = "in_progress"
TODO_COMPLETED = "completed"
TODO_STATUSES = (TODO_PENDING, TODO_IN_PROGRESS, TODO_COMPLETED)


@dataclass
class ContentBlock:
    """One block inside an assistant message."""
    type: ContentBlockType
    text: Optional[str] = None
    name: Optional[str] = None
    tool_use_id: Optional[str] = None
    input: Optional[dict[str, Any]] = None
    content: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        for key in ("text", "name", "tool_use_id", "input", "content"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class MessageBody:
    role: Literal["assistant", "user"] = "assistant"
    content: list[ContentBlock] = field(default_factory=list)


@dataclass
class ProviderMessage:
    """
    Normalized provider event.

    Attributes:
        type: assistant, result or error
        session_id: Vendor session id, propagated onto every message once known
        message: Content blocks for assistant messages
        subtype: "success" for result messages
        result: Optional final text carried by a result message
        error: Error text for error messages
    """
    type: MessageType
    session_id: Optional[str] = None
    message: Optional[MessageBody] = None
    subtype: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def assistant(
        cls, blocks: list[ContentBlock], session_id: Optional[str] = None
    ) -> "ProviderMessage":
        return cls(type="assistant", session_id=session_id, message=MessageBody(content=blocks))

    @classmethod
    def text(cls, text: str, session_id: Optional[str] = None) -> "ProviderMessage":
        return cls.assistant([ContentBlock(type="text", text=text)], session_id)

    @classmethod
    def success(cls, session_id: Optional[str] = None, result: Optional[str] = None) -> "ProviderMessage":
        return cls(type="result", subtype="success", session_id=session_id, result=result)

    @classmethod
    def failure(cls, error: Optional[str], session_id: Optional[str] = None) -> "ProviderMessage":
        return cls(type="error", session_id=session_id, error=error or "Unknown error")

    @property
    def blocks(self) -> list[ContentBlock]:
        return self.message.content if self.message else []

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.session_id is not None:
            data["session_id"] = self.session_id
        if self.message is not None:
            data["message"] = {
                "role": self.message.role,
                "content": [block.to_dict() for block in self.message.content],
            }
        for key in ("subtype", "result", "error"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class PromptPart:
    """Multi-part prompt element; only text parts reach CLI providers."""
    type: str
    text: Optional[str] = None


@dataclass
class ExecuteOptions:
    """
    Normalized execution options handed to a provider.

    The model id must already be bare (provider routing prefix removed).
    """
    prompt: Union[str, list[PromptPart]]
    model: Optional[str] = None
    cwd: Optional[str] = None
    system_prompt: Optional[str] = None
    max_turns: Optional[int] = None
    abort_event: Any = None
    timeout_seconds: Optional[float] = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class InstallationStatus:
    installed: bool
    version: Optional[str] = None
    path: Optional[str] = None
    method: str = "cli"
    has_api_key: bool = False
    authenticated: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "installed": self.installed,
            "version": self.version,
            "path": self.path,
            "method": self.method,
            "hasApiKey": self.has_api_key,
            "authenticated": self.authenticated,
            "error": self.error,
        }


@dataclass
class AuthStatus:
    """
    Authentication state for a provider.

    method is provider specific, e.g. api_key, vertex_ai, google_login, cli_login, none.
    """
    authenticated: bool
    method: str = "none"
    has_api_key: bool = False
    has_env_api_key: bool = False
    has_credentials_file: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "authenticated": self.authenticated,
            "method": self.method,
            "hasApiKey": self.has_api_key,
            "hasEnvApiKey": self.has_env_api_key,
            "hasCredentialsFile": self.has_credentials_file,
            "error": self.error,
        }


@dataclass
class ModelDefinition:
    id: str
    name: str
    model_string: str
    provider: str
    description: str = ""
    supports_tools: bool = True
    supports_vision: bool = False
    context_window: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "modelString": self.model_string,
            "provider": self.provider,
            "description": self.description,
            "supportsTools": self.supports_tools,
            "supportsVision": self.supports_vision,
            "contextWindow": self.context_window,
        }


@dataclass
class ProviderConfig:
    """
    Construction-time provider overrides.

    Attributes:
        cli_path: Use this executable instead of searching for the CLI
        env: Extra environment variables for every spawned CLI process
    """
    cli_path: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)
