"""
Cursor Provider
===============

Runs the Cursor agent CLI (`cursor-agent -p --output-format stream-json`).

Cursor reports tools as `tool_call` events keyed by a call-type object,
e.g. {"readToolCall": {"args": {"path": "..."}}}. A started event becomes a
tool_use block, a completed event becomes a tool_result block.

Todo statuses arrive as TODO_STATUS_* enum names; they are lower-cased and
"cancelled" collapses to "completed".
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from automode.providers.base import CliProvider, CliSpawnConfig, as_dict, as_text, dict_items
from automode.providers.errors import CliErrorInfo, ProviderErrorCode, contains_any
from automode.providers.types import (
    TODO_COMPLETED,
    TODO_PENDING,
    TODO_STATUSES,
    AuthStatus,
    ContentBlock,
    ExecuteOptions,
    ProviderMessage,
)

_logger = logging.getLogger(__name__)

CURSOR_TOOL_NAME_MAP: dict[str, str] = {
    "readToolCall": "Read",
    "writeToolCall": "Write",
    "editToolCall": "Edit",
    "shellToolCall": "Bash",
    "grepToolCall": "Grep",
    "globToolCall": "Glob",
    "lsToolCall": "Ls",
    "updateTodosToolCall": "TodoWrite",
}

# Cursor argument name -> common argument name
CURSOR_ARG_RENAMES: dict[str, str] = {
    "path": "file_path",
    "fileText": "content",
    "globPattern": "pattern",
}

TODO_STATUS_ENUM_PREFIX = "TODO_STATUS_"


def normalize_cursor_todo_status(status: Optional[str]) -> str:
    value = as_text(status).lower()
    if value.startswith(TODO_STATUS_ENUM_PREFIX.lower()):
        value = value[len(TODO_STATUS_ENUM_PREFIX):]
    if value == "cancelled":
        return TODO_COMPLETED
    return value if value in TODO_STATUSES else TODO_PENDING


def normalize_cursor_tool_call(tool_call: Any) -> tuple[str, dict[str, Any], Any]:
    """Return (common tool name, normalized input, raw result) for a tool_call payload."""
    tool_call = as_dict(tool_call)
    if not tool_call:
        return "unknown", {}, None
    key, payload = next(iter(tool_call.items()))
    payload = as_dict(payload)

    if key == "function":
        raw_args = payload.get("arguments")
        try:
            args = json.loads(raw_args) if isinstance(raw_args, str) else (raw_args or {})
        except json.JSONDecodeError:
            args = {"arguments": raw_args}
        return as_text(payload.get("name")) or "function", args, payload.get("result")

    args = as_dict(payload.get("args"))
    name = CURSOR_TOOL_NAME_MAP.get(key)
    if name is None:
        name = key[: -len("ToolCall")] if key.endswith("ToolCall") else key

    if name == "TodoWrite":
        todos = [
            {
                "content": todo.get("content") or "",
                "status": normalize_cursor_todo_status(todo.get("status")),
                "activeForm": todo.get("content") or "",
            }
            for todo in dict_items(args.get("todos"))
        ]
        return name, {"todos": todos}, payload.get("result")

    normalized = {CURSOR_ARG_RENAMES.get(k, k): v for k, v in args.items()}
    return name, normalized, payload.get("result")


def _result_text(result: Any) -> tuple[str, bool]:
    """Flatten a completed tool result into (text, is_error)."""
    if not isinstance(result, dict):
        return ("" if result is None else str(result)), False
    if "error" in result:
        error = result["error"]
        message = error.get("message") if isinstance(error, dict) else error
        return str(message or "Tool failed"), True
    success = result.get("success", result)
    if isinstance(success, dict):
        for key in ("content", "output", "stdout"):
            if isinstance(success.get(key), str):
                return success[key], False
        return json.dumps(success), False
    return str(success), False


class CursorProvider(CliProvider):
    """Provider for the Cursor agent CLI."""

    display_name = "Cursor"
    api_key_env_var = "CURSOR_API_KEY"

    def get_name(self) -> str:
        return "cursor"

    def get_cli_name(self) -> str:
        return "cursor-agent"

    def get_spawn_config(self) -> CliSpawnConfig:
        home = Path.home()
        return CliSpawnConfig(
            common_paths={
                "linux": [
                    str(home / ".local/bin/cursor-agent"),
                    "/usr/local/bin/cursor-agent",
                ],
                "darwin": [
                    str(home / ".local/bin/cursor-agent"),
                    "/usr/local/bin/cursor-agent",
                    "/opt/homebrew/bin/cursor-agent",
                ],
            },
        )

    def get_install_instructions(self) -> str:
        return "Install with: curl https://cursor.com/install -fsS | bash"

    def build_cli_args(self, options: ExecuteOptions) -> list[str]:
        args = ["-p", "--output-format", "stream-json", "--force"]
        if options.model:
            args.extend(["--model", options.model])
        return args

    def extract_session_id(self, event: dict[str, Any]) -> Optional[str]:
        if event.get("type") == "system" and event.get("subtype") == "init":
            return event.get("session_id")
        return None

    def normalize_event(self, event: dict[str, Any]) -> Optional[ProviderMessage]:
        event_type = event.get("type")
        session_id = event.get("session_id")

        if event_type in ("system", "user", "thinking"):
            return None

        if event_type == "assistant":
            text = "".join(
                as_text(block.get("text"))
                for block in dict_items(as_dict(event.get("message")).get("content"))
                if block.get("type") == "text"
            )
            return ProviderMessage.text(text, session_id) if text else None

        if event_type == "tool_call":
            name, tool_input, result = normalize_cursor_tool_call(event.get("tool_call"))
            call_id = event.get("call_id")
            if event.get("subtype") == "started":
                block = ContentBlock(
                    type="tool_use", name=name, tool_use_id=call_id, input=tool_input
                )
                return ProviderMessage.assistant([block], session_id)
            if event.get("subtype") == "completed":
                text, is_error = _result_text(result)
                block = ContentBlock(
                    type="tool_result",
                    tool_use_id=call_id,
                    content=f"[ERROR] {text}" if is_error else text,
                )
                return ProviderMessage.assistant([block], session_id)
            return None

        if event_type == "result":
            if event.get("is_error") or event.get("subtype") not in (None, "success"):
                return ProviderMessage.failure(
                    event.get("error") or event.get("result"), session_id
                )
            return ProviderMessage.success(session_id, event.get("result"))

        if event_type == "error":
            return ProviderMessage.failure(event.get("error") or event.get("message"), session_id)

        _logger.debug("Unknown Cursor event type: %s", event_type)
        return None

    def map_error(self, stderr: str, exit_code: Optional[int]) -> CliErrorInfo:
        lower = (stderr or "").lower()
        if contains_any(lower, ("cursor-agent login", "not logged in")):
            return CliErrorInfo(
                code=ProviderErrorCode.NOT_AUTHENTICATED,
                message="Cursor CLI is not authenticated",
                recoverable=True,
                suggestion='Run "cursor-agent login", or set CURSOR_API_KEY',
            )
        return super().map_error(stderr, exit_code)

    async def check_auth(self) -> AuthStatus:
        self.ensure_cli_detected()
        if not self.cli_path:
            return AuthStatus(authenticated=False, method="none")

        has_api_key = bool(os.environ.get("CURSOR_API_KEY"))
        config = await self.read_json_file(str(Path.home() / ".cursor" / "cli-config.json"))
        has_credentials_file = bool(config and config.get("authInfo"))

        if has_api_key:
            method, authenticated, error = "api_key", True, None
        elif has_credentials_file:
            method, authenticated, error = "cli_login", True, None
        else:
            method, authenticated = "none", False
            error = 'No authentication configured. Run "cursor-agent login", or set CURSOR_API_KEY.'

        return AuthStatus(
            authenticated=authenticated,
            method=method,
            has_api_key=has_api_key,
            has_env_api_key=has_api_key,
            has_credentials_file=has_credentials_file,
            error=error,
        )
