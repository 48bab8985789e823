"""
OpenCode Provider
=================

Runs `opencode run --format json`. OpenCode fronts many model vendors, so
model ids are "vendor/model" (e.g. "anthropic/claude-sonnet-4-5"); a bare id
without a slash is sent to OpenCode's own "opencode" vendor.

Events carry a `part` payload and a `sessionID`:

    {"type":"step_start","sessionID":"ses_...","part":{...}}
    {"type":"text","sessionID":"ses_...","part":{"type":"text","text":"..."}}
    {"type":"tool_use","part":{"tool":"read","callID":"...","state":{"status":"completed",...}}}
    {"type":"step_finish","part":{"reason":"stop"}}

A finished tool call is reported once, so it becomes a tool_use block and a
tool_result block in the same message.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from automode.providers.base import CliProvider, CliSpawnConfig, as_dict, as_text, dict_items
from automode.providers.types import (
    TODO_COMPLETED,
    AuthStatus,
    ContentBlock,
    ExecuteOptions,
    ProviderMessage,
)

_logger = logging.getLogger(__name__)

DEFAULT_MODEL_VENDOR = "opencode"

OPENCODE_TOOL_NAME_MAP: dict[str, str] = {
    "read": "Read",
    "write": "Write",
    "edit": "Edit",
    "bash": "Bash",
    "grep": "Grep",
    "glob": "Glob",
    "list": "Ls",
    "webfetch": "WebFetch",
    "todowrite": "TodoWrite",
}

OPENCODE_ARG_RENAMES: dict[str, str] = {
    "filePath": "file_path",
    "oldString": "old_string",
    "newString": "new_string",
}

# Environment variables OpenCode reads for its vendors
VENDOR_API_KEY_ENV_VARS = ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY")


def normalize_opencode_tool_input(tool: str, tool_input: dict[str, Any]) -> dict[str, Any]:
    if tool == "todowrite":
        return {
            "todos": [
                {
                    "content": todo.get("content") or "",
                    "status": TODO_COMPLETED if todo.get("status") == "cancelled" else todo.get("status"),
                    "activeForm": todo.get("content") or "",
                }
                for todo in dict_items(tool_input.get("todos"))
            ]
        }
    return {OPENCODE_ARG_RENAMES.get(k, k): v for k, v in tool_input.items()}


class OpenCodeProvider(CliProvider):
    """Provider for the OpenCode CLI."""

    display_name = "OpenCode"

    def get_name(self) -> str:
        return "opencode"

    def get_cli_name(self) -> str:
        return "opencode"

    def get_spawn_config(self) -> CliSpawnConfig:
        home = Path.home()
        return CliSpawnConfig(
            npx_package="opencode-ai",
            common_paths={
                "linux": [
                    str(home / ".opencode/bin/opencode"),
                    str(home / ".local/bin/opencode"),
                    "/usr/local/bin/opencode",
                ],
                "darwin": [
                    str(home / ".opencode/bin/opencode"),
                    str(home / ".local/bin/opencode"),
                    "/usr/local/bin/opencode",
                    "/opt/homebrew/bin/opencode",
                ],
            },
        )

    def has_env_api_key(self) -> bool:
        return any(os.environ.get(name) for name in VENDOR_API_KEY_ENV_VARS)

    def build_cli_args(self, options: ExecuteOptions) -> list[str]:
        args = ["run", "--format", "json"]
        if options.model:
            model = options.model if "/" in options.model else f"{DEFAULT_MODEL_VENDOR}/{options.model}"
            args.extend(["--model", model])
        return args

    def extract_session_id(self, event: dict[str, Any]) -> Optional[str]:
        if event.get("type") == "step_start":
            return event.get("sessionID")
        return None

    def normalize_event(self, event: dict[str, Any]) -> Optional[ProviderMessage]:
        event_type = event.get("type")
        session_id = event.get("sessionID")
        part = as_dict(event.get("part"))

        if event_type == "step_start":
            return None

        if event_type == "text":
            text = part.get("text") or ""
            return ProviderMessage.text(text, session_id) if text else None

        if event_type == "tool_use":
            tool = as_text(part.get("tool"))
            state = as_dict(part.get("state"))
            call_id = part.get("callID")
            blocks = [ContentBlock(
                type="tool_use",
                name=OPENCODE_TOOL_NAME_MAP.get(tool, tool),
                tool_use_id=call_id,
                input=normalize_opencode_tool_input(tool, as_dict(state.get("input"))),
            )]
            status = state.get("status")
            if status == "completed":
                blocks.append(ContentBlock(
                    type="tool_result", tool_use_id=call_id, content=state.get("output") or ""
                ))
            elif status == "error":
                blocks.append(ContentBlock(
                    type="tool_result", tool_use_id=call_id,
                    content=f"[ERROR] {state.get('error') or 'Tool failed'}",
                ))
            return ProviderMessage.assistant(blocks, session_id)

        if event_type == "step_finish":
            # Intermediate steps finish with reason "tool-calls"
            if part.get("reason") == "stop":
                return ProviderMessage.success(session_id)
            return None

        if event_type == "error":
            error = event.get("error") or {}
            message = None
            if isinstance(error, dict):
                message = as_dict(error.get("data")).get("message") or error.get("name")
            elif error:
                message = str(error)
            return ProviderMessage.failure(message, session_id)

        _logger.debug("Unknown OpenCode event type: %s", event_type)
        return None

    async def check_auth(self) -> AuthStatus:
        self.ensure_cli_detected()
        if not self.cli_path:
            return AuthStatus(authenticated=False, method="none")

        has_api_key = self.has_env_api_key()
        auth_file = await self.read_json_file(
            str(Path.home() / ".local" / "share" / "opencode" / "auth.json")
        )
        has_credentials_file = bool(auth_file)

        if has_api_key:
            method, authenticated, error = "api_key", True, None
        elif has_credentials_file:
            method, authenticated, error = "cli_login", True, None
        else:
            method, authenticated = "none", False
            error = 'No authentication configured. Run "opencode auth login".'

        return AuthStatus(
            authenticated=authenticated,
            method=method,
            has_api_key=has_api_key,
            has_env_api_key=has_api_key,
            has_credentials_file=has_credentials_file,
            error=error,
        )
