"""
Codex Provider
==============

Runs OpenAI's Codex CLI (`codex exec --json`), prompt on stdin.

Codex streams thread/turn/item events:

    {"type":"thread.started","thread_id":"..."}
    {"type":"item.started","item":{"id":"item_1","type":"command_execution","command":"ls"}}
    {"type":"item.completed","item":{"id":"item_1","type":"command_execution","exit_code":0,...}}
    {"type":"item.completed","item":{"id":"item_2","type":"agent_message","text":"..."}}
    {"type":"turn.completed","usage":{...}}

Todo lists carry boolean completion flags; they expand to the three-state
vocabulary with the first incomplete item marked in_progress.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from automode.providers.base import CliProvider, CliSpawnConfig, as_dict, as_text, dict_items
from automode.providers.errors import CliErrorInfo, ProviderErrorCode, contains_any
from automode.providers.types import (
    TODO_COMPLETED,
    TODO_IN_PROGRESS,
    TODO_PENDING,
    AuthStatus,
    ContentBlock,
    ExecuteOptions,
    ProviderMessage,
)

_logger = logging.getLogger(__name__)


def normalize_codex_todos(items: Any) -> dict[str, Any]:
    todos = []
    in_progress_assigned = False
    for item in dict_items(items):
        text = as_text(item.get("text"))
        if item.get("completed"):
            status = TODO_COMPLETED
        elif not in_progress_assigned:
            status = TODO_IN_PROGRESS
            in_progress_assigned = True
        else:
            status = TODO_PENDING
        todos.append({"content": text, "status": status, "activeForm": text})
    return {"todos": todos}


class CodexProvider(CliProvider):
    """Provider for the Codex CLI."""

    display_name = "Codex"
    api_key_env_var = "OPENAI_API_KEY"
    prompt_via_stdin = True

    def get_name(self) -> str:
        return "codex"

    def get_cli_name(self) -> str:
        return "codex"

    def get_spawn_config(self) -> CliSpawnConfig:
        home = Path.home()
        return CliSpawnConfig(
            npx_package="@openai/codex",
            common_paths={
                "linux": [
                    str(home / ".local/bin/codex"),
                    "/usr/local/bin/codex",
                    str(home / ".npm-global/bin/codex"),
                ],
                "darwin": [
                    str(home / ".local/bin/codex"),
                    "/usr/local/bin/codex",
                    "/opt/homebrew/bin/codex",
                    str(home / ".npm-global/bin/codex"),
                ],
                "win32": [
                    str(home / "AppData" / "Roaming" / "npm" / "codex.cmd"),
                ],
            },
        )

    def build_cli_args(self, options: ExecuteOptions) -> list[str]:
        args = [
            "exec",
            "--json",
            "--dangerously-bypass-approvals-and-sandbox",
            "--skip-git-repo-check",
        ]
        if options.model:
            args.extend(["--model", options.model])
        if options.cwd:
            args.extend(["-C", options.cwd])
        # Read the prompt from stdin
        args.append("-")
        return args

    def extract_session_id(self, event: dict[str, Any]) -> Optional[str]:
        if event.get("type") == "thread.started":
            return event.get("thread_id")
        return None

    def _item_started(self, item: dict[str, Any]) -> Optional[ContentBlock]:
        item_type = item.get("type")
        item_id = item.get("id")
        if item_type == "command_execution":
            return ContentBlock(
                type="tool_use", name="Bash", tool_use_id=item_id,
                input={"command": item.get("command") or ""},
            )
        if item_type == "mcp_tool_call":
            return ContentBlock(
                type="tool_use",
                name=f"mcp__{item.get('server')}__{item.get('tool')}",
                tool_use_id=item_id,
                input=item.get("arguments") or {},
            )
        if item_type == "web_search":
            return ContentBlock(
                type="tool_use", name="WebSearch", tool_use_id=item_id,
                input={"query": item.get("query") or ""},
            )
        if item_type == "todo_list":
            return ContentBlock(
                type="tool_use", name="TodoWrite", tool_use_id=item_id,
                input=normalize_codex_todos(item.get("items")),
            )
        return None

    def _item_completed(self, item: dict[str, Any]) -> list[ContentBlock]:
        item_type = item.get("type")
        item_id = item.get("id")

        if item_type == "agent_message":
            text = as_text(item.get("text"))
            return [ContentBlock(type="text", text=text)] if text else []

        if item_type == "command_execution":
            output = item.get("aggregated_output") or ""
            failed = item.get("status") == "failed" or item.get("exit_code") not in (None, 0)
            return [ContentBlock(
                type="tool_result",
                tool_use_id=item_id,
                content=f"[ERROR] {output}" if failed else output,
            )]

        if item_type == "file_change":
            changes = dict_items(item.get("changes"))
            first_path = changes[0].get("path") if changes else None
            return [ContentBlock(
                type="tool_use", name="Edit", tool_use_id=item_id,
                input={"file_path": first_path, "changes": changes},
            )]

        if item_type == "mcp_tool_call":
            error = item.get("error")
            if error:
                message = error.get("message") if isinstance(error, dict) else error
                return [ContentBlock(
                    type="tool_result", tool_use_id=item_id, content=f"[ERROR] {message}"
                )]
            result = item.get("result")
            return [ContentBlock(
                type="tool_result", tool_use_id=item_id,
                content=result if isinstance(result, str) else str(result or ""),
            )]

        if item_type == "todo_list":
            block = self._item_started(item)
            return [block] if block else []

        if item_type == "reasoning":
            _logger.debug("Codex reasoning: %s", as_text(item.get("text"))[:200])
        elif item_type == "error":
            _logger.warning("Codex reported a non-fatal error: %s", item.get("message"))
        return []

    def normalize_event(self, event: dict[str, Any]) -> Optional[ProviderMessage]:
        event_type = event.get("type")

        if event_type in ("thread.started", "turn.started"):
            return None

        if event_type == "item.started":
            block = self._item_started(as_dict(event.get("item")))
            return ProviderMessage.assistant([block]) if block else None

        if event_type == "item.updated":
            item = as_dict(event.get("item"))
            if item.get("type") == "todo_list":
                block = self._item_started(item)
                return ProviderMessage.assistant([block]) if block else None
            return None

        if event_type == "item.completed":
            blocks = self._item_completed(as_dict(event.get("item")))
            return ProviderMessage.assistant(blocks) if blocks else None

        if event_type == "turn.completed":
            return ProviderMessage.success()

        if event_type == "turn.failed":
            error = event.get("error") or {}
            return ProviderMessage.failure(error.get("message") if isinstance(error, dict) else error)

        if event_type == "error":
            return ProviderMessage.failure(event.get("message"))

        _logger.debug("Unknown Codex event type: %s", event_type)
        return None

    def map_error(self, stderr: str, exit_code: Optional[int]) -> CliErrorInfo:
        lower = (stderr or "").lower()
        if contains_any(lower, ("codex login", "not logged in", "missing openai_api_key")):
            return CliErrorInfo(
                code=ProviderErrorCode.NOT_AUTHENTICATED,
                message="Codex CLI is not authenticated",
                recoverable=True,
                suggestion='Run "codex login", or set OPENAI_API_KEY',
            )
        return super().map_error(stderr, exit_code)

    async def check_auth(self) -> AuthStatus:
        self.ensure_cli_detected()
        if not self.cli_path:
            return AuthStatus(authenticated=False, method="none")

        has_api_key = bool(os.environ.get("OPENAI_API_KEY"))
        auth_file = await self.read_json_file(str(Path.home() / ".codex" / "auth.json"))
        has_credentials_file = bool(
            auth_file and (auth_file.get("OPENAI_API_KEY") or auth_file.get("tokens"))
        )

        if has_api_key:
            method, authenticated, error = "api_key", True, None
        elif has_credentials_file:
            method, authenticated, error = "cli_login", True, None
        else:
            method, authenticated = "none", False
            error = 'No authentication configured. Run "codex login", or set OPENAI_API_KEY.'

        return AuthStatus(
            authenticated=authenticated,
            method=method,
            has_api_key=has_api_key,
            has_env_api_key=has_api_key,
            has_credentials_file=has_credentials_file,
            error=error,
        )

    def supports_feature(self, feature: str) -> bool:
        return feature in ("tools", "text", "streaming", "thinking")
