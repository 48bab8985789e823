"""
Claude Provider
===============

Runs the Claude CLI (`claude -p`) with `--output-format stream-json`.

The prompt is written to stdin so long prompts never hit argv limits.
Claude already speaks the common tool vocabulary, so normalization is mostly
re-shaping: user-role tool_result events become assistant messages carrying
tool_result blocks, and result events become terminal success/error markers.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from automode.providers.base import CliProvider, CliSpawnConfig, as_dict, as_text, dict_items
from automode.providers.errors import CliErrorInfo, ProviderErrorCode, contains_any
from automode.providers.models import CLAUDE_MODEL_ALIASES
from automode.providers.types import (
    AuthStatus,
    ContentBlock,
    ExecuteOptions,
    ModelDefinition,
    ProviderMessage,
)

_logger = logging.getLogger(__name__)

# Claude names its directory tool "LS"
CLAUDE_TOOL_NAME_MAP: dict[str, str] = {"LS": "Ls"}


def _flatten_tool_result(content: Any) -> str:
    """tool_result content is either a string or a list of text blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            block.get("text", "") for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return "" if content is None else str(content)


class ClaudeProvider(CliProvider):
    """Provider for the Claude CLI."""

    display_name = "Claude"
    api_key_env_var = "ANTHROPIC_API_KEY"
    prompt_via_stdin = True

    def get_name(self) -> str:
        return "claude"

    def get_cli_name(self) -> str:
        return "claude"

    def get_spawn_config(self) -> CliSpawnConfig:
        home = Path.home()
        return CliSpawnConfig(
            npx_package="@anthropic-ai/claude-code",
            common_paths={
                "linux": [
                    str(home / ".local/bin/claude"),
                    str(home / ".claude/local/claude"),
                    "/usr/local/bin/claude",
                    str(home / ".npm-global/bin/claude"),
                ],
                "darwin": [
                    str(home / ".local/bin/claude"),
                    str(home / ".claude/local/claude"),
                    "/usr/local/bin/claude",
                    "/opt/homebrew/bin/claude",
                    str(home / ".npm-global/bin/claude"),
                ],
                "win32": [
                    str(home / "AppData" / "Roaming" / "npm" / "claude.cmd"),
                ],
            },
        )

    def build_cli_args(self, options: ExecuteOptions) -> list[str]:
        args = [
            "-p",
            "--output-format", "stream-json",
            "--verbose",
            "--permission-mode", "bypassPermissions",
        ]
        if options.model:
            args.extend(["--model", options.model])
        if options.system_prompt:
            args.extend(["--append-system-prompt", options.system_prompt])
        if options.max_turns:
            args.extend(["--max-turns", str(options.max_turns)])
        return args

    def extract_session_id(self, event: dict[str, Any]) -> Optional[str]:
        if event.get("type") == "system" and event.get("subtype") == "init":
            return event.get("session_id")
        return None

    def normalize_event(self, event: dict[str, Any]) -> Optional[ProviderMessage]:
        event_type = event.get("type")
        session_id = event.get("session_id")

        if event_type == "system":
            _logger.debug("Claude system event: %s", event.get("subtype"))
            return None

        if event_type == "assistant":
            blocks = []
            for raw in dict_items(as_dict(event.get("message")).get("content")):
                if raw.get("type") == "text" and raw.get("text"):
                    blocks.append(ContentBlock(type="text", text=as_text(raw["text"])))
                elif raw.get("type") == "tool_use":
                    name = as_text(raw.get("name"))
                    blocks.append(ContentBlock(
                        type="tool_use",
                        name=CLAUDE_TOOL_NAME_MAP.get(name, name),
                        tool_use_id=raw.get("id"),
                        input=raw.get("input") or {},
                    ))
            return ProviderMessage.assistant(blocks, session_id) if blocks else None

        if event_type == "user":
            blocks = []
            for raw in dict_items(as_dict(event.get("message")).get("content")):
                if raw.get("type") != "tool_result":
                    continue
                content = _flatten_tool_result(raw.get("content"))
                if raw.get("is_error"):
                    content = f"[ERROR] {content}"
                blocks.append(ContentBlock(
                    type="tool_result",
                    tool_use_id=raw.get("tool_use_id"),
                    content=content,
                ))
            return ProviderMessage.assistant(blocks, session_id) if blocks else None

        if event_type == "result":
            if event.get("subtype") == "success" and not event.get("is_error"):
                return ProviderMessage.success(session_id, event.get("result"))
            return ProviderMessage.failure(
                event.get("result") or event.get("subtype"), session_id
            )

        _logger.debug("Unknown Claude event type: %s", event_type)
        return None

    def map_error(self, stderr: str, exit_code: Optional[int]) -> CliErrorInfo:
        lower = (stderr or "").lower()
        if contains_any(lower, ("invalid api key", "/login", "oauth token has expired")):
            return CliErrorInfo(
                code=ProviderErrorCode.NOT_AUTHENTICATED,
                message="Claude CLI is not authenticated",
                recoverable=True,
                suggestion='Run "claude" and use /login, or set ANTHROPIC_API_KEY',
            )
        if "overloaded" in lower:
            return CliErrorInfo(
                code=ProviderErrorCode.RATE_LIMITED,
                message="Claude API is overloaded",
                recoverable=True,
                suggestion="Wait a few minutes and try again",
            )
        return super().map_error(stderr, exit_code)

    async def check_auth(self) -> AuthStatus:
        self.ensure_cli_detected()
        if not self.cli_path:
            return AuthStatus(authenticated=False, method="none")

        has_api_key = bool(os.environ.get("ANTHROPIC_API_KEY"))
        has_oauth_token = bool(os.environ.get("CLAUDE_CODE_OAUTH_TOKEN"))

        credentials = await self.read_json_file(str(Path.home() / ".claude" / ".credentials.json"))
        has_credentials_file = bool(credentials and credentials.get("claudeAiOauth"))

        def status(authenticated: bool, method: str, error: Optional[str] = None) -> AuthStatus:
            return AuthStatus(
                authenticated=authenticated,
                method=method,
                has_api_key=has_api_key,
                has_env_api_key=has_api_key,
                has_credentials_file=has_credentials_file,
                error=error,
            )

        if has_api_key:
            return status(True, "api_key")
        if has_oauth_token:
            return status(True, "oauth_token")
        if has_credentials_file:
            return status(True, "cli_login")
        return status(
            False,
            "none",
            'No authentication configured. Run "claude" and use /login, or set ANTHROPIC_API_KEY.',
        )

    def get_available_models(self) -> list[ModelDefinition]:
        return [
            ModelDefinition(
                id=alias,
                name=f"Claude {alias.capitalize()}",
                model_string=full_id,
                provider="claude",
                supports_vision=True,
                context_window=200000,
            )
            for alias, full_id in CLAUDE_MODEL_ALIASES.items()
        ]

    def supports_feature(self, feature: str) -> bool:
        return feature in ("tools", "text", "streaming", "vision", "thinking")
