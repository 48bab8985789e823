"""
Gemini Provider
===============

Runs Google's Gemini CLI (`gemini`) in headless stream-json mode.

Stream format, one JSON object per line:

    {"type":"init","session_id":"...","model":"gemini-2.5-flash"}
    {"type":"message","role":"assistant","content":"...","delta":true}
    {"type":"tool_use","tool_name":"read_file","tool_id":"...","parameters":{...}}
    {"type":"tool_result","tool_id":"...","status":"success","output":"..."}
    {"type":"result","status":"success","stats":{...}}

Authentication, first match wins:
1. GEMINI_API_KEY
2. GOOGLE_APPLICATION_CREDENTIALS or GOOGLE_CLOUD_PROJECT (Vertex AI)
3. ~/.gemini/settings.json security.auth.selectedType
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from automode.providers.base import CliProvider, CliSpawnConfig, as_dict, as_text, dict_items
from automode.providers.errors import CliErrorInfo, ProviderErrorCode, contains_any
from automode.providers.models import GEMINI_MODEL_MAP
from automode.providers.types import (
    TODO_COMPLETED,
    AuthStatus,
    ContentBlock,
    ExecuteOptions,
    ModelDefinition,
    ProviderMessage,
)

_logger = logging.getLogger(__name__)

# Bare model used when none is requested ("gemini-" is re-added for the CLI)
DEFAULT_BARE_MODEL = "2.5-flash"

GEMINI_TOOL_NAME_MAP: dict[str, str] = {
    "write_todos": "TodoWrite",
    "read_file": "Read",
    "read_many_files": "Read",
    "replace": "Edit",
    "write_file": "Write",
    "run_shell_command": "Bash",
    "search_file_content": "Grep",
    "glob": "Glob",
    "list_directory": "Ls",
    "web_fetch": "WebFetch",
    "google_web_search": "WebSearch",
}

CODE_ASSIST_AUTH_TYPES = ("code-assist", "codeassist")


def normalize_gemini_tool_name(tool_name: str) -> str:
    return GEMINI_TOOL_NAME_MAP.get(tool_name, tool_name)


def normalize_gemini_tool_input(tool_name: str, tool_input: Any) -> Any:
    """
    Convert write_todos input to the TodoWrite shape.

    Gemini todos carry {description, status} with a fourth "cancelled" state;
    TodoWrite expects {content, status, activeForm} with three states.
    """
    if tool_name == "write_todos" and isinstance(tool_input, dict) and isinstance(
        tool_input.get("todos"), list
    ):
        todos = []
        for todo in dict_items(tool_input["todos"]):
            description = as_text(todo.get("description"))
            status = todo.get("status")
            todos.append({
                "content": description,
                "status": TODO_COMPLETED if status == "cancelled" else status,
                "activeForm": description,
            })
        return {"todos": todos}
    return tool_input


class GeminiProvider(CliProvider):
    """Provider for the Gemini CLI."""

    display_name = "Gemini"
    api_key_env_var = "GEMINI_API_KEY"

    def get_name(self) -> str:
        return "gemini"

    def get_cli_name(self) -> str:
        return "gemini"

    def get_spawn_config(self) -> CliSpawnConfig:
        home = Path.home()
        return CliSpawnConfig(
            npx_package="@google/gemini-cli",
            common_paths={
                "linux": [
                    str(home / ".local/bin/gemini"),
                    "/usr/local/bin/gemini",
                    str(home / ".npm-global/bin/gemini"),
                ],
                "darwin": [
                    str(home / ".local/bin/gemini"),
                    "/usr/local/bin/gemini",
                    "/opt/homebrew/bin/gemini",
                    str(home / ".npm-global/bin/gemini"),
                ],
                "win32": [
                    str(home / "AppData" / "Roaming" / "npm" / "gemini.cmd"),
                    str(home / ".npm-global" / "gemini.cmd"),
                ],
            },
        )

    def get_install_instructions(self) -> str:
        return (
            "Install with: npm install -g @google/gemini-cli "
            "(or visit https://github.com/google-gemini/gemini-cli)"
        )

    def build_cli_args(self, options: ExecuteOptions) -> list[str]:
        bare_model = options.model or DEFAULT_BARE_MODEL
        args = ["--output-format", "stream-json"]

        # "gemini-" is part of Google's model name, not just a routing prefix
        if bare_model != "auto":
            cli_model = bare_model if bare_model.startswith("gemini-") else f"gemini-{bare_model}"
            args.extend(["--model", cli_model])

        args.extend(["--sandbox", "false"])
        args.extend(["--approval-mode", "yolo"])

        if options.cwd:
            args.extend(["--include-directories", options.cwd])

        return args

    def extract_session_id(self, event: dict[str, Any]) -> Optional[str]:
        if event.get("type") == "init":
            return event.get("session_id")
        return None

    def normalize_event(self, event: dict[str, Any]) -> Optional[ProviderMessage]:
        event_type = event.get("type")
        session_id = event.get("session_id")

        if event_type == "init":
            _logger.debug(
                "Gemini init event: session=%s, model=%s", session_id, event.get("model")
            )
            return None

        if event_type == "message":
            if event.get("role") == "assistant":
                return ProviderMessage.text(event.get("content") or "", session_id)
            return None

        if event_type == "tool_use":
            tool_name = as_text(event.get("tool_name"))
            block = ContentBlock(
                type="tool_use",
                name=normalize_gemini_tool_name(tool_name),
                tool_use_id=event.get("tool_id"),
                input=normalize_gemini_tool_input(tool_name, event.get("parameters") or {}),
            )
            return ProviderMessage.assistant([block], session_id)

        if event_type == "tool_result":
            output = event.get("output")
            content = f"[ERROR] {output}" if event.get("status") == "error" else output
            block = ContentBlock(
                type="tool_result",
                tool_use_id=event.get("tool_id"),
                content=content,
            )
            return ProviderMessage.assistant([block], session_id)

        if event_type == "result":
            if event.get("status") == "error":
                return ProviderMessage.failure(event.get("error"), session_id)
            stats = as_dict(event.get("stats"))
            _logger.debug(
                "Gemini result: status=%s, tokens=%s",
                event.get("status"), stats.get("total_tokens"),
            )
            return ProviderMessage.success(session_id)

        if event_type == "error":
            return ProviderMessage.failure(event.get("error"), session_id)

        _logger.debug("Unknown Gemini event type: %s", event_type)
        return None

    def map_error(self, stderr: str, exit_code: Optional[int]) -> CliErrorInfo:
        lower = (stderr or "").lower()

        if contains_any(lower, (
            "not authenticated", "please log in", "unauthorized", "login required",
            "error authenticating", "loadcodeassist",
        )) or ("econnrefused" in lower and "8888" in lower):
            return CliErrorInfo(
                code=ProviderErrorCode.NOT_AUTHENTICATED,
                message="Gemini CLI is not authenticated",
                recoverable=True,
                suggestion=(
                    'Run "gemini" interactively to log in, '
                    "or set GEMINI_API_KEY environment variable"
                ),
            )

        if contains_any(lower, ("rate limit", "too many requests", "429", "quota exceeded")):
            return CliErrorInfo(
                code=ProviderErrorCode.RATE_LIMITED,
                message="Gemini API rate limit exceeded",
                recoverable=True,
                suggestion="Wait a few minutes and try again. Free tier: 60 req/min, 1000 req/day",
            )

        if contains_any(lower, (
            "model not available", "invalid model", "unknown model",
            "modelnotfounderror", "model not found",
        )) or ("not found" in lower and "404" in lower):
            return CliErrorInfo(
                code=ProviderErrorCode.MODEL_UNAVAILABLE,
                message="Requested model is not available",
                recoverable=True,
                suggestion='Try using "gemini-2.5-flash" or select a different model',
            )

        # Gemini reports request timeouts as connectivity problems
        if contains_any(lower, ("network", "connection", "econnrefused", "timeout")):
            return CliErrorInfo(
                code=ProviderErrorCode.NETWORK_ERROR,
                message="Network connection error",
                recoverable=True,
                suggestion="Check your internet connection and try again",
            )

        if exit_code == 137 or contains_any(lower, ("killed", "sigterm")):
            return CliErrorInfo(
                code=ProviderErrorCode.PROCESS_CRASHED,
                message="Gemini CLI process was terminated",
                recoverable=True,
                suggestion="The process may have run out of memory. Try a simpler task.",
            )

        return CliErrorInfo(
            code=ProviderErrorCode.UNKNOWN,
            message=stderr or f"Gemini CLI exited with code {exit_code}",
            recoverable=False,
        )

    async def check_auth(self) -> AuthStatus:
        self.ensure_cli_detected()
        if not self.cli_path:
            _logger.debug("check_auth: CLI not found")
            return AuthStatus(authenticated=False, method="none")

        has_api_key = bool(os.environ.get("GEMINI_API_KEY"))
        has_vertex_ai = bool(
            os.environ.get("GOOGLE_APPLICATION_CREDENTIALS") or os.environ.get("GOOGLE_CLOUD_PROJECT")
        )
        _logger.debug("check_auth: has_api_key=%s, has_vertex_ai=%s", has_api_key, has_vertex_ai)

        settings_path = Path.home() / ".gemini" / "settings.json"
        settings = await self.read_json_file(str(settings_path))
        auth_type = None
        if settings:
            auth_type = ((settings.get("security") or {}).get("auth") or {}).get("selectedType")
        has_credentials_file = bool(auth_type)

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

        if has_vertex_ai:
            return status(True, "vertex_ai")

        if auth_type:
            if auth_type.startswith("oauth"):
                return status(True, "google_login")
            if auth_type == "api-key":
                return status(True, "api_key")
            if auth_type in CODE_ASSIST_AUTH_TYPES:
                return status(
                    False,
                    "google_login",
                    'Code Assist authentication requires IDE integration. Please use "gemini" '
                    "CLI to log in with a different method, or set GEMINI_API_KEY.",
                )
            _logger.debug("check_auth: Unknown auth type configured: %s", auth_type)
            return status(True, "google_login")

        return status(
            False,
            "none",
            'No authentication configured. Run "gemini" interactively to log in, '
            "or set GEMINI_API_KEY.",
        )

    def get_available_models(self) -> list[ModelDefinition]:
        return [
            ModelDefinition(
                id=model_id,
                name=info["label"],
                model_string=model_id,
                provider="gemini",
                description=info["description"],
                supports_tools=True,
                supports_vision=info["supports_vision"],
                context_window=info["context_window"],
            )
            for model_id, info in GEMINI_MODEL_MAP.items()
        ]

    def supports_feature(self, feature: str) -> bool:
        return feature in ("tools", "text", "streaming", "vision", "thinking")
