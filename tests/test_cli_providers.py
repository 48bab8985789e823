"""
CLI Provider Tests (Claude, Cursor, Codex, OpenCode)
====================================================

Each provider translates its vendor's stream into the common message shape.
These tests cover per-vendor arguments, normalization quirks, error mapping
and auth detection. The shared base behaviour is covered in
test_gemini_provider.py.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from automode.providers.claude import ClaudeProvider
from automode.providers.codex import CodexProvider, normalize_codex_todos
from automode.providers.cursor import (
    CursorProvider,
    normalize_cursor_todo_status,
    normalize_cursor_tool_call,
)
from automode.providers.errors import ProviderErrorCode
from automode.providers.opencode import OpenCodeProvider
from automode.providers.types import ExecuteOptions, ProviderConfig, ProviderMessage
from automode.secure_fs import SecureFS


def make(provider_cls, cli_path="/usr/bin/fake"):
    return provider_cls(config=ProviderConfig(cli_path=cli_path), secure_fs=SecureFS())


@pytest.fixture
def home(tmp_path):
    with patch.object(Path, "home", return_value=tmp_path):
        yield tmp_path


def write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


# =============================================================================
# Claude
# =============================================================================

class TestClaudeProvider:

    def test_args(self):
        args = make(ClaudeProvider).build_cli_args(ExecuteOptions(
            prompt="x", model="sonnet", system_prompt="be brief", max_turns=5,
        ))
        assert args[:2] == ["-p", "--output-format"]
        assert "--verbose" in args
        assert args[args.index("--model") + 1] == "sonnet"
        assert args[args.index("--append-system-prompt") + 1] == "be brief"
        assert args[args.index("--max-turns") + 1] == "5"

    def test_prompt_goes_to_stdin(self):
        assert ClaudeProvider.prompt_via_stdin is True

    def test_session_id_from_init(self):
        provider = make(ClaudeProvider)
        event = {"type": "system", "subtype": "init", "session_id": "abc"}
        assert provider.extract_session_id(event) == "abc"
        assert provider.normalize_event(event) is None

    def test_assistant_text_and_tool_use(self):
        msg = make(ClaudeProvider).normalize_event({
            "type": "assistant",
            "session_id": "abc",
            "message": {"content": [
                {"type": "text", "text": "Looking"},
                {"type": "tool_use", "id": "tu1", "name": "LS", "input": {"path": "."}},
            ]},
        })
        assert [b.type for b in msg.blocks] == ["text", "tool_use"]
        assert msg.blocks[1].name == "Ls"
        assert msg.blocks[1].tool_use_id == "tu1"

    def test_user_tool_result_becomes_assistant_block(self):
        msg = make(ClaudeProvider).normalize_event({
            "type": "user",
            "message": {"content": [
                {"type": "tool_result", "tool_use_id": "tu1", "is_error": True,
                 "content": [{"type": "text", "text": "denied"}]},
            ]},
        })
        assert msg.type == "assistant"
        assert msg.blocks[0].content == "[ERROR] denied"

    def test_result_events(self):
        provider = make(ClaudeProvider)
        ok = provider.normalize_event({"type": "result", "subtype": "success", "result": "done"})
        assert ok.type == "result"
        assert ok.result == "done"

        failed = provider.normalize_event({"type": "result", "subtype": "error_max_turns"})
        assert failed.type == "error"
        assert failed.error == "error_max_turns"

    def test_overloaded_is_rate_limited(self):
        info = make(ClaudeProvider).map_error("API Error: Overloaded", 1)
        assert info.code == ProviderErrorCode.RATE_LIMITED

    def test_generic_rules_apply(self):
        info = make(ClaudeProvider).map_error("getaddrinfo ENOTFOUND api.anthropic.com", 1)
        assert info.code == ProviderErrorCode.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_auth_from_credentials_file(self, home, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        write_json(home / ".claude" / ".credentials.json", {"claudeAiOauth": {"accessToken": "t"}})
        status = await make(ClaudeProvider).check_auth()
        assert status.authenticated is True
        assert status.method == "cli_login"

    @pytest.mark.asyncio
    async def test_auth_missing(self, home, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        status = await make(ClaudeProvider).check_auth()
        assert status.authenticated is False
        assert "/login" in status.error

    @pytest.mark.asyncio
    async def test_oauth_token_env(self, home, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "tok")
        status = await make(ClaudeProvider).check_auth()
        assert status.method == "oauth_token"

    def test_models(self):
        ids = [m.id for m in make(ClaudeProvider).get_available_models()]
        assert ids == ["haiku", "sonnet", "opus"]


# =============================================================================
# Cursor
# =============================================================================

class TestCursorProvider:

    def test_args_put_prompt_last(self):
        provider = make(CursorProvider)
        args = provider.build_cli_args(ExecuteOptions(prompt="x", model="auto"))
        assert args == ["-p", "--output-format", "stream-json", "--force", "--model", "auto"]
        assert provider.prompt_via_stdin is False

    def test_tool_call_started_and_completed(self):
        provider = make(CursorProvider)
        started = provider.normalize_event({
            "type": "tool_call", "subtype": "started", "call_id": "c1",
            "tool_call": {"readToolCall": {"args": {"path": "a.py"}}},
        })
        assert started.blocks[0].name == "Read"
        assert started.blocks[0].input == {"file_path": "a.py"}

        completed = provider.normalize_event({
            "type": "tool_call", "subtype": "completed", "call_id": "c1",
            "tool_call": {"readToolCall": {
                "args": {"path": "a.py"},
                "result": {"success": {"content": "print(1)"}},
            }},
        })
        assert completed.blocks[0].type == "tool_result"
        assert completed.blocks[0].tool_use_id == "c1"
        assert completed.blocks[0].content == "print(1)"

    def test_failed_tool_call_is_prefixed(self):
        msg = make(CursorProvider).normalize_event({
            "type": "tool_call", "subtype": "completed", "call_id": "c2",
            "tool_call": {"shellToolCall": {"result": {"error": {"message": "exit 1"}}}},
        })
        assert msg.blocks[0].content == "[ERROR] exit 1"

    def test_function_tool_call_parses_json_arguments(self):
        name, args, _ = normalize_cursor_tool_call(
            {"function": {"name": "lookup", "arguments": '{"q": "x"}'}}
        )
        assert name == "lookup"
        assert args == {"q": "x"}

    def test_unmapped_tool_call_strips_suffix(self):
        name, _, _ = normalize_cursor_tool_call({"deleteToolCall": {"args": {}}})
        assert name == "delete"

    @pytest.mark.parametrize("raw,expected", [
        ("TODO_STATUS_PENDING", "pending"),
        ("TODO_STATUS_IN_PROGRESS", "in_progress"),
        ("TODO_STATUS_COMPLETED", "completed"),
        ("TODO_STATUS_CANCELLED", "completed"),
        ("whatever", "pending"),
    ])
    def test_todo_status(self, raw, expected):
        assert normalize_cursor_todo_status(raw) == expected

    def test_thinking_is_internal(self):
        assert make(CursorProvider).normalize_event({"type": "thinking", "text": "hmm"}) is None

    def test_result_error(self):
        msg = make(CursorProvider).normalize_event(
            {"type": "result", "subtype": "error", "is_error": True, "result": "failed"}
        )
        assert msg.type == "error"
        assert msg.error == "failed"

    def test_login_hint_is_auth_error(self):
        info = make(CursorProvider).map_error("Not logged in. Run cursor-agent login", 1)
        assert info.code == ProviderErrorCode.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    async def test_auth_from_cli_config(self, home, monkeypatch):
        monkeypatch.delenv("CURSOR_API_KEY", raising=False)
        write_json(home / ".cursor" / "cli-config.json", {"authInfo": {"email": "a@b.c"}})
        status = await make(CursorProvider).check_auth()
        assert status.authenticated is True
        assert status.method == "cli_login"

    def test_install_instructions(self):
        assert "cursor.com/install" in make(CursorProvider).get_install_instructions()


# =============================================================================
# Codex
# =============================================================================

class TestCodexProvider:

    def test_args_read_prompt_from_stdin(self):
        args = make(CodexProvider).build_cli_args(
            ExecuteOptions(prompt="x", model="gpt-5", cwd="/work")
        )
        assert args[:2] == ["exec", "--json"]
        assert args[args.index("--model") + 1] == "gpt-5"
        assert args[args.index("-C") + 1] == "/work"
        assert args[-1] == "-"

    def test_thread_started_sets_session(self):
        provider = make(CodexProvider)
        event = {"type": "thread.started", "thread_id": "th1"}
        assert provider.extract_session_id(event) == "th1"
        assert provider.normalize_event(event) is None

    def test_command_execution_round_trip(self):
        provider = make(CodexProvider)
        started = provider.normalize_event({
            "type": "item.started",
            "item": {"id": "i1", "type": "command_execution", "command": "ls"},
        })
        assert started.blocks[0].name == "Bash"
        assert started.blocks[0].input == {"command": "ls"}

        completed = provider.normalize_event({
            "type": "item.completed",
            "item": {"id": "i1", "type": "command_execution",
                     "aggregated_output": "oops", "exit_code": 2},
        })
        assert completed.blocks[0].content == "[ERROR] oops"

    def test_agent_message(self):
        msg = make(CodexProvider).normalize_event({
            "type": "item.completed", "item": {"id": "i2", "type": "agent_message", "text": "Done"},
        })
        assert msg.blocks[0].text == "Done"

    def test_file_change_becomes_edit(self):
        msg = make(CodexProvider).normalize_event({
            "type": "item.completed",
            "item": {"id": "i3", "type": "file_change", "changes": [{"path": "a.py", "kind": "update"}]},
        })
        assert msg.blocks[0].name == "Edit"
        assert msg.blocks[0].input["file_path"] == "a.py"

    def test_reasoning_is_internal(self):
        assert make(CodexProvider).normalize_event({
            "type": "item.completed", "item": {"id": "i4", "type": "reasoning", "text": "..."},
        }) is None

    def test_todo_list_marks_first_incomplete_in_progress(self):
        result = normalize_codex_todos([
            {"text": "a", "completed": True},
            {"text": "b", "completed": False},
            {"text": "c", "completed": False},
        ])
        assert [t["status"] for t in result["todos"]] == ["completed", "in_progress", "pending"]

    def test_turn_events(self):
        provider = make(CodexProvider)
        assert provider.normalize_event({"type": "turn.completed", "usage": {}}).type == "result"
        failed = provider.normalize_event({"type": "turn.failed", "error": {"message": "bad"}})
        assert failed.type == "error"
        assert failed.error == "bad"

    def test_missing_key_is_auth_error(self):
        info = make(CodexProvider).map_error("Missing OPENAI_API_KEY", 1)
        assert info.code == ProviderErrorCode.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    async def test_auth_from_auth_file(self, home, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        write_json(home / ".codex" / "auth.json", {"tokens": {"id_token": "x"}})
        status = await make(CodexProvider).check_auth()
        assert status.authenticated is True
        assert status.method == "cli_login"


# =============================================================================
# OpenCode
# =============================================================================

class TestOpenCodeProvider:

    def test_bare_model_gets_default_vendor(self):
        args = make(OpenCodeProvider).build_cli_args(ExecuteOptions(prompt="x", model="grok-code"))
        assert args == ["run", "--format", "json", "--model", "opencode/grok-code"]

    def test_vendor_model_is_kept(self):
        args = make(OpenCodeProvider).build_cli_args(
            ExecuteOptions(prompt="x", model="anthropic/claude-sonnet-4-5")
        )
        assert args[-1] == "anthropic/claude-sonnet-4-5"

    def test_step_start_sets_session(self):
        provider = make(OpenCodeProvider)
        event = {"type": "step_start", "sessionID": "ses_1", "part": {}}
        assert provider.extract_session_id(event) == "ses_1"
        assert provider.normalize_event(event) is None

    def test_completed_tool_yields_use_and_result(self):
        msg = make(OpenCodeProvider).normalize_event({
            "type": "tool_use",
            "sessionID": "ses_1",
            "part": {"tool": "read", "callID": "call_1", "state": {
                "status": "completed", "input": {"filePath": "a.py"}, "output": "text",
            }},
        })
        assert [b.type for b in msg.blocks] == ["tool_use", "tool_result"]
        assert msg.blocks[0].name == "Read"
        assert msg.blocks[0].input == {"file_path": "a.py"}
        assert msg.blocks[1].content == "text"

    def test_errored_tool(self):
        msg = make(OpenCodeProvider).normalize_event({
            "type": "tool_use",
            "part": {"tool": "bash", "callID": "c", "state": {"status": "error", "error": "denied"}},
        })
        assert msg.blocks[1].content == "[ERROR] denied"

    def test_step_finish(self):
        provider = make(OpenCodeProvider)
        assert provider.normalize_event({"type": "step_finish", "part": {"reason": "tool-calls"}}) is None
        assert provider.normalize_event({"type": "step_finish", "part": {"reason": "stop"}}).type == "result"

    def test_error_event(self):
        msg = make(OpenCodeProvider).normalize_event({
            "type": "error", "error": {"name": "ProviderAuthError", "data": {"message": "no key"}},
        })
        assert msg.error == "no key"

    @pytest.mark.asyncio
    async def test_any_vendor_key_authenticates(self, home, monkeypatch):
        for name in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("OPENROUTER_API_KEY", "k")
        status = await make(OpenCodeProvider).check_auth()
        assert status.authenticated is True
        assert status.method == "api_key"

    @pytest.mark.asyncio
    async def test_unauthenticated(self, home, monkeypatch):
        for name in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        status = await make(OpenCodeProvider).check_auth()
        assert status.authenticated is False
        assert "opencode auth login" in status.error


# =============================================================================
# Malformed vendor payloads
# =============================================================================

class TestMalformedEvents:
    """normalize_event never raises on unexpected payload shapes."""

    @pytest.mark.parametrize("provider_cls,event", [
        (ClaudeProvider, {"type": "assistant", "message": "not an object"}),
        (ClaudeProvider, {"type": "assistant", "message": {"content": [{"type": "tool_use", "name": None}]}}),
        (ClaudeProvider, {"type": "user", "message": {"content": "not a list"}}),
        (CursorProvider, {"type": "assistant", "message": {"content": [None, {"type": "text", "text": 5}]}}),
        (CursorProvider, {"type": "tool_call", "subtype": "started", "tool_call": "not an object"}),
        (CursorProvider, {"type": "tool_call", "subtype": "completed", "tool_call": {"readToolCall": None}}),
        (CursorProvider, {"type": "tool_call", "subtype": "started",
                          "tool_call": {"updateTodosToolCall": {"args": {"todos": ["x", None]}}}}),
        (CursorProvider, {"type": "tool_call", "subtype": "started",
                          "tool_call": {"function": {"name": 7, "arguments": "[1, 2]"}}}),
        (CodexProvider, {"type": "item.started", "item": "not an object"}),
        (CodexProvider, {"type": "item.updated", "item": {"type": "todo_list", "items": "x"}}),
        (CodexProvider, {"type": "item.completed", "item": {"type": "todo_list", "items": ["x", 1]}}),
        (CodexProvider, {"type": "item.completed", "item": {"type": "file_change", "changes": ["a.py"]}}),
        (CodexProvider, {"type": "item.completed", "item": {"type": "reasoning", "text": 5}}),
        (CodexProvider, {"type": "turn.failed", "error": "boom"}),
        (OpenCodeProvider, {"type": "text", "part": None}),
        (OpenCodeProvider, {"type": "tool_use", "part": "not an object"}),
        (OpenCodeProvider, {"type": "tool_use",
                            "part": {"tool": "todowrite", "state": {"input": {"todos": ["x"]}}}}),
        (OpenCodeProvider, {"type": "error", "error": {"name": "E", "data": "not an object"}}),
    ])
    def test_does_not_raise(self, provider_cls, event):
        msg = make(provider_cls).normalize_event(event)
        assert msg is None or isinstance(msg, ProviderMessage)

    def test_codex_todos_skip_non_objects(self):
        assert normalize_codex_todos(["plain", {"text": "Real", "completed": False}]) == {
            "todos": [{"content": "Real", "status": "in_progress", "activeForm": "Real"}],
        }

    def test_codex_file_change_uses_first_object(self):
        msg = make(CodexProvider).normalize_event({
            "type": "item.completed",
            "item": {"id": "i1", "type": "file_change", "changes": ["a.py", {"path": "b.py"}]},
        })
        assert msg.blocks[0].input["file_path"] == "b.py"

    def test_cursor_text_blocks_are_stringified(self):
        msg = make(CursorProvider).normalize_event({
            "type": "assistant",
            "message": {"content": ["junk", {"type": "text", "text": 5}, {"type": "text", "text": "!"}]},
        })
        assert msg.blocks[0].text == "5!"
