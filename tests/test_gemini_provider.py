"""
Gemini Provider Tests
=====================

Covers the reference CLI provider:
1. CLI argument construction (model prefixing, "auto", include directories)
2. Stream-json event normalization, including write_todos
3. stderr classification into the provider error taxonomy
4. Authentication detection order
5. End-to-end execution against a stand-in CLI script
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from automode.providers.errors import ProviderError, ProviderErrorCode
from automode.providers.gemini import GeminiProvider, normalize_gemini_tool_input
from automode.providers.types import ExecuteOptions, PromptPart, ProviderConfig, ProviderMessage
from automode.secure_fs import SecureFS


def make_provider(cli_path: str = "/usr/bin/gemini") -> GeminiProvider:
    return GeminiProvider(config=ProviderConfig(cli_path=cli_path), secure_fs=SecureFS())


@pytest.fixture
def clean_auth_env(monkeypatch):
    for name in ("GEMINI_API_KEY", "GOOGLE_APPLICATION_CREDENTIALS", "GOOGLE_CLOUD_PROJECT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def gemini_home(tmp_path):
    """Point Path.home() at tmp_path and return a writer for settings.json."""
    def write_settings(settings: dict) -> None:
        settings_dir = tmp_path / ".gemini"
        settings_dir.mkdir(exist_ok=True)
        (settings_dir / "settings.json").write_text(json.dumps(settings))

    with patch.object(Path, "home", return_value=tmp_path):
        yield write_settings


# =============================================================================
# CLI arguments
# =============================================================================

class TestBuildCliArgs:

    def test_default_model_is_prefixed(self):
        args = make_provider().build_cli_args(ExecuteOptions(prompt="hi"))
        assert args[:2] == ["--output-format", "stream-json"]
        model_index = args.index("--model")
        assert args[model_index + 1] == "gemini-2.5-flash"

    def test_bare_model_gets_gemini_prefix(self):
        args = make_provider().build_cli_args(ExecuteOptions(prompt="hi", model="2.5-pro"))
        assert args[args.index("--model") + 1] == "gemini-2.5-pro"

    def test_already_prefixed_model_is_not_doubled(self):
        args = make_provider().build_cli_args(ExecuteOptions(prompt="hi", model="gemini-3-pro-preview"))
        assert args[args.index("--model") + 1] == "gemini-3-pro-preview"

    def test_auto_model_omits_model_flag(self):
        args = make_provider().build_cli_args(ExecuteOptions(prompt="hi", model="auto"))
        assert "--model" not in args

    def test_headless_flags(self):
        args = make_provider().build_cli_args(ExecuteOptions(prompt="hi"))
        assert args[args.index("--sandbox") + 1] == "false"
        assert args[args.index("--approval-mode") + 1] == "yolo"

    def test_cwd_becomes_include_directories(self):
        args = make_provider().build_cli_args(ExecuteOptions(prompt="hi", cwd="/work/app"))
        assert args[-2:] == ["--include-directories", "/work/app"]

    def test_no_cwd_no_include_directories(self):
        args = make_provider().build_cli_args(ExecuteOptions(prompt="hi"))
        assert "--include-directories" not in args


# =============================================================================
# Event normalization
# =============================================================================

class TestNormalizeEvent:

    def test_init_is_internal(self):
        provider = make_provider()
        assert provider.normalize_event({"type": "init", "session_id": "s1", "model": "x"}) is None
        assert provider.extract_session_id({"type": "init", "session_id": "s1"}) == "s1"

    def test_assistant_message_becomes_text(self):
        msg = make_provider().normalize_event(
            {"type": "message", "role": "assistant", "content": "Working on it", "delta": True}
        )
        assert msg.type == "assistant"
        assert msg.blocks[0].type == "text"
        assert msg.blocks[0].text == "Working on it"

    def test_user_message_is_ignored(self):
        assert make_provider().normalize_event(
            {"type": "message", "role": "user", "content": "prompt echo"}
        ) is None

    def test_tool_use_maps_name_and_id(self):
        msg = make_provider().normalize_event({
            "type": "tool_use",
            "tool_name": "read_file",
            "tool_id": "t1",
            "parameters": {"file_path": "src/app.py"},
        })
        block = msg.blocks[0]
        assert block.type == "tool_use"
        assert block.name == "Read"
        assert block.tool_use_id == "t1"
        assert block.input == {"file_path": "src/app.py"}

    def test_unknown_tool_name_passes_through(self):
        msg = make_provider().normalize_event(
            {"type": "tool_use", "tool_name": "save_memory", "tool_id": "t2", "parameters": {}}
        )
        assert msg.blocks[0].name == "save_memory"

    def test_tool_result_success(self):
        msg = make_provider().normalize_event(
            {"type": "tool_result", "tool_id": "t1", "status": "success", "output": "file text"}
        )
        assert msg.blocks[0].type == "tool_result"
        assert msg.blocks[0].tool_use_id == "t1"
        assert msg.blocks[0].content == "file text"

    def test_tool_result_error_is_prefixed(self):
        msg = make_provider().normalize_event(
            {"type": "tool_result", "tool_id": "t1", "status": "error", "output": "no such file"}
        )
        assert msg.blocks[0].content == "[ERROR] no such file"

    def test_result_success(self):
        msg = make_provider().normalize_event(
            {"type": "result", "status": "success", "session_id": "s1", "stats": {"total_tokens": 5}}
        )
        assert msg.type == "result"
        assert msg.subtype == "success"
        assert msg.session_id == "s1"

    def test_result_error(self):
        msg = make_provider().normalize_event(
            {"type": "result", "status": "error", "error": "quota exhausted"}
        )
        assert msg.type == "error"
        assert msg.error == "quota exhausted"

    def test_error_event(self):
        msg = make_provider().normalize_event({"type": "error", "error": "boom"})
        assert msg.type == "error"
        assert msg.error == "boom"

    def test_unknown_event_is_ignored(self):
        assert make_provider().normalize_event({"type": "telemetry"}) is None


class TestWriteTodos:

    def test_write_todos_becomes_todo_write(self):
        msg = make_provider().normalize_event({
            "type": "tool_use",
            "tool_name": "write_todos",
            "tool_id": "t3",
            "parameters": {"todos": [
                {"description": "Add route", "status": "completed"},
                {"description": "Write tests", "status": "in_progress"},
                {"description": "Old idea", "status": "cancelled"},
            ]},
        })
        block = msg.blocks[0]
        assert block.name == "TodoWrite"
        assert block.input["todos"] == [
            {"content": "Add route", "status": "completed", "activeForm": "Add route"},
            {"content": "Write tests", "status": "in_progress", "activeForm": "Write tests"},
            {"content": "Old idea", "status": "completed", "activeForm": "Old idea"},
        ]

    def test_other_tool_input_is_unchanged(self):
        assert normalize_gemini_tool_input("glob", {"pattern": "*.py"}) == {"pattern": "*.py"}


class TestMalformedEvents:
    """normalize_event never raises on unexpected payload shapes."""

    @pytest.mark.parametrize("event", [
        {"type": "message", "role": "assistant", "content": None},
        {"type": "tool_use", "tool_name": ["read_file"], "parameters": "not an object"},
        {"type": "tool_use", "tool_name": "write_todos", "parameters": {"todos": "not a list"}},
        {"type": "tool_use", "tool_name": "write_todos", "parameters": {"todos": [None, 3, "x"]}},
        {"type": "tool_result", "status": "error", "output": {"code": 1}},
        {"type": "result", "status": "success", "stats": "n/a"},
        {"type": "result", "status": "error", "error": None},
        {"type": "error"},
        {"type": ["init"]},
        {},
    ])
    def test_does_not_raise(self, event):
        msg = make_provider().normalize_event(event)
        assert msg is None or isinstance(msg, ProviderMessage)

    def test_string_todos_are_skipped(self):
        msg = make_provider().normalize_event({
            "type": "tool_use",
            "tool_name": "write_todos",
            "parameters": {"todos": [
                "plain string todo",
                {"description": "Real item", "status": "cancelled"},
            ]},
        })
        assert msg.blocks[0].name == "TodoWrite"
        assert msg.blocks[0].input == {"todos": [
            {"content": "Real item", "status": "completed", "activeForm": "Real item"},
        ]}


# =============================================================================
# Error classification
# =============================================================================

class TestMapError:

    @pytest.mark.parametrize("stderr", [
        "Error: not authenticated",
        "Please log in first",
        "Error authenticating with Google",
        "LoadCodeAssist failed",
        "connect ECONNREFUSED 127.0.0.1:8888",
    ])
    def test_auth_errors(self, stderr):
        info = make_provider().map_error(stderr, 1)
        assert info.code == ProviderErrorCode.NOT_AUTHENTICATED
        assert info.recoverable is True
        assert "GEMINI_API_KEY" in info.suggestion

    def test_rate_limit(self):
        info = make_provider().map_error("429 Too Many Requests", 1)
        assert info.code == ProviderErrorCode.RATE_LIMITED

    @pytest.mark.parametrize("stderr", ["ModelNotFoundError: gemini-9", "404 model not found"])
    def test_model_unavailable(self, stderr):
        info = make_provider().map_error(stderr, 1)
        assert info.code == ProviderErrorCode.MODEL_UNAVAILABLE

    def test_timeout_is_a_network_error(self):
        info = make_provider().map_error("request timeout after 60s", 1)
        assert info.code == ProviderErrorCode.NETWORK_ERROR

    def test_exit_137_is_crash(self):
        info = make_provider().map_error("", 137)
        assert info.code == ProviderErrorCode.PROCESS_CRASHED

    def test_unknown_keeps_stderr(self):
        info = make_provider().map_error("something odd", 2)
        assert info.code == ProviderErrorCode.UNKNOWN
        assert info.message == "something odd"
        assert info.recoverable is False

    def test_unknown_without_stderr_mentions_exit_code(self):
        info = make_provider().map_error("", 2)
        assert info.message == "Gemini CLI exited with code 2"

    def test_classification_is_deterministic(self):
        provider = make_provider()
        stderr = "401 unauthorized and 429 rate limit"
        assert provider.map_error(stderr, 1) == provider.map_error(stderr, 1)
        assert provider.map_error(stderr, 1).code == ProviderErrorCode.NOT_AUTHENTICATED


# =============================================================================
# Authentication
# =============================================================================

class TestCheckAuth:

    @pytest.mark.asyncio
    async def test_no_cli_means_unauthenticated(self, clean_auth_env, gemini_home):
        provider = make_provider()
        with patch.object(GeminiProvider, "_find_cli_path", return_value=None):
            provider.config.cli_path = None
            status = await provider.check_auth()
        assert status.authenticated is False
        assert status.method == "none"

    @pytest.mark.asyncio
    async def test_api_key_wins(self, clean_auth_env, gemini_home, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "key")
        monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "proj")
        status = await make_provider().check_auth()
        assert status.authenticated is True
        assert status.method == "api_key"
        assert status.has_api_key is True

    @pytest.mark.asyncio
    async def test_vertex_ai(self, clean_auth_env, gemini_home, monkeypatch):
        monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/creds.json")
        status = await make_provider().check_auth()
        assert status.authenticated is True
        assert status.method == "vertex_ai"

    @pytest.mark.asyncio
    async def test_oauth_settings(self, clean_auth_env, gemini_home):
        gemini_home({"security": {"auth": {"selectedType": "oauth-personal"}}})
        status = await make_provider().check_auth()
        assert status.authenticated is True
        assert status.method == "google_login"
        assert status.has_credentials_file is True

    @pytest.mark.asyncio
    async def test_api_key_settings(self, clean_auth_env, gemini_home):
        gemini_home({"security": {"auth": {"selectedType": "api-key"}}})
        status = await make_provider().check_auth()
        assert status.authenticated is True
        assert status.method == "api_key"

    @pytest.mark.asyncio
    async def test_code_assist_is_not_usable(self, clean_auth_env, gemini_home):
        gemini_home({"security": {"auth": {"selectedType": "code-assist"}}})
        status = await make_provider().check_auth()
        assert status.authenticated is False
        assert "Code Assist" in status.error

    @pytest.mark.asyncio
    async def test_unknown_auth_type_is_treated_as_login(self, clean_auth_env, gemini_home):
        gemini_home({"security": {"auth": {"selectedType": "cloud-shell"}}})
        status = await make_provider().check_auth()
        assert status.authenticated is True
        assert status.method == "google_login"

    @pytest.mark.asyncio
    async def test_nothing_configured(self, clean_auth_env, gemini_home):
        status = await make_provider().check_auth()
        assert status.authenticated is False
        assert status.method == "none"
        assert "GEMINI_API_KEY" in status.error

    @pytest.mark.asyncio
    async def test_malformed_settings_file_is_ignored(self, clean_auth_env, gemini_home, tmp_path):
        (tmp_path / ".gemini").mkdir()
        (tmp_path / ".gemini" / "settings.json").write_text("{not json")
        status = await make_provider().check_auth()
        assert status.authenticated is False
        assert status.has_credentials_file is False


# =============================================================================
# Catalogue
# =============================================================================

class TestModels:

    def test_available_models(self):
        models = make_provider().get_available_models()
        ids = [m.id for m in models]
        assert "gemini-2.5-flash" in ids
        assert all(m.provider == "gemini" for m in models)

    def test_supports_feature(self):
        provider = make_provider()
        assert provider.supports_feature("vision")
        assert provider.supports_feature("thinking")
        assert not provider.supports_feature("mcp")


# =============================================================================
# Execution
# =============================================================================

class TestExecuteQuery:

    @pytest.mark.asyncio
    async def test_streams_normalized_messages_with_session_id(self, fake_cli):
        cli = fake_cli("""
            print(json.dumps({"type": "init", "session_id": "sess-42", "model": "gemini-2.5-flash"}))
            print(json.dumps({"type": "message", "role": "assistant", "content": sys.argv[-1]}))
            print(json.dumps({"type": "tool_use", "tool_name": "glob", "tool_id": "t1", "parameters": {}}))
            print(json.dumps({"type": "result", "status": "success"}))
        """)
        provider = make_provider(cli)

        messages = [m async for m in provider.execute_query(ExecuteOptions(prompt="build it"))]

        assert [m.type for m in messages] == ["assistant", "assistant", "result"]
        assert messages[0].blocks[0].text == "build it"
        assert messages[1].blocks[0].name == "Glob"
        assert all(m.session_id == "sess-42" for m in messages)

    @pytest.mark.asyncio
    async def test_multipart_prompt_keeps_text_parts(self, fake_cli):
        cli = fake_cli("""
            print(json.dumps({"type": "message", "role": "assistant", "content": sys.argv[-1]}))
        """)
        options = ExecuteOptions(prompt=[
            PromptPart(type="text", text="first"),
            PromptPart(type="image"),
            PromptPart(type="text", text="second"),
        ])
        messages = [m async for m in make_provider(cli).execute_query(options)]
        assert messages[0].blocks[0].text == "first\nsecond"

    @pytest.mark.asyncio
    async def test_exit_failure_is_classified(self, fake_cli):
        cli = fake_cli("""
            sys.stderr.write("Error: 429 Too Many Requests\\n")
            sys.exit(1)
        """)
        with pytest.raises(ProviderError) as exc_info:
            async for _ in make_provider(cli).execute_query(ExecuteOptions(prompt="x")):
                pass
        assert exc_info.value.code == ProviderErrorCode.RATE_LIMITED
        assert exc_info.value.provider == "gemini"
        assert exc_info.value.recoverable is True

    @pytest.mark.asyncio
    async def test_missing_cli_raises_not_installed(self):
        provider = GeminiProvider(secure_fs=SecureFS())
        with patch.object(GeminiProvider, "_find_cli_path", return_value=None):
            with pytest.raises(ProviderError) as exc_info:
                async for _ in provider.execute_query(ExecuteOptions(prompt="x")):
                    pass
        assert exc_info.value.code == ProviderErrorCode.NOT_INSTALLED
        assert "npm install -g @google/gemini-cli" in exc_info.value.suggestion

    @pytest.mark.asyncio
    async def test_gemini_prefix_is_accepted(self, fake_cli):
        cli = fake_cli("""
            print(json.dumps({"type": "result", "status": "success"}))
        """)
        options = ExecuteOptions(prompt="x", model="gemini-2.5-pro")
        messages = [m async for m in make_provider(cli).execute_query(options)]
        assert messages[0].type == "result"

    @pytest.mark.asyncio
    async def test_other_routing_prefix_is_rejected(self):
        options = ExecuteOptions(prompt="x", model="cursor-auto")
        with pytest.raises(ValueError, match="still has provider prefix"):
            async for _ in make_provider().execute_query(options):
                pass
