"""
Support Module Tests
====================

Configuration, the secure filesystem adapter, worktree resolution and
prompt building, plus a clean compile of every package source.
"""

import subprocess
import warnings
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from automode.config import AutoModeSettings, get_settings, reset_settings
from automode.prompt_builder import (
    build_feature_prompt,
    build_pipeline_step_prompt,
    extract_summary,
)
from automode.secure_fs import (
    PathNotAllowedError,
    SecureFS,
    configure_secure_fs,
    get_secure_fs,
)
from automode.worktree import (
    WorktreeInfo,
    parse_worktree_list,
    resolve_working_directory,
)


# =============================================================================
# Configuration
# =============================================================================

class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in (
            "AUTOMODE_DEFAULT_MODEL", "AUTOMODE_MAX_CONCURRENCY", "AUTOMODE_POLL_INTERVAL",
            "AUTOMODE_PROCESS_TIMEOUT", "ALLOWED_ROOT_DIRECTORY", "DATA_DIR",
            "AUTOMODE_ALLOW_REMOTE", "LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = AutoModeSettings.from_env()

        assert settings.default_model == "sonnet"
        assert settings.max_concurrency == 3
        assert settings.poll_interval == 2.0
        assert settings.process_timeout is None
        assert settings.allowed_root_directory is None
        assert settings.allow_remote is False
        assert settings.log_level == "INFO"

    def test_values_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AUTOMODE_MAX_CONCURRENCY", "50")
        monkeypatch.setenv("AUTOMODE_PROCESS_TIMEOUT", "120")
        monkeypatch.setenv("ALLOWED_ROOT_DIRECTORY", str(tmp_path))
        monkeypatch.setenv("AUTOMODE_ALLOW_REMOTE", "yes")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = AutoModeSettings.from_env()

        assert settings.max_concurrency == 10
        assert settings.process_timeout == 120.0
        assert settings.allowed_root_directory == tmp_path.resolve()
        assert settings.allow_remote is True
        assert settings.log_level == "DEBUG"

    def test_invalid_values_fall_back(self, monkeypatch, caplog):
        monkeypatch.setenv("AUTOMODE_MAX_CONCURRENCY", "many")
        monkeypatch.setenv("AUTOMODE_POLL_INTERVAL", "-1")
        monkeypatch.setenv("LOG_LEVEL", "LOUD")

        settings = AutoModeSettings.from_env()

        assert settings.max_concurrency == 3
        assert settings.poll_interval == 2.0
        assert settings.log_level == "INFO"
        assert "Invalid integer for AUTOMODE_MAX_CONCURRENCY" in caplog.text

    def test_settings_are_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("AUTOMODE_DEFAULT_MODEL", "opus")
        first = get_settings()
        monkeypatch.setenv("AUTOMODE_DEFAULT_MODEL", "haiku")
        assert get_settings() is first

        reset_settings()
        assert get_settings().default_model == "haiku"


# =============================================================================
# Secure filesystem
# =============================================================================

class TestSecureFS:

    def test_unrestricted_by_default(self):
        assert SecureFS().is_path_allowed("/etc/passwd")

    def test_paths_outside_root_are_rejected(self, tmp_path):
        root = tmp_path / "projects"
        root.mkdir()
        fs = SecureFS(allowed_root=root)

        assert fs.is_path_allowed(root / "app")
        assert not fs.is_path_allowed(tmp_path / "other")
        with pytest.raises(PathNotAllowedError) as exc_info:
            fs.validate_path(tmp_path / "other")
        assert exc_info.value.path == str(tmp_path / "other")
        assert "ALLOWED_ROOT_DIRECTORY" in str(exc_info.value)

    def test_traversal_is_resolved_before_checking(self, tmp_path):
        root = tmp_path / "projects"
        root.mkdir()
        fs = SecureFS(allowed_root=root)
        assert not fs.is_path_allowed(root / ".." / "secrets")

    def test_data_dir_is_always_allowed(self, tmp_path):
        root = tmp_path / "projects"
        data = tmp_path / "data"
        fs = SecureFS(allowed_root=root, data_dir=data)
        assert fs.is_path_allowed(data / ".gemini-disconnected")

    def test_path_not_allowed_is_a_permission_error(self):
        assert issubclass(PathNotAllowedError, PermissionError)

    @pytest.mark.asyncio
    async def test_file_operations(self, tmp_path):
        fs = SecureFS(allowed_root=tmp_path)
        target = tmp_path / "dir" / "file.txt"

        await fs.mkdir(target.parent)
        await fs.write_text(target, "hello")

        assert await fs.exists(target)
        assert await fs.read_text(target) == "hello"
        assert await fs.list_dir(target.parent) == ["file.txt"]

        await fs.unlink(target)
        await fs.unlink(target)
        assert not await fs.exists(target)

    @pytest.mark.asyncio
    async def test_operations_validate_before_touching_disk(self, tmp_path):
        fs = SecureFS(allowed_root=tmp_path / "projects")
        with pytest.raises(PathNotAllowedError):
            await fs.read_text(tmp_path / "outside.txt")

    @pytest.mark.asyncio
    async def test_descriptor_exhaustion_is_retried(self, tmp_path):
        import errno

        fs = SecureFS()
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise OSError(errno.EMFILE, "Too many open files")
            return "ok"

        with patch("automode.secure_fs.asyncio.sleep", new=AsyncMock()):
            assert await fs._execute(flaky, "flaky") == "ok"
        assert len(attempts) == 3

    def test_global_adapter(self, tmp_path):
        configured = configure_secure_fs(allowed_root=tmp_path)
        assert get_secure_fs() is configured


# =============================================================================
# Worktrees
# =============================================================================

PORCELAIN = """worktree /repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /repo/.worktrees/login
HEAD 2222222222222222222222222222222222222222
branch refs/heads/feature/login

worktree /repo/.worktrees/detached
HEAD 3333333333333333333333333333333333333333
detached
"""


class TestWorktrees:

    def test_parse_porcelain(self):
        worktrees = parse_worktree_list(PORCELAIN)
        assert [w.path for w in worktrees] == [
            "/repo", "/repo/.worktrees/login", "/repo/.worktrees/detached",
        ]
        assert worktrees[1].branch == "feature/login"
        assert worktrees[2].detached is True
        assert worktrees[2].branch is None

    def test_parse_empty(self):
        assert parse_worktree_list("") == []

    @pytest.mark.asyncio
    async def test_no_branch_uses_project_root(self):
        assert await resolve_working_directory("/repo", None) == "/repo"

    @pytest.mark.asyncio
    async def test_branch_with_worktree(self):
        with patch(
            "automode.worktree.list_worktrees",
            new=AsyncMock(return_value=parse_worktree_list(PORCELAIN)),
        ):
            path = await resolve_working_directory("/repo", "feature/login")
        assert path == "/repo/.worktrees/login"

    @pytest.mark.asyncio
    async def test_branch_without_worktree_falls_back(self, caplog):
        with patch(
            "automode.worktree.list_worktrees",
            new=AsyncMock(return_value=[WorktreeInfo(path="/repo", branch="main")]),
        ):
            path = await resolve_working_directory("/repo", "feature/missing")
        assert path == "/repo"
        assert "No worktree found" in caplog.text

    @pytest.mark.asyncio
    async def test_git_failure_falls_back(self, tmp_path):
        # tmp_path is not a git repository
        assert await resolve_working_directory(str(tmp_path), "feature/x") == str(tmp_path)

    @pytest.mark.asyncio
    async def test_real_repository(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        git = ["git", "-c", "user.email=t@example.com", "-c", "user.name=t"]
        try:
            subprocess.run(["git", "init", "-q", "-b", "main", str(repo)], check=True)
            subprocess.run(
                git + ["-C", str(repo), "commit", "-q", "--allow-empty", "-m", "init"], check=True
            )
            subprocess.run(
                git + ["-C", str(repo), "worktree", "add", "-q", "-b", "feature/x",
                       str(tmp_path / "wt")],
                check=True,
            )
        except (OSError, subprocess.CalledProcessError):
            pytest.skip("git is not available")

        path = await resolve_working_directory(str(repo), "feature/x")
        assert Path(path).resolve() == (tmp_path / "wt").resolve()


# =============================================================================
# Prompts
# =============================================================================

class TestPrompts:

    def test_tdd_prompt(self):
        prompt = build_feature_prompt({"id": "f1", "title": "Login", "description": "Add login"})
        assert "# Feature: Login" in prompt
        assert "Add login" in prompt
        assert "Run the tests" in prompt

    def test_manual_verification_prompt(self):
        prompt = build_feature_prompt({"id": "f1", "description": "Add login", "skipTests": True})
        assert "# Feature: f1" in prompt
        assert "Do not write automated tests" in prompt

    def test_category_is_included(self):
        prompt = build_feature_prompt({"id": "f1", "category": "auth"})
        assert "**Category:** auth" in prompt
        assert "(no description)" in prompt

    def test_pipeline_step_prompt(self):
        prompt = build_pipeline_step_prompt(
            {"id": "f1", "title": "Login"},
            {"id": "review", "name": "Code review", "instructions": "Review the diff."},
        )
        assert "## Pipeline Step: Code review" in prompt
        assert prompt.endswith("Review the diff.")

    def test_extract_summary(self):
        assert extract_summary(["first", "  ", "last  "]) == "last"
        assert extract_summary([]) is None
        assert extract_summary(["x" * 50], max_length=10) == "x" * 10


# =============================================================================
# Source Hygiene
# =============================================================================

PACKAGE_ROOT = Path(__file__).resolve().parent.parent
SOURCE_FILES = sorted(
    path.relative_to(PACKAGE_ROOT).as_posix()
    for package in ("automode", "server")
    for path in (PACKAGE_ROOT / package).rglob("*.py")
)


class TestSourceHygiene:

    @pytest.mark.parametrize("relative_path", SOURCE_FILES)
    def test_compiles_without_warnings(self, relative_path):
        """Invalid escapes in docstrings surface as SyntaxWarning at compile time."""
        source = (PACKAGE_ROOT / relative_path).read_text(encoding="utf-8")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(source, relative_path, "exec")
