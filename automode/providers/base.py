"""
Provider Base Classes
=====================

BaseProvider is the capability interface the scheduler talks to.
CliProvider implements the parts every CLI-backed provider shares:

- CLI discovery: configured path, then per-platform common install paths,
  then shell resolution (shutil.which)
- version probing and installation status that never raise for absence
- execute_query template: build args, spawn, normalize each raw event,
  propagate the session id, classify failures through map_error
- generic stderr heuristics that vendors extend or replace

Adding a provider means adding a subclass and registering it with the
factory; the scheduler never changes.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import shutil
import sys
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from automode.providers.errors import CliErrorInfo, ProviderError, ProviderErrorCode, contains_any
from automode.providers.models import validate_bare_model_id
from automode.providers.types import (
    AuthStatus,
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    ProviderConfig,
    ProviderMessage,
)
from automode.secure_fs import PathNotAllowedError, SecureFS, get_secure_fs
from automode.spawner import (
    ProcessAbortedError,
    ProcessExitError,
    ProcessTimeoutError,
    SubprocessConfig,
    spawn_jsonl_process,
)

_logger = logging.getLogger(__name__)

# Seconds allowed for `<cli> --version`
VERSION_TIMEOUT_SECONDS = 5.0

# Exit codes with a fixed meaning across shells
EXIT_COMMAND_NOT_FOUND = 127
EXIT_SIGKILL = 137


# ===== Payload helpers for normalize_event =====
# Vendor events are untrusted JSON; these keep normalization total.

def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def dict_items(value: Any) -> list[dict[str, Any]]:
    """The JSON objects in value when it is a list; other items are dropped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return "" if value is None else str(value)


@dataclass
class CliSpawnConfig:
    """
    Where to look for a CLI binary.

    Attributes:
        common_paths: sys.platform key ("linux", "darwin", "win32") -> candidate paths
        npx_package: npm package that provides the CLI, used in install hints
    """
    common_paths: dict[str, list[str]] = field(default_factory=dict)
    npx_package: Optional[str] = None


class BaseProvider(abc.ABC):
    """Capability interface implemented by every provider."""

    @abc.abstractmethod
    def get_name(self) -> str:
        """Stable provider identifier (e.g. "gemini")."""

    @abc.abstractmethod
    async def detect_installation(self) -> InstallationStatus:
        """Report whether the provider can run. Absence is not an error."""

    @abc.abstractmethod
    async def check_auth(self) -> AuthStatus:
        """Report how (and whether) the provider is authenticated."""

    @abc.abstractmethod
    def execute_query(self, options: ExecuteOptions) -> AsyncIterator[ProviderMessage]:
        """Run one query, yielding normalized messages until the run ends."""

    def get_available_models(self) -> list[ModelDefinition]:
        return []

    def supports_feature(self, feature: str) -> bool:
        return feature in ("tools", "text", "streaming")


class CliProvider(BaseProvider):
    """
    Base class for providers backed by a vendor CLI that streams JSONL.

    Subclasses implement get_name, get_cli_name, get_spawn_config,
    build_cli_args and normalize_event, and usually map_error and check_auth.
    """

    # Human-readable name used in error messages
    display_name: str = "CLI"

    # Environment variable holding an API key, if the vendor supports one
    api_key_env_var: Optional[str] = None

    # Deliver the prompt on stdin instead of as the final positional argument
    prompt_via_stdin: bool = False

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        secure_fs: Optional[SecureFS] = None,
    ):
        self.config = config or ProviderConfig()
        self.cli_path: Optional[str] = None
        self._cli_detected = False
        self._secure_fs = secure_fs

    # ------------------------------------------------------------------
    # Abstract hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def get_cli_name(self) -> str:
        """Executable name looked up on PATH."""

    @abc.abstractmethod
    def get_spawn_config(self) -> CliSpawnConfig:
        """Per-platform install locations."""

    @abc.abstractmethod
    def build_cli_args(self, options: ExecuteOptions) -> list[str]:
        """Translate normalized options into CLI flags (without the prompt)."""

    @abc.abstractmethod
    def normalize_event(self, event: dict[str, Any]) -> Optional[ProviderMessage]:
        """Map one raw vendor event to a ProviderMessage, or None for internal events."""

    def extract_session_id(self, event: dict[str, Any]) -> Optional[str]:
        """Return the session id announced by an init-like event, if any."""
        return None

    def get_install_instructions(self) -> str:
        package = self.get_spawn_config().npx_package
        if package:
            return f"Install with: npm install -g {package}"
        return f"Install the {self.display_name} CLI and make sure '{self.get_cli_name()}' is on PATH"

    # ------------------------------------------------------------------
    # CLI discovery
    # ------------------------------------------------------------------

    @property
    def secure_fs(self) -> SecureFS:
        return self._secure_fs or get_secure_fs()

    def _find_cli_path(self) -> Optional[str]:
        if self.config.cli_path:
            return self.config.cli_path

        candidates = self.get_spawn_config().common_paths.get(sys.platform, [])
        for candidate in candidates:
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                _logger.debug("Found %s CLI at %s", self.get_cli_name(), candidate)
                return candidate

        return shutil.which(self.get_cli_name())

    def ensure_cli_detected(self) -> None:
        if not self._cli_detected:
            self.cli_path = self._find_cli_path()
            self._cli_detected = True
            if self.cli_path is None:
                _logger.debug("%s CLI not found", self.display_name)

    def get_cli_path(self) -> Optional[str]:
        self.ensure_cli_detected()
        return self.cli_path

    def is_installed(self) -> bool:
        return self.get_cli_path() is not None

    async def get_version(self) -> Optional[str]:
        """Return `<cli> --version` output, or None if it cannot be read."""
        cli_path = self.get_cli_path()
        if not cli_path:
            return None
        try:
            process = await asyncio.create_subprocess_exec(
                cli_path,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=VERSION_TIMEOUT_SECONDS
            )
        except (OSError, asyncio.TimeoutError) as e:
            _logger.debug("Could not read %s version: %s", self.display_name, e)
            return None
        if process.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace").strip() or None

    def has_env_api_key(self) -> bool:
        return bool(self.api_key_env_var and os.environ.get(self.api_key_env_var))

    async def detect_installation(self) -> InstallationStatus:
        """
        Report installation and auth status.

        Absence of the CLI is a normal result. PathNotAllowedError from an auth
        probe is re-raised because it signals misconfiguration.
        """
        installed = self.is_installed()
        version = await self.get_version() if installed else None
        try:
            auth = await self.check_auth()
        except PathNotAllowedError:
            raise
        except Exception as e:
            _logger.warning("%s auth check failed: %s", self.display_name, e)
            auth = AuthStatus(authenticated=False, error=str(e))

        return InstallationStatus(
            installed=installed,
            version=version,
            path=self.cli_path,
            method="cli",
            has_api_key=self.has_env_api_key(),
            authenticated=auth.authenticated,
            error=auth.error,
        )

    async def read_json_file(self, path: str) -> Optional[dict[str, Any]]:
        """
        Read a JSON credentials/settings file through the secure filesystem.

        Returns None when the file is missing or unreadable. PathNotAllowedError
        propagates.
        """
        try:
            if not await self.secure_fs.exists(path):
                return None
            content = await self.secure_fs.read_text(path)
        except PathNotAllowedError:
            raise
        except OSError as e:
            _logger.debug("Could not read %s: %s", path, e)
            return None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            _logger.debug("Could not parse %s: %s", path, e)
            return None
        return data if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def extract_prompt_text(options: ExecuteOptions) -> str:
        """Flatten the prompt to plain text; only text parts are kept."""
        if isinstance(options.prompt, str):
            return options.prompt
        if isinstance(options.prompt, list):
            return "\n".join(
                part.text for part in options.prompt
                if getattr(part, "type", None) == "text" and part.text
            )
        raise ValueError("Invalid prompt format")

    def build_subprocess_config(
        self,
        options: ExecuteOptions,
        cli_args: list[str],
        stdin_data: Optional[str] = None,
    ) -> SubprocessConfig:
        return SubprocessConfig(
            command=self.cli_path or self.get_cli_name(),
            args=cli_args,
            cwd=options.cwd,
            env={**self.config.env, **options.env},
            stdin_data=stdin_data,
            abort_event=options.abort_event,
            timeout_seconds=options.timeout_seconds,
        )

    def create_error(
        self,
        code: ProviderErrorCode,
        message: str,
        recoverable: bool = False,
        suggestion: Optional[str] = None,
    ) -> ProviderError:
        return ProviderError(
            code=code,
            message=message,
            recoverable=recoverable,
            suggestion=suggestion,
            provider=self.get_name(),
        )

    async def execute_query(self, options: ExecuteOptions) -> AsyncIterator[ProviderMessage]:
        """
        Run the CLI and yield normalized messages.

        An abort ends the sequence quietly. Process failures are raised as
        ProviderError after classification by map_error.
        """
        self.ensure_cli_detected()
        validate_bare_model_id(options.model, self.get_name())

        if not self.cli_path:
            raise self.create_error(
                ProviderErrorCode.NOT_INSTALLED,
                f"{self.display_name} CLI is not installed",
                True,
                self.get_install_instructions(),
            )

        prompt_text = self.extract_prompt_text(options)
        cli_args = self.build_cli_args(options)
        stdin_data = None
        if self.prompt_via_stdin:
            stdin_data = prompt_text
        else:
            cli_args.append(prompt_text)

        subprocess_config = self.build_subprocess_config(options, cli_args, stdin_data)
        session_id: Optional[str] = None

        _logger.debug("%s.execute_query called with model: %r", type(self).__name__, options.model)

        try:
            async for raw_event in spawn_jsonl_process(subprocess_config):
                if not isinstance(raw_event, dict):
                    _logger.debug("Ignoring non-object %s event: %r", self.display_name, raw_event)
                    continue

                announced = self.extract_session_id(raw_event)
                if announced:
                    session_id = announced
                    _logger.debug("%s session started: %s", self.display_name, session_id)

                normalized = self.normalize_event(raw_event)
                if normalized is None:
                    continue
                if not normalized.session_id and session_id:
                    normalized.session_id = session_id
                yield normalized
        except ProcessAbortedError:
            _logger.debug("%s query aborted", self.display_name)
            return
        except ProcessTimeoutError as e:
            raise self.create_error(
                ProviderErrorCode.TIMEOUT,
                f"{self.display_name} CLI produced no output for {e.timeout_seconds}s",
                True,
                "The task may be stuck. Try again or split it into smaller steps.",
            ) from e
        except ProcessExitError as e:
            info = self.map_error(e.stderr or str(e), e.exit_code)
            _logger.error(
                "%s CLI failed (exit=%s): %s", self.display_name, e.exit_code, info.code.value
            )
            raise ProviderError.from_info(info, provider=self.get_name()) from e

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def map_error(self, stderr: str, exit_code: Optional[int]) -> CliErrorInfo:
        """
        Classify stderr text with case-insensitive substring heuristics.

        Rules are checked in a fixed order so identical input always yields
        the same classification.
        """
        lower = (stderr or "").lower()
        name = self.display_name

        if exit_code == EXIT_COMMAND_NOT_FOUND or contains_any(
            lower, ("command not found", "enoent", "no such file or directory")
        ):
            return CliErrorInfo(
                code=ProviderErrorCode.NOT_INSTALLED,
                message=f"{name} CLI could not be started",
                recoverable=True,
                suggestion=self.get_install_instructions(),
            )

        if contains_any(lower, (
            "not authenticated", "please log in", "unauthorized", "login required",
            "invalid api key", "authentication failed", "401",
        )):
            return CliErrorInfo(
                code=ProviderErrorCode.NOT_AUTHENTICATED,
                message=f"{name} CLI is not authenticated",
                recoverable=True,
                suggestion=f"Log in with the {name} CLI or set {self.api_key_env_var or 'an API key'}",
            )

        if contains_any(lower, ("rate limit", "too many requests", "429", "quota exceeded")):
            return CliErrorInfo(
                code=ProviderErrorCode.RATE_LIMITED,
                message=f"{name} API rate limit exceeded",
                recoverable=True,
                suggestion="Wait a few minutes and try again",
            )

        if contains_any(lower, (
            "model not available", "invalid model", "unknown model", "model not found",
        )) or ("not found" in lower and "404" in lower):
            return CliErrorInfo(
                code=ProviderErrorCode.MODEL_UNAVAILABLE,
                message="Requested model is not available",
                recoverable=True,
                suggestion="Select a different model",
            )

        if contains_any(lower, ("timed out", "timeout")):
            return CliErrorInfo(
                code=ProviderErrorCode.TIMEOUT,
                message=f"{name} request timed out",
                recoverable=True,
                suggestion="Try again; the service may be under load",
            )

        if contains_any(lower, (
            "network", "connection", "econnrefused", "enotfound", "econnreset",
        )):
            return CliErrorInfo(
                code=ProviderErrorCode.NETWORK_ERROR,
                message="Network connection error",
                recoverable=True,
                suggestion="Check your internet connection and try again",
            )

        if exit_code == EXIT_SIGKILL or contains_any(
            lower, ("killed", "sigterm", "sigkill", "segmentation fault")
        ):
            return CliErrorInfo(
                code=ProviderErrorCode.PROCESS_CRASHED,
                message=f"{name} CLI process was terminated",
                recoverable=True,
                suggestion="The process may have run out of memory. Try a simpler task.",
            )

        return CliErrorInfo(
            code=ProviderErrorCode.UNKNOWN,
            message=stderr or f"{name} CLI exited with code {exit_code}",
            recoverable=False,
        )
