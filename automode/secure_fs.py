"""
Secure File System Adapter
==========================

All file I/O performed by the orchestration core goes through this adapter so
that ALLOWED_ROOT_DIRECTORY is enforced at the access point, not only at the
HTTP layer.

This module also implements:
- Concurrency limiting (asyncio.Semaphore) to avoid exhausting file descriptors
- Retry with exponential backoff and jitter for EMFILE/ENFILE errors

When no allowed root is configured every path is permitted. The data
directory is always permitted.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

_logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error numbers that indicate file descriptor exhaustion
FILE_DESCRIPTOR_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE})


class PathNotAllowedError(PermissionError):
    """
    Raised when a path resolves outside the permitted root.

    This indicates misconfiguration, not a transient fault, so callers must
    propagate it instead of treating it like a missing file.
    """

    def __init__(self, path: str | os.PathLike, allowed_root: Optional[Path] = None):
        self.path = str(path)
        self.allowed_root = allowed_root
        if allowed_root is not None:
            message = (
                f"Path not allowed: {self.path}. "
                f"Must be within ALLOWED_ROOT_DIRECTORY: {allowed_root}"
            )
        else:
            message = f"Path not allowed: {self.path}"
        super().__init__(message)


@dataclass(frozen=True)
class ThrottleConfig:
    """Throttling settings for file operations."""

    max_concurrency: int = 100
    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


class SecureFS:
    """
    Path-validating async file access.

    Usage:
        fs = SecureFS(allowed_root=Path("/home/me/projects"))
        text = await fs.read_text("/home/me/projects/app/.automaker/pipeline.json")
    """

    def __init__(
        self,
        allowed_root: Optional[Path | str] = None,
        data_dir: Optional[Path | str] = None,
        throttle: ThrottleConfig = ThrottleConfig(),
    ):
        self.allowed_root = Path(allowed_root).resolve() if allowed_root else None
        self.data_dir = Path(data_dir).resolve() if data_dir else None
        self.throttle = throttle
        self._semaphore = asyncio.Semaphore(throttle.max_concurrency)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def is_path_allowed(self, path: str | os.PathLike) -> bool:
        """Check whether a path may be accessed."""
        if self.allowed_root is None:
            return True
        resolved = Path(path).resolve()
        if self.data_dir is not None and _is_within(resolved, self.data_dir):
            return True
        return _is_within(resolved, self.allowed_root)

    def validate_path(self, path: str | os.PathLike) -> Path:
        """Resolve a path, raising PathNotAllowedError if it is outside the root."""
        if not self.is_path_allowed(path):
            raise PathNotAllowedError(path, self.allowed_root)
        return Path(path).resolve()

    # ------------------------------------------------------------------
    # Throttled execution
    # ------------------------------------------------------------------

    def _delay_for(self, attempt: int) -> float:
        exponential = self.throttle.base_delay * (2 ** attempt)
        jitter = random.random() * self.throttle.base_delay
        return min(exponential + jitter, self.throttle.max_delay)

    async def _execute(self, operation: Callable[[], T], name: str) -> T:
        async with self._semaphore:
            attempt = 0
            while True:
                try:
                    return await asyncio.to_thread(operation)
                except OSError as e:
                    if e.errno in FILE_DESCRIPTOR_ERRNOS and attempt < self.throttle.max_retries:
                        delay = self._delay_for(attempt)
                        _logger.warning(
                            "%s: file descriptor error (attempt %d/%d), retrying in %.2fs",
                            name, attempt + 1, self.throttle.max_retries + 1, delay,
                        )
                        attempt += 1
                        await asyncio.sleep(delay)
                        continue
                    raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def read_text(self, path: str | os.PathLike, encoding: str = "utf-8") -> str:
        validated = self.validate_path(path)
        return await self._execute(
            lambda: validated.read_text(encoding=encoding), f"read_text({path})"
        )

    async def write_text(
        self, path: str | os.PathLike, content: str, encoding: str = "utf-8"
    ) -> None:
        validated = self.validate_path(path)
        await self._execute(
            lambda: validated.write_text(content, encoding=encoding), f"write_text({path})"
        )

    async def list_dir(self, path: str | os.PathLike) -> list[str]:
        validated = self.validate_path(path)
        return await self._execute(
            lambda: sorted(entry.name for entry in validated.iterdir()), f"list_dir({path})"
        )

    async def exists(self, path: str | os.PathLike) -> bool:
        validated = self.validate_path(path)
        return await self._execute(validated.exists, f"exists({path})")

    async def mkdir(self, path: str | os.PathLike) -> None:
        validated = self.validate_path(path)
        await self._execute(
            lambda: validated.mkdir(parents=True, exist_ok=True), f"mkdir({path})"
        )

    async def unlink(self, path: str | os.PathLike, missing_ok: bool = True) -> None:
        validated = self.validate_path(path)
        await self._execute(
            lambda: validated.unlink(missing_ok=missing_ok), f"unlink({path})"
        )


# Global adapter instance - configured when the server starts
_secure_fs: Optional[SecureFS] = None


def configure_secure_fs(
    allowed_root: Optional[Path | str] = None,
    data_dir: Optional[Path | str] = None,
) -> SecureFS:
    """Create and install the process-wide adapter."""
    global _secure_fs
    _secure_fs = SecureFS(allowed_root=allowed_root, data_dir=data_dir)
    return _secure_fs


def get_secure_fs() -> SecureFS:
    """Return the process-wide adapter, creating it from settings on first use."""
    global _secure_fs
    if _secure_fs is None:
        from automode.config import get_settings

        settings = get_settings()
        _secure_fs = SecureFS(
            allowed_root=settings.allowed_root_directory,
            data_dir=settings.data_dir,
        )
    return _secure_fs


def reset_secure_fs() -> None:
    """Forget the process-wide adapter (for testing)."""
    global _secure_fs
    _secure_fs = None
