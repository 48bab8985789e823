"""
Provider Error Taxonomy
=======================

Every CLI failure is classified at the provider boundary into one fixed set
of codes, so raw stderr never reaches the UI.

Codes and default recoverability:
- not_installed: CLI binary missing (recoverable: install it)
- not_authenticated: login or API key required (recoverable: re-auth)
- rate_limited: vendor throttling (recoverable: wait)
- model_unavailable: bad or unavailable model id (recoverable: pick another)
- network_error: connectivity (recoverable: retry)
- process_crashed: CLI killed or crashed (recoverable: retry)
- timeout: no output within the configured window (recoverable: retry)
- unknown: nothing matched (not recoverable)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ProviderErrorCode(str, Enum):
    NOT_INSTALLED = "not_installed"
    NOT_AUTHENTICATED = "not_authenticated"
    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    NETWORK_ERROR = "network_error"
    PROCESS_CRASHED = "process_crashed"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CliErrorInfo:
    """Classification result for one stderr/exit-code pair."""
    code: ProviderErrorCode
    message: str
    recoverable: bool
    suggestion: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "suggestion": self.suggestion,
        }


class ProviderError(Exception):
    """
    Typed provider failure.

    Attributes:
        code: ProviderErrorCode
        recoverable: True if the caller may retry or prompt re-auth
        suggestion: Optional human-readable next step
        provider: Name of the provider that raised it
    """

    def __init__(
        self,
        code: ProviderErrorCode,
        message: str,
        recoverable: bool = False,
        suggestion: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.recoverable = recoverable
        self.suggestion = suggestion
        self.provider = provider
        super().__init__(message)

    @classmethod
    def from_info(cls, info: CliErrorInfo, provider: Optional[str] = None) -> "ProviderError":
        return cls(
            code=info.code,
            message=info.message,
            recoverable=info.recoverable,
            suggestion=info.suggestion,
            provider=provider,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "suggestion": self.suggestion,
            "provider": self.provider,
        }


def contains_any(text: str, needles: tuple[str, ...]) -> bool:
    """Case-insensitive substring match; text is expected to be lower-cased."""
    return any(needle in text for needle in needles)
