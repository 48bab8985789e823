"""
Providers
=========

One CLI-backed provider per AI vendor, all yielding ProviderMessage.
"""

from automode.providers.base import BaseProvider, CliProvider, CliSpawnConfig
from automode.providers.claude import ClaudeProvider
from automode.providers.codex import CodexProvider
from automode.providers.cursor import CursorProvider
from automode.providers.errors import CliErrorInfo, ProviderError, ProviderErrorCode
from automode.providers.factory import ProviderFactory
from automode.providers.gemini import GeminiProvider
from automode.providers.models import (
    get_provider_name_for_model,
    strip_provider_prefix,
    validate_bare_model_id,
)
from automode.providers.opencode import OpenCodeProvider
from automode.providers.types import (
    AuthStatus,
    ContentBlock,
    ExecuteOptions,
    InstallationStatus,
    ModelDefinition,
    PromptPart,
    ProviderConfig,
    ProviderMessage,
)

__all__ = [
    "AuthStatus",
    "BaseProvider",
    "ClaudeProvider",
    "CliErrorInfo",
    "CliProvider",
    "CliSpawnConfig",
    "CodexProvider",
    "ContentBlock",
    "CursorProvider",
    "ExecuteOptions",
    "GeminiProvider",
    "InstallationStatus",
    "ModelDefinition",
    "OpenCodeProvider",
    "PromptPart",
    "ProviderConfig",
    "ProviderError",
    "ProviderErrorCode",
    "ProviderFactory",
    "ProviderMessage",
    "get_provider_name_for_model",
    "strip_provider_prefix",
    "validate_bare_model_id",
]
