"""
Provider Factory
================

Resolves a provider instance from a model id or a provider name.

Routing by model id:
- "gemini-*"   -> gemini
- "cursor-*"   -> cursor
- "codex-*", bare "gpt-*"/"o3*"/"o4*" -> codex
- "opencode-*" -> opencode
- anything else -> claude

New providers are added with register_provider(); callers never branch on
provider names.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from automode.providers.base import BaseProvider
from automode.providers.claude import ClaudeProvider
from automode.providers.codex import CodexProvider
from automode.providers.cursor import CursorProvider
from automode.providers.gemini import GeminiProvider
from automode.providers.models import get_provider_name_for_model
from automode.providers.opencode import OpenCodeProvider
from automode.secure_fs import SecureFS

_logger = logging.getLogger(__name__)

ProviderConstructor = Callable[..., BaseProvider]


class ProviderFactory:
    """
    Registry of provider constructors with per-name instance caching.

    Provider instances cache CLI detection, so one instance per name is
    shared by all callers of the same factory.
    """

    def __init__(self, secure_fs: Optional[SecureFS] = None):
        self._secure_fs = secure_fs
        self._registry: dict[str, ProviderConstructor] = {
            "claude": ClaudeProvider,
            "gemini": GeminiProvider,
            "cursor": CursorProvider,
            "codex": CodexProvider,
            "opencode": OpenCodeProvider,
        }
        self._instances: dict[str, BaseProvider] = {}

    def register_provider(self, name: str, constructor: ProviderConstructor) -> None:
        self._registry[name] = constructor
        self._instances.pop(name, None)

    def get_provider_names(self) -> list[str]:
        return list(self._registry)

    def get_provider_by_name(self, name: str) -> BaseProvider:
        """
        Return the provider registered under name.

        Raises:
            KeyError: no provider is registered under that name
        """
        if name not in self._registry:
            raise KeyError(f"Unknown provider: {name}")
        if name not in self._instances:
            self._instances[name] = self._registry[name](secure_fs=self._secure_fs)
        return self._instances[name]

    def get_provider_for_model(self, model: Optional[str]) -> BaseProvider:
        name = get_provider_name_for_model(model)
        _logger.debug("Model %r routes to provider %s", model, name)
        return self.get_provider_by_name(name)

    def get_all_providers(self) -> list[BaseProvider]:
        return [self.get_provider_by_name(name) for name in self._registry]
