"""
Model Identifiers
=================

Provider routing prefixes and model catalogues.

Model ids selected in the UI carry a routing prefix that picks the provider
("gemini-2.5-flash", "cursor-auto", "codex-gpt-5", "opencode-anthropic/claude").
The scheduler strips the prefix before handing the id to a provider; each
provider then decides what its CLI actually expects.
"""

from __future__ import annotations

from typing import Any, Optional

# Prefix -> provider name. Claude is the fallback for unprefixed ids.
PROVIDER_PREFIXES: dict[str, str] = {
    "cursor-": "cursor",
    "codex-": "codex",
    "opencode-": "opencode",
    "gemini-": "gemini",
}

DEFAULT_PROVIDER = "claude"

# Bare OpenAI model ids route to Codex without a prefix
CODEX_BARE_MODEL_PREFIXES = ("gpt-", "o3", "o4")

CLAUDE_MODEL_ALIASES: dict[str, str] = {
    "haiku": "claude-haiku-4-5",
    "sonnet": "claude-sonnet-4-5",
    "opus": "claude-opus-4-1",
}

GEMINI_MODEL_MAP: dict[str, dict[str, Any]] = {
    "gemini-3-pro-preview": {
        "label": "Gemini 3 Pro Preview",
        "description": "Most advanced Gemini model with deep reasoning capabilities.",
        "supports_vision": True,
        "supports_thinking": True,
        "context_window": 1000000,
    },
    "gemini-3-flash-preview": {
        "label": "Gemini 3 Flash Preview",
        "description": "Fast Gemini 3 model for quick tasks.",
        "supports_vision": True,
        "supports_thinking": True,
        "context_window": 1000000,
    },
    "gemini-2.5-pro": {
        "label": "Gemini 2.5 Pro",
        "description": "Advanced model with strong reasoning and 1M context.",
        "supports_vision": True,
        "supports_thinking": True,
        "context_window": 1000000,
    },
    "gemini-2.5-flash": {
        "label": "Gemini 2.5 Flash",
        "description": "Balanced speed and capability for most tasks.",
        "supports_vision": True,
        "supports_thinking": True,
        "context_window": 1000000,
    },
    "gemini-2.5-flash-lite": {
        "label": "Gemini 2.5 Flash Lite",
        "description": "Fastest Gemini model for simple tasks.",
        "supports_vision": True,
        "supports_thinking": False,
        "context_window": 1000000,
    },
}

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


def get_provider_name_for_model(model: Optional[str]) -> str:
    """Return the provider name a (possibly prefixed) model id routes to."""
    if not model:
        return DEFAULT_PROVIDER
    lowered = model.lower()
    for prefix, provider in PROVIDER_PREFIXES.items():
        if lowered.startswith(prefix):
            return provider
    if lowered.startswith(CODEX_BARE_MODEL_PREFIXES):
        return "codex"
    return DEFAULT_PROVIDER


def strip_provider_prefix(model: Optional[str]) -> Optional[str]:
    """
    Remove the routing prefix from a model id.

    "gemini-2.5-flash" -> "2.5-flash", "cursor-auto" -> "auto",
    "sonnet" -> "sonnet" (Claude ids have no routing prefix).
    """
    if not model:
        return model
    lowered = model.lower()
    for prefix in PROVIDER_PREFIXES:
        if lowered.startswith(prefix):
            return model[len(prefix):]
    return model


def validate_bare_model_id(model: Optional[str], provider_name: str) -> None:
    """
    Reject model ids that still carry a routing prefix.

    Gemini is exempt for its own prefix because "gemini-" is part of Google's
    model name and may legitimately reach the provider.

    Raises:
        ValueError: the id still has a routing prefix
    """
    if not model:
        return
    lowered = model.lower()
    for prefix, owner in PROVIDER_PREFIXES.items():
        if owner == "gemini" and provider_name == "gemini":
            continue
        if lowered.startswith(prefix):
            raise ValueError(
                f"[{provider_name}] Model id '{model}' still has provider prefix '{prefix}'. "
                "Strip the prefix before calling the provider."
            )
