"""
Auto-Mode Pydantic Schemas
==========================

Request/Response schemas for the auto-mode, feature and provider endpoints.

JSON bodies use camelCase (projectPath, maxConcurrency, ...) to match the
board client; Python attributes stay snake_case. Both spellings are accepted
on input.

Mirrors the SQLAlchemy model in automode/database.py
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from automode.config import MAX_CONCURRENCY_LIMIT


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Auto-Mode Schemas
# =============================================================================

class StartAutoModeRequest(CamelModel):
    """Request schema for starting the auto loop."""

    project_path: str = Field(..., min_length=1, description="Absolute path of the project")
    max_concurrency: int | None = Field(
        default=None,
        ge=1,
        le=MAX_CONCURRENCY_LIMIT,
        description="Features run in parallel (defaults to AUTOMODE_MAX_CONCURRENCY)"
    )


class StopFeatureRequest(CamelModel):
    feature_id: str = Field(..., min_length=1)


class RunFeatureRequest(CamelModel):
    """Request schema for a one-off (manual) feature run."""

    project_path: str = Field(..., min_length=1)
    feature_id: str = Field(..., min_length=1)


class AutoModeActionResponse(CamelModel):
    success: bool
    message: str | None = None


class StopAutoModeResponse(CamelModel):
    success: bool
    running_features: int = Field(..., description="Features still draining after the stop")


class AutoModeStatusResponse(CamelModel):
    is_running: bool
    running_features: list[str]
    running_count: int
    project_path: str | None = None
    max_concurrency: int | None = None


# =============================================================================
# Feature Schemas
# =============================================================================

class FeatureCreate(CamelModel):
    """Request schema for creating a feature."""

    id: str | None = Field(default=None, max_length=64, description="Generated when omitted")
    title: str | None = Field(default=None, max_length=255)
    description: str = Field(default="")
    category: str | None = Field(default=None, max_length=100)
    status: str | None = Field(default=None, max_length=64, description="Defaults to backlog")
    priority: int | None = Field(default=None, ge=0)
    dependencies: list[str] | None = None
    branch_name: str | None = Field(default=None, max_length=255)
    skip_tests: bool = False
    model: str | None = Field(default=None, max_length=100)


class FeatureUpdate(CamelModel):
    """
    Request schema for a partial feature update.

    Only fields present in the request body are written.
    """

    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    status: str | None = Field(default=None, max_length=64)
    priority: int | None = Field(default=None, ge=0)
    dependencies: list[str] | None = None
    branch_name: str | None = Field(default=None, max_length=255)
    skip_tests: bool | None = None
    model: str | None = Field(default=None, max_length=100)


class FeatureResponse(CamelModel):
    id: str
    title: str | None = None
    description: str = ""
    category: str | None = None
    status: str
    priority: int
    dependencies: list[str] = Field(default_factory=list)
    branch_name: str | None = None
    skip_tests: bool = False
    model: str | None = None
    error: str | None = None
    error_code: str | None = None
    summary: str | None = None
    session_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class FeatureListResponse(CamelModel):
    features: list[FeatureResponse]
    total: int


# =============================================================================
# Provider Schemas
# =============================================================================

class ProviderStatusResponse(CamelModel):
    """Installation and authentication state of one provider CLI."""

    name: str
    installed: bool
    version: str | None = None
    path: str | None = None
    authenticated: bool = False
    auth_method: str = "none"
    has_api_key: bool = False
    disconnected: bool = False
    error: str | None = None
    install_instructions: str | None = None
    models: list[dict[str, Any]] = Field(default_factory=list)


class ProviderListResponse(CamelModel):
    providers: list[ProviderStatusResponse]
