"""
Pydantic Schemas Package
========================

Request/response schemas for the auto-mode API.
"""

from .automode import (
    AutoModeActionResponse,
    AutoModeStatusResponse,
    FeatureCreate,
    FeatureListResponse,
    FeatureResponse,
    FeatureUpdate,
    ProviderListResponse,
    ProviderStatusResponse,
    RunFeatureRequest,
    StartAutoModeRequest,
    StopAutoModeResponse,
    StopFeatureRequest,
)

__all__ = [
    "AutoModeActionResponse",
    "AutoModeStatusResponse",
    "FeatureCreate",
    "FeatureListResponse",
    "FeatureResponse",
    "FeatureUpdate",
    "ProviderListResponse",
    "ProviderStatusResponse",
    "RunFeatureRequest",
    "StartAutoModeRequest",
    "StopAutoModeResponse",
    "StopFeatureRequest",
]
