"""
Request Dependencies
====================

FastAPI dependency getters for the long-lived objects built in the app
lifespan (see server/main.py). Tests override these through
app.dependency_overrides or by setting app.state directly.
"""

from fastapi import Request

from automode.auto_mode_service import AutoModeService
from automode.config import AutoModeSettings
from automode.event_bus import EventBus
from automode.feature_store import FeatureStore
from automode.providers.factory import ProviderFactory
from automode.secure_fs import SecureFS


def get_auto_mode_service(request: Request) -> AutoModeService:
    return request.app.state.auto_mode_service


def get_feature_store(request: Request) -> FeatureStore:
    return request.app.state.feature_store


def get_provider_factory(request: Request) -> ProviderFactory:
    return request.app.state.provider_factory


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_secure_fs_dep(request: Request) -> SecureFS:
    return request.app.state.secure_fs


def get_settings_dep(request: Request) -> AutoModeSettings:
    return request.app.state.settings
