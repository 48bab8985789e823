"""
Auto-Mode Orchestration Core
============================

Schedules kanban features onto AI coding-agent CLIs and reports progress
over an in-process event bus.
"""

from automode.auto_mode_service import AutoModeService, RunningFeature
from automode.event_bus import EventBus
from automode.exceptions import (
    AutoModeAlreadyRunningError,
    AutoModeError,
    FeatureAlreadyRunningError,
    FeatureNotFoundError,
)
from automode.feature_store import FeatureStore

__all__ = [
    "AutoModeAlreadyRunningError",
    "AutoModeError",
    "AutoModeService",
    "EventBus",
    "FeatureAlreadyRunningError",
    "FeatureNotFoundError",
    "FeatureStore",
    "RunningFeature",
]
