"""
Auto-Mode Exceptions
====================

Exceptions raised by the orchestration core at its call sites.

Provider failures are not here: they are classified into ProviderError
(automode.providers.errors) at the provider boundary, and subprocess
failures stay in automode.spawner.
"""

from __future__ import annotations


class AutoModeError(Exception):
    """Base class for orchestration-core errors."""


class AutoModeAlreadyRunningError(AutoModeError):
    """Raised when start_auto_loop is called while a loop is active."""

    def __init__(self, project_path: str | None = None):
        self.project_path = project_path
        message = "Auto mode is already running"
        if project_path:
            message = f"Auto mode is already running for {project_path}"
        super().__init__(message)


class FeatureAlreadyRunningError(AutoModeError):
    """Raised when a feature already has a running execution."""

    def __init__(self, feature_id: str):
        self.feature_id = feature_id
        super().__init__(f"Feature {feature_id} is already running")


class FeatureNotFoundError(AutoModeError):
    """Raised when a feature id does not exist in the project's store."""

    def __init__(self, feature_id: str, project_path: str | None = None):
        self.feature_id = feature_id
        self.project_path = project_path
        super().__init__(f"Feature {feature_id} not found")
