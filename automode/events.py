"""
Auto-Mode Events
================

Channel name, event type constants and payload builders for everything the
scheduler publishes on the EventBus.

Every auto-mode event is emitted on AUTO_MODE_CHANNEL with a payload whose
"type" key is one of the constants below. Per feature the order is:

    auto_mode_feature_start
    -> auto_mode_phase / auto_mode_progress / auto_mode_tool / pipeline_* ...
    -> exactly one of auto_mode_feature_complete, auto_mode_error
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

AUTO_MODE_CHANNEL = "auto-mode:event"

# ===== Loop lifecycle =====
AUTO_MODE_STARTED = "auto_mode_started"
AUTO_MODE_STOPPED = "auto_mode_stopped"
AUTO_MODE_IDLE = "auto_mode_idle"
AUTO_MODE_RESUMING_FEATURES = "auto_mode_resuming_features"

# ===== Per-feature lifecycle =====
AUTO_MODE_FEATURE_START = "auto_mode_feature_start"
AUTO_MODE_PHASE = "auto_mode_phase"
AUTO_MODE_PROGRESS = "auto_mode_progress"
AUTO_MODE_TOOL = "auto_mode_tool"
AUTO_MODE_PHASE_COMPLETE = "auto_mode_phase_complete"
AUTO_MODE_FEATURE_COMPLETE = "auto_mode_feature_complete"
AUTO_MODE_ERROR = "auto_mode_error"

# ===== Pipeline =====
PIPELINE_STEP_STARTED = "pipeline_step_started"
PIPELINE_STEP_COMPLETE = "pipeline_step_complete"

TERMINAL_FEATURE_EVENTS = frozenset({AUTO_MODE_FEATURE_COMPLETE, AUTO_MODE_ERROR})

# errorType used when a feature was force-stopped
ERROR_TYPE_ABORT = "abort"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _event(event_type: str, **fields: Any) -> dict[str, Any]:
    payload = {"type": event_type, "timestamp": _timestamp()}
    payload.update({k: v for k, v in fields.items() if v is not None})
    return payload


def auto_mode_started(project_path: str, max_concurrency: int) -> dict[str, Any]:
    return _event(
        AUTO_MODE_STARTED,
        projectPath=project_path,
        maxConcurrency=max_concurrency,
        message=f"Auto mode started with max {max_concurrency} concurrent features",
    )


def auto_mode_stopped(project_path: Optional[str], running_count: int) -> dict[str, Any]:
    return _event(
        AUTO_MODE_STOPPED,
        projectPath=project_path,
        runningCount=running_count,
        message="Auto mode stopped",
    )


def auto_mode_idle(project_path: str) -> dict[str, Any]:
    return _event(
        AUTO_MODE_IDLE,
        projectPath=project_path,
        message="No runnable features remaining",
    )


def resuming_features(project_path: str, feature_ids: list[str]) -> dict[str, Any]:
    return _event(
        AUTO_MODE_RESUMING_FEATURES,
        projectPath=project_path,
        featureIds=feature_ids,
        message=f"Resuming {len(feature_ids)} interrupted feature(s)",
    )


def feature_start(
    project_path: str, feature_id: str, title: Optional[str], is_auto_mode: bool, model: Optional[str]
) -> dict[str, Any]:
    return _event(
        AUTO_MODE_FEATURE_START,
        projectPath=project_path,
        featureId=feature_id,
        isAutoMode=is_auto_mode,
        model=model,
        feature={"id": feature_id, "title": title},
    )


def phase(project_path: str, feature_id: str, phase_name: str, message: str) -> dict[str, Any]:
    return _event(
        AUTO_MODE_PHASE,
        projectPath=project_path,
        featureId=feature_id,
        phase=phase_name,
        message=message,
    )


def phase_complete(project_path: str, feature_id: str, phase_name: str) -> dict[str, Any]:
    return _event(
        AUTO_MODE_PHASE_COMPLETE,
        projectPath=project_path,
        featureId=feature_id,
        phase=phase_name,
    )


def progress(project_path: str, feature_id: str, content: str) -> dict[str, Any]:
    return _event(
        AUTO_MODE_PROGRESS,
        projectPath=project_path,
        featureId=feature_id,
        content=content,
    )


def tool(project_path: str, feature_id: str, tool_name: str, tool_input: Any) -> dict[str, Any]:
    return _event(
        AUTO_MODE_TOOL,
        projectPath=project_path,
        featureId=feature_id,
        tool=tool_name,
        input=tool_input,
    )


def feature_complete(
    project_path: str, feature_id: str, passes: bool, message: str, is_auto_mode: bool
) -> dict[str, Any]:
    return _event(
        AUTO_MODE_FEATURE_COMPLETE,
        projectPath=project_path,
        featureId=feature_id,
        passes=passes,
        message=message,
        isAutoMode=is_auto_mode,
    )


def error(
    project_path: str,
    feature_id: Optional[str],
    message: str,
    error_type: str,
    recoverable: bool = False,
    suggestion: Optional[str] = None,
) -> dict[str, Any]:
    return _event(
        AUTO_MODE_ERROR,
        projectPath=project_path,
        featureId=feature_id,
        error=message,
        errorType=error_type,
        recoverable=recoverable,
        suggestion=suggestion,
    )


def pipeline_step_started(
    project_path: str, feature_id: str, step_id: str, step_name: str, index: int, total: int
) -> dict[str, Any]:
    return _event(
        PIPELINE_STEP_STARTED,
        projectPath=project_path,
        featureId=feature_id,
        stepId=step_id,
        stepName=step_name,
        stepIndex=index,
        totalSteps=total,
    )


def pipeline_step_complete(
    project_path: str, feature_id: str, step_id: str, step_name: str, index: int, total: int
) -> dict[str, Any]:
    return _event(
        PIPELINE_STEP_COMPLETE,
        projectPath=project_path,
        featureId=feature_id,
        stepId=step_id,
        stepName=step_name,
        stepIndex=index,
        totalSteps=total,
    )
