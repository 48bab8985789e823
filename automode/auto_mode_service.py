"""
Auto-Mode Service
=================

The scheduler and feature state machine.

One auto loop per service instance. Each tick the loop:
1. loads the project's features
2. picks ready ones (schedulable status, dependencies done, not running,
   not given up on during this loop)
3. registers up to max_concurrency entries in running_features and starts
   one task per entry
4. sleeps until a feature finishes (wake event) or the poll interval elapses

Registration is synchronous: the membership check and the insertion into
running_features happen with no await in between, so a feature can never
be started twice, whether by the loop or by a manual run.

Feature lifecycle:

    backlog --start--> in_progress --success--> verified | waiting_approval
                            +--pipeline--> pipeline_<step> --> ...
                            +--failure/abort--> backlog

Per feature the emitted events are: auto_mode_feature_start, then phase,
progress, tool and pipeline events, then exactly one of
auto_mode_feature_complete or auto_mode_error.

Stopping the loop lets in-flight features drain. stop_feature() is the
forced path: it aborts that feature's provider subprocess, and the running
loop does not pick that feature up again until the loop is restarted.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from automode import events as mode_events
from automode.config import MAX_CONCURRENCY_LIMIT, AutoModeSettings, get_settings
from automode.database import (
    AUTOMAKER_DIR,
    PIPELINE_STATUS_PREFIX,
    SCHEDULABLE_STATUSES,
    STATUS_BACKLOG,
    STATUS_IN_PROGRESS,
    STATUS_VERIFIED,
    STATUS_WAITING_APPROVAL,
)
from automode.dependency_resolver import get_ready_features
from automode.event_bus import EventBus
from automode.exceptions import (
    AutoModeAlreadyRunningError,
    FeatureAlreadyRunningError,
    FeatureNotFoundError,
)
from automode.feature_store import FeatureStore
from automode.prompt_builder import build_feature_prompt, build_pipeline_step_prompt, extract_summary
from automode.providers.base import BaseProvider, CliProvider
from automode.providers.errors import ProviderError, ProviderErrorCode
from automode.providers.factory import ProviderFactory
from automode.providers.models import strip_provider_prefix
from automode.providers.types import ExecuteOptions
from automode.secure_fs import PathNotAllowedError, SecureFS, get_secure_fs
from automode.spawner import ProcessAbortedError
from automode.worktree import resolve_working_directory

_logger = logging.getLogger(__name__)

# A feature that failed this many times is not rescheduled during the same loop
MAX_FEATURE_RETRIES = 3

# Seconds shutdown() waits for aborted features to settle
SHUTDOWN_GRACE_SECONDS = 10.0

PIPELINE_CONFIG_FILENAME = "pipeline.json"

ERROR_CODE_PATH_NOT_ALLOWED = "path_not_allowed"

PHASE_IMPLEMENTATION = "implementation"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# State
# =============================================================================

@dataclass
class RunningFeature:
    """
    One in-flight feature execution.

    Attributes:
        feature_id: Feature being executed
        project_path: Project the feature belongs to
        is_auto_mode: True when the auto loop started it
        abort_event: Set to force-stop the provider subprocess
        task: Task running the execution
        provider: Provider name once resolved
        model: Model id requested for the run
        session_id: Provider session id once announced
    """
    feature_id: str
    project_path: str
    is_auto_mode: bool
    abort_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    started_at: datetime = field(default_factory=_utc_now)
    provider: Optional[str] = None
    model: Optional[str] = None
    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "featureId": self.feature_id,
            "projectPath": self.project_path,
            "isAutoMode": self.is_auto_mode,
            "startedAt": self.started_at.isoformat(),
            "provider": self.provider,
            "model": self.model,
        }


@dataclass
class _AutoLoopState:
    project_path: str
    max_concurrency: int
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    stopping: bool = False
    idle_emitted: bool = False
    failure_counts: dict[str, int] = field(default_factory=dict)
    skipped_ids: set[str] = field(default_factory=set)


@dataclass
class _FeatureFailure:
    error_code: str
    message: str
    recoverable: bool = False
    suggestion: Optional[str] = None


@dataclass
class _PhaseResult:
    texts: list[str] = field(default_factory=list)
    session_id: Optional[str] = None


# =============================================================================
# Service
# =============================================================================

class AutoModeService:
    """Schedules features onto providers and tracks what is running."""

    def __init__(
        self,
        events: EventBus,
        feature_store: Optional[FeatureStore] = None,
        provider_factory: Optional[ProviderFactory] = None,
        settings: Optional[AutoModeSettings] = None,
        secure_fs: Optional[SecureFS] = None,
    ):
        self.events = events
        self.settings = settings or get_settings()
        self.secure_fs = secure_fs or get_secure_fs()
        self.feature_store = feature_store or FeatureStore()
        self.provider_factory = provider_factory or ProviderFactory(secure_fs=self.secure_fs)
        self.running_features: dict[str, RunningFeature] = {}
        self._loop_state: Optional[_AutoLoopState] = None

    def _emit(self, payload: dict[str, Any]) -> None:
        self.events.emit(mode_events.AUTO_MODE_CHANNEL, payload)

    @property
    def is_running(self) -> bool:
        return self._loop_state is not None

    # ------------------------------------------------------------------
    # Auto loop
    # ------------------------------------------------------------------

    async def start_auto_loop(self, project_path: str, max_concurrency: Optional[int] = None) -> None:
        """
        Start the auto loop for a project and return once it is running.

        Raises:
            AutoModeAlreadyRunningError: a loop is already active
            ValueError: max_concurrency < 1
            PathNotAllowedError: project_path is outside the allowed root
        """
        if self._loop_state is not None:
            raise AutoModeAlreadyRunningError(self._loop_state.project_path)
        if max_concurrency is None:
            max_concurrency = self.settings.max_concurrency
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        if max_concurrency > MAX_CONCURRENCY_LIMIT:
            _logger.warning(
                "max_concurrency %d exceeds limit, clamping to %d", max_concurrency, MAX_CONCURRENCY_LIMIT
            )
            max_concurrency = MAX_CONCURRENCY_LIMIT
        self.secure_fs.validate_path(project_path)

        state = _AutoLoopState(project_path=project_path, max_concurrency=max_concurrency)
        self._loop_state = state
        _logger.info("Auto mode started for %s (max_concurrency=%d)", project_path, max_concurrency)
        self._emit(mode_events.auto_mode_started(project_path, max_concurrency))
        state.task = asyncio.create_task(self._run_auto_loop(state))

    async def stop_auto_loop(self) -> int:
        """
        Stop scheduling new features.

        In-flight features keep running to completion.

        Returns:
            Number of features still running
        """
        state = self._loop_state
        if state is None:
            return 0

        state.stopping = True
        state.wake.set()
        self._loop_state = None
        if state.task is not None and not state.task.done():
            state.task.cancel()
            try:
                await state.task
            except asyncio.CancelledError:
                pass

        running_count = len(self.running_features)
        _logger.info("Auto mode stopped for %s, %d feature(s) still running", state.project_path, running_count)
        self._emit(mode_events.auto_mode_stopped(state.project_path, running_count))
        return running_count

    async def _run_auto_loop(self, state: _AutoLoopState) -> None:
        try:
            await self._recover_interrupted_features(state.project_path)
        except PathNotAllowedError as e:
            _logger.error("Auto loop cannot access %s: %s", state.project_path, e)
            self._emit(mode_events.error(
                state.project_path, None, str(e), ERROR_CODE_PATH_NOT_ALLOWED
            ))
            return
        except Exception:
            _logger.exception("Failed to recover interrupted features for %s", state.project_path)

        while not state.stopping:
            try:
                await self._schedule_tick(state)
            except PathNotAllowedError as e:
                _logger.error("Auto loop cannot access %s: %s", state.project_path, e)
                self._emit(mode_events.error(
                    state.project_path, None, str(e), ERROR_CODE_PATH_NOT_ALLOWED
                ))
                return
            except Exception:
                _logger.exception("Auto loop tick failed for %s", state.project_path)

            if state.stopping:
                break
            try:
                await asyncio.wait_for(state.wake.wait(), timeout=self.settings.poll_interval)
            except asyncio.TimeoutError:
                pass
            state.wake.clear()

    async def _schedule_tick(self, state: _AutoLoopState) -> None:
        features = await self.feature_store.get_all(state.project_path)
        if state.stopping:
            return

        excluded = set(self.running_features) | state.skipped_ids
        ready = get_ready_features(features, exclude_ids=excluded)
        running_here = sum(
            1 for entry in self.running_features.values() if entry.project_path == state.project_path
        )

        if not ready:
            if running_here == 0 and not state.idle_emitted:
                state.idle_emitted = True
                _logger.info("Auto mode idle for %s", state.project_path)
                self._emit(mode_events.auto_mode_idle(state.project_path))
            return
        state.idle_emitted = False

        slots = state.max_concurrency - running_here
        for feature in ready[:max(slots, 0)]:
            feature_id = str(feature["id"])
            if feature_id in self.running_features:
                continue
            entry = self._register(state.project_path, feature_id, is_auto_mode=True)
            entry.task = asyncio.create_task(self._run_feature(entry))

    async def _recover_interrupted_features(self, project_path: str) -> None:
        """Reset features left in progress by a previous process back to backlog."""
        features = await self.feature_store.get_all(project_path)
        interrupted = [
            str(f["id"]) for f in features
            if (f.get("status") == STATUS_IN_PROGRESS
                or str(f.get("status") or "").startswith(PIPELINE_STATUS_PREFIX))
            and str(f["id"]) not in self.running_features
        ]
        if not interrupted:
            return

        for feature_id in interrupted:
            await self.feature_store.update(project_path, feature_id, {"status": STATUS_BACKLOG})
        _logger.info("Resuming %d interrupted feature(s) in %s", len(interrupted), project_path)
        self._emit(mode_events.resuming_features(project_path, interrupted))

    # ------------------------------------------------------------------
    # Running-entry bookkeeping
    # ------------------------------------------------------------------

    def _register(self, project_path: str, feature_id: str, is_auto_mode: bool) -> RunningFeature:
        if feature_id in self.running_features:
            raise FeatureAlreadyRunningError(feature_id)
        entry = RunningFeature(
            feature_id=feature_id, project_path=project_path, is_auto_mode=is_auto_mode
        )
        self.running_features[feature_id] = entry
        return entry

    def _release(self, entry: RunningFeature) -> None:
        if self.running_features.get(entry.feature_id) is entry:
            del self.running_features[entry.feature_id]
            if self._loop_state is not None:
                self._loop_state.wake.set()

    def _hold_back(self, entry: RunningFeature) -> None:
        """Keep a force-stopped feature out of the active loop until it restarts."""
        state = self._loop_state
        if state is None or state.project_path != entry.project_path:
            return
        state.skipped_ids.add(entry.feature_id)
        _logger.info("Feature %s was stopped, not rescheduling during this loop", entry.feature_id)

    def _record_failure(self, entry: RunningFeature, failure: _FeatureFailure) -> None:
        state = self._loop_state
        if state is None or not entry.is_auto_mode or state.project_path != entry.project_path:
            return
        count = state.failure_counts.get(entry.feature_id, 0) + 1
        state.failure_counts[entry.feature_id] = count
        if not failure.recoverable or count >= MAX_FEATURE_RETRIES:
            state.skipped_ids.add(entry.feature_id)
            _logger.warning(
                "Feature %s failed %d time(s) (%s), not retrying during this loop",
                entry.feature_id, count, failure.error_code,
            )

    # ------------------------------------------------------------------
    # Feature execution
    # ------------------------------------------------------------------

    def start_feature(self, project_path: str, feature_id: str, is_auto_mode: bool = False) -> RunningFeature:
        """
        Register a feature run and launch it as a task without waiting.

        Must be called from a running event loop. The returned entry's task
        raises FeatureNotFoundError for manual runs of unknown features.

        Raises:
            FeatureAlreadyRunningError: the feature is already running
            PathNotAllowedError: project_path is outside the allowed root
        """
        self.secure_fs.validate_path(project_path)
        entry = self._register(project_path, feature_id, is_auto_mode)
        entry.task = asyncio.ensure_future(self._run_feature(entry))
        return entry

    async def execute_feature(self, project_path: str, feature_id: str, is_auto_mode: bool = False) -> None:
        """
        Run one feature to a terminal state.

        Raises:
            FeatureAlreadyRunningError: the feature is already running
            FeatureNotFoundError: the feature does not exist
            PathNotAllowedError: project_path is outside the allowed root
        """
        entry = self.start_feature(project_path, feature_id, is_auto_mode)
        await entry.task

    async def _run_feature(self, entry: RunningFeature) -> None:
        try:
            feature = await self.feature_store.get(entry.project_path, entry.feature_id)
            if feature is None:
                if entry.is_auto_mode:
                    _logger.warning("Feature %s disappeared before it could start", entry.feature_id)
                    return
                raise FeatureNotFoundError(entry.feature_id, entry.project_path)
            if entry.is_auto_mode and feature.get("status") not in SCHEDULABLE_STATUSES:
                _logger.debug(
                    "Feature %s is no longer schedulable (status=%s)", entry.feature_id, feature.get("status")
                )
                return
            await self._execute(entry, feature)
        except Exception:
            # Auto-mode tasks have no caller to report to
            if not entry.is_auto_mode:
                raise
            _logger.exception("Feature %s could not be run", entry.feature_id)
        finally:
            self._release(entry)

    async def _execute(self, entry: RunningFeature, feature: dict[str, Any]) -> None:
        project_path, feature_id = entry.project_path, entry.feature_id
        entry.model = feature.get("model") or self.settings.default_model

        await self.feature_store.update(project_path, feature_id, {
            "status": STATUS_IN_PROGRESS,
            "started_at": _utc_now(),
            "error": None,
            "error_code": None,
        })
        _logger.info("Starting feature %s with model %s", feature_id, entry.model)
        self._emit(mode_events.feature_start(
            project_path, feature_id, feature.get("title"), entry.is_auto_mode, entry.model
        ))

        try:
            result = await self._run_all_phases(entry, feature)
        except ProcessAbortedError:
            await self._finish_aborted(entry)
        except asyncio.CancelledError:
            await self._finish_aborted(entry)
            raise
        except ProviderError as e:
            await self._finish_failed(entry, _FeatureFailure(
                e.code.value, e.message, e.recoverable, e.suggestion
            ))
        except PathNotAllowedError as e:
            await self._finish_failed(entry, _FeatureFailure(ERROR_CODE_PATH_NOT_ALLOWED, str(e)))
        except Exception as e:
            _logger.exception("Feature %s crashed", feature_id)
            await self._finish_failed(entry, _FeatureFailure(ProviderErrorCode.UNKNOWN.value, str(e)))
        else:
            await self._finish_succeeded(entry, feature, result)

    async def _run_all_phases(self, entry: RunningFeature, feature: dict[str, Any]) -> _PhaseResult:
        project_path, feature_id = entry.project_path, entry.feature_id
        work_dir = await resolve_working_directory(project_path, feature.get("branchName"))
        provider = self.provider_factory.get_provider_for_model(entry.model)
        entry.provider = provider.get_name()

        result = await self._run_provider_phase(
            entry, provider, work_dir, build_feature_prompt(feature), PHASE_IMPLEMENTATION
        )

        steps = await self._load_pipeline_steps(project_path)
        for index, step in enumerate(steps):
            step_id = str(step["id"])
            step_name = step.get("name") or step_id
            await self.feature_store.update(
                project_path, feature_id, {"status": f"{PIPELINE_STATUS_PREFIX}{step_id}"}
            )
            self._emit(mode_events.pipeline_step_started(
                project_path, feature_id, step_id, step_name, index, len(steps)
            ))
            step_result = await self._run_provider_phase(
                entry, provider, work_dir, build_pipeline_step_prompt(feature, step), f"pipeline:{step_id}"
            )
            result.texts.extend(step_result.texts)
            result.session_id = step_result.session_id or result.session_id
            self._emit(mode_events.pipeline_step_complete(
                project_path, feature_id, step_id, step_name, index, len(steps)
            ))

        return result

    async def _run_provider_phase(
        self,
        entry: RunningFeature,
        provider: BaseProvider,
        work_dir: str,
        prompt: str,
        phase_name: str,
    ) -> _PhaseResult:
        project_path, feature_id = entry.project_path, entry.feature_id
        self._emit(mode_events.phase(
            project_path, feature_id, phase_name,
            f"Running {phase_name} with {provider.get_name()}",
        ))

        options = ExecuteOptions(
            prompt=prompt,
            model=strip_provider_prefix(entry.model),
            cwd=work_dir,
            abort_event=entry.abort_event,
            timeout_seconds=self.settings.process_timeout,
        )
        result = _PhaseResult()
        stream_error: Optional[str] = None

        async with aclosing(provider.execute_query(options)) as stream:
            async for message in stream:
                if message.session_id:
                    entry.session_id = message.session_id
                    result.session_id = message.session_id

                if message.type == "assistant":
                    for block in message.blocks:
                        if block.type == "text" and block.text:
                            result.texts.append(block.text)
                            self._emit(mode_events.progress(project_path, feature_id, block.text))
                        elif block.type == "tool_use":
                            self._emit(mode_events.tool(
                                project_path, feature_id, block.name or "unknown", block.input
                            ))
                elif message.type == "result":
                    if message.result:
                        result.texts.append(message.result)
                elif message.type == "error" and stream_error is None:
                    stream_error = message.error or "Unknown error"

        if entry.abort_event.is_set():
            raise ProcessAbortedError()
        if stream_error is not None:
            raise self._classify_stream_error(provider, stream_error)

        self._emit(mode_events.phase_complete(project_path, feature_id, phase_name))
        return result

    @staticmethod
    def _classify_stream_error(provider: BaseProvider, message: str) -> ProviderError:
        """Turn an error message from the stream into a typed ProviderError."""
        if isinstance(provider, CliProvider):
            info = provider.map_error(message, None)
            if info.code != ProviderErrorCode.UNKNOWN:
                return ProviderError(
                    info.code, info.message, info.recoverable, info.suggestion, provider.get_name()
                )
        return ProviderError(ProviderErrorCode.UNKNOWN, message, False, None, provider.get_name())

    async def _load_pipeline_steps(self, project_path: str) -> list[dict[str, Any]]:
        path = Path(project_path) / AUTOMAKER_DIR / PIPELINE_CONFIG_FILENAME
        if not await self.secure_fs.exists(path):
            return []
        content = await self.secure_fs.read_text(path)
        try:
            config = json.loads(content)
        except json.JSONDecodeError as e:
            _logger.warning("Ignoring malformed pipeline config %s: %s", path, e)
            return []

        steps = config.get("steps") if isinstance(config, dict) else None
        if not isinstance(steps, list):
            return []
        valid = [s for s in steps if isinstance(s, dict) and s.get("id")]
        return sorted(valid, key=lambda s: s.get("order", 0))

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    async def _finish_succeeded(self, entry: RunningFeature, feature: dict[str, Any], result: _PhaseResult) -> None:
        status = STATUS_WAITING_APPROVAL if feature.get("skipTests") else STATUS_VERIFIED
        title = feature.get("title") or entry.feature_id
        _logger.info("Feature %s completed (%s)", entry.feature_id, status)

        self._release(entry)
        self._emit(mode_events.feature_complete(
            entry.project_path, entry.feature_id, True,
            f"Feature completed: {title}", entry.is_auto_mode,
        ))
        await self.feature_store.update(entry.project_path, entry.feature_id, {
            "status": status,
            "completed_at": _utc_now(),
            "session_id": result.session_id or entry.session_id,
            "summary": extract_summary(result.texts),
            "error": None,
            "error_code": None,
        })

    async def _finish_failed(self, entry: RunningFeature, failure: _FeatureFailure) -> None:
        _logger.error(
            "Feature %s failed [%s]: %s", entry.feature_id, failure.error_code, failure.message
        )
        self._record_failure(entry, failure)

        self._release(entry)
        self._emit(mode_events.error(
            entry.project_path, entry.feature_id, failure.message,
            failure.error_code, failure.recoverable, failure.suggestion,
        ))
        await self.feature_store.update(entry.project_path, entry.feature_id, {
            "status": STATUS_BACKLOG,
            "error": failure.message,
            "error_code": failure.error_code,
            "session_id": entry.session_id,
        })

    async def _finish_aborted(self, entry: RunningFeature) -> None:
        _logger.info("Feature %s stopped", entry.feature_id)

        self._hold_back(entry)
        self._release(entry)
        self._emit(mode_events.error(
            entry.project_path, entry.feature_id, "Feature stopped by user",
            mode_events.ERROR_TYPE_ABORT, True,
        ))
        await self.feature_store.update(entry.project_path, entry.feature_id, {
            "status": STATUS_BACKLOG,
            "session_id": entry.session_id,
        })

    # ------------------------------------------------------------------
    # Control and queries
    # ------------------------------------------------------------------

    async def stop_feature(self, feature_id: str) -> bool:
        """Force-stop one running feature. Returns False if it is not running."""
        entry = self.running_features.get(feature_id)
        if entry is None:
            return False
        _logger.info("Stopping feature %s", feature_id)
        entry.abort_event.set()
        return True

    async def get_running_agents(self) -> list[dict[str, Any]]:
        """Describe running features, enriched with title/description when available."""
        entries = list(self.running_features.values())

        async def describe(entry: RunningFeature) -> dict[str, Any]:
            title = description = None
            try:
                feature = await self.feature_store.get(entry.project_path, entry.feature_id)
                if feature:
                    title = feature.get("title")
                    description = feature.get("description")
            except Exception as e:
                _logger.debug("Could not load feature %s for running agents: %s", entry.feature_id, e)
            return {
                "featureId": entry.feature_id,
                "projectPath": entry.project_path,
                "projectName": Path(entry.project_path).name,
                "isAutoMode": entry.is_auto_mode,
                "title": title,
                "description": description,
            }

        return list(await asyncio.gather(*(describe(entry) for entry in entries)))

    def get_status(self) -> dict[str, Any]:
        state = self._loop_state
        return {
            "isRunning": state is not None,
            "runningFeatures": list(self.running_features),
            "runningCount": len(self.running_features),
            "projectPath": state.project_path if state else None,
            "maxConcurrency": state.max_concurrency if state else None,
        }

    async def shutdown(self, abort_running: bool = True) -> None:
        """Stop the loop and, optionally, force-stop and await every running feature."""
        await self.stop_auto_loop()
        if not abort_running:
            return

        tasks = []
        for entry in list(self.running_features.values()):
            entry.abort_event.set()
            if entry.task is not None:
                tasks.append(entry.task)
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE_SECONDS)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
