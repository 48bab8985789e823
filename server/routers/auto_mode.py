"""
Auto Mode Router
================

API endpoints for controlling the auto loop and individual feature runs.

Implements:
- POST /api/auto-mode/start - Start the auto loop for a project
- POST /api/auto-mode/stop - Stop scheduling; in-flight features drain
- POST /api/auto-mode/stop-feature - Force-stop one running feature
- POST /api/auto-mode/run-feature - Run one feature in the background
- GET /api/auto-mode/status - Loop state and running feature ids
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from automode.auto_mode_service import AutoModeService
from automode.exceptions import FeatureNotFoundError
from automode.feature_store import FeatureStore

from ..dependencies import get_auto_mode_service, get_feature_store
from ..exceptions import BadRequestError, NotFoundError
from ..schemas import (
    AutoModeActionResponse,
    AutoModeStatusResponse,
    RunFeatureRequest,
    StartAutoModeRequest,
    StopAutoModeResponse,
    StopFeatureRequest,
)

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auto-mode", tags=["auto-mode"])


def _log_background_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.error("Background feature run failed: %s", exc)


@router.post("/start", response_model=AutoModeActionResponse)
async def start_auto_mode(
    request: StartAutoModeRequest,
    service: AutoModeService = Depends(get_auto_mode_service),
):
    """
    Start the auto loop.

    Returns 409 when a loop is already running and 403 when the project is
    outside ALLOWED_ROOT_DIRECTORY.
    """
    try:
        await service.start_auto_loop(request.project_path, request.max_concurrency)
    except ValueError as e:
        raise BadRequestError(str(e)) from e
    return AutoModeActionResponse(success=True, message=f"Auto mode started for {request.project_path}")


@router.post("/stop", response_model=StopAutoModeResponse)
async def stop_auto_mode(service: AutoModeService = Depends(get_auto_mode_service)):
    running = await service.stop_auto_loop()
    return StopAutoModeResponse(success=True, running_features=running)


@router.post("/stop-feature", response_model=AutoModeActionResponse)
async def stop_feature(
    request: StopFeatureRequest,
    service: AutoModeService = Depends(get_auto_mode_service),
):
    if not await service.stop_feature(request.feature_id):
        raise NotFoundError("running feature", request.feature_id)
    return AutoModeActionResponse(success=True, message=f"Stopping feature {request.feature_id}")


@router.post("/run-feature", response_model=AutoModeActionResponse, status_code=202)
async def run_feature(
    request: RunFeatureRequest,
    service: AutoModeService = Depends(get_auto_mode_service),
    store: FeatureStore = Depends(get_feature_store),
):
    """
    Start a manual run of one feature and return without waiting for it.

    Progress and the outcome arrive on the event websocket.
    """
    service.secure_fs.validate_path(request.project_path)
    if await store.get(request.project_path, request.feature_id) is None:
        raise FeatureNotFoundError(request.feature_id, request.project_path)

    entry = service.start_feature(request.project_path, request.feature_id, is_auto_mode=False)
    entry.task.add_done_callback(_log_background_failure)
    return AutoModeActionResponse(success=True, message=f"Feature {request.feature_id} started")


@router.get("/status", response_model=AutoModeStatusResponse)
async def get_status(service: AutoModeService = Depends(get_auto_mode_service)):
    return service.get_status()
