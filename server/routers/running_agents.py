"""
Running Agents Router
=====================

GET /api/running-agents - Every feature currently executing, across projects.

Response:
    {"success": true, "runningAgents": [...], "totalCount": 2}

This endpoint predates the standardized error format and keeps its own
failure shape: 500 with {"success": false, "error": "<message>"}.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from automode.auto_mode_service import AutoModeService

from ..dependencies import get_auto_mode_service

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/running-agents", tags=["running-agents"])


@router.get("")
async def list_running_agents(service: AutoModeService = Depends(get_auto_mode_service)):
    try:
        running_agents = await service.get_running_agents()
    except Exception as e:
        _logger.exception("Get running agents failed")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e) or repr(e)})

    return {
        "success": True,
        "runningAgents": running_agents,
        "totalCount": len(running_agents),
    }
