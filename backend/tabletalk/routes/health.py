"""Health check endpoint.

Checks system component availability:
- Sandbox runtime binary
- LLM provider configuration
- Dataset storage directory
"""

from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tabletalk.core.config import Settings
from tabletalk.services.code_execution.sandbox import check_runtime_available

from .deps import get_config

logger = logging.getLogger(__name__)
router = APIRouter()


def _llm_status(config: Settings) -> str:
    # Remote APIs can't be checked without a paid call; look at configuration only
    if config.LLM_PROVIDER == "GOOGLE":
        return "ok" if config.GOOGLE_API_KEY else "warning"
    if config.LLM_PROVIDER == "NVIDIA":
        return "ok" if config.NVIDIA_API_KEY else "warning"
    return "ok"


@router.get("/health")
async def health_check(config: Settings = Depends(get_config)):
    """Health check endpoint - verify all system components.

    Returns:
        JSON with status of each component
    """
    health_status = {
        "sandbox": "unknown",
        "sandbox_runtime": config.SANDBOX_RUNTIME,
        "llm": "unknown",
        "llm_provider": config.LLM_PROVIDER,
        "storage": "unknown",
        "overall": "unknown",
    }

    if check_runtime_available(config.SANDBOX_RUNTIME):
        health_status["sandbox"] = "ok" if config.SANDBOX_RUNTIME != "local" else "warning"
    else:
        health_status["sandbox"] = "error"
        logger.error(f"Sandbox runtime '{config.SANDBOX_RUNTIME}' not found on PATH")

    health_status["llm"] = _llm_status(config)
    health_status["storage"] = "ok" if os.path.isdir(config.UPLOAD_DIR) else "warning"

    components = [health_status["sandbox"], health_status["llm"], health_status["storage"]]
    if all(v == "ok" for v in components):
        health_status["overall"] = "healthy"
        status_code = 200
    elif health_status["sandbox"] == "error":
        health_status["overall"] = "unhealthy"
        status_code = 503
    else:
        health_status["overall"] = "degraded"
        status_code = 200

    return JSONResponse(content=health_status, status_code=status_code)


@router.get("/health/simple")
async def simple_health_check():
    """Simple health check - just returns 200 OK."""
    return {"status": "ok"}
