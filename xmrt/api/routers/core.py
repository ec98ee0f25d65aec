"""
XMRT Core — Integration REST Router

Exposes the integration core to the dashboard. The core instance lives on
``app.state.core``; this router never constructs one.

Endpoints:
  GET  /api/system/status      — aggregate service status
  GET  /api/services/{name}    — one service's descriptor
  POST /api/coordinate         — move a payload to a named service
  GET  /api/audit              — most recent audit events
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from xmrt.systems.integration.errors import (
    CoordinationTimeout,
    IntegrationError,
    SecurityRejected,
    ServiceDispatchError,
    ServiceUnroutable,
    UnknownServiceError,
)
from xmrt.systems.integration.types import ServiceView

logger = structlog.get_logger("xmrt.api.core")

router = APIRouter()

# Coordination error kind → HTTP status
_ERROR_STATUS: list[tuple[type[IntegrationError], int]] = [
    (UnknownServiceError, 404),
    (SecurityRejected, 403),
    (ServiceUnroutable, 503),
    (CoordinationTimeout, 504),
    (ServiceDispatchError, 502),
]


class CoordinateRequest(BaseModel):
    source: str = "api"
    target: str
    payload: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)


def _status_for(exc: IntegrationError) -> int:
    for kind, status in _ERROR_STATUS:
        if isinstance(exc, kind):
            return status
    return 500


@router.get("/api/system/status")
async def get_system_status(request: Request) -> dict[str, Any]:
    """Return the aggregate status of every registered service."""
    core = request.app.state.core
    return core.get_system_status().model_dump(mode="json")


@router.get("/api/services/{name}")
async def get_service(name: str, request: Request) -> Any:
    """Return one service's descriptor, or 404 if it was never registered."""
    core = request.app.state.core
    descriptor = core.get_service(name)
    if descriptor is None:
        return JSONResponse(status_code=404, content={"error": f"{name} not initialized"})
    return ServiceView.from_descriptor(descriptor).model_dump(mode="json")


@router.post("/api/coordinate")
async def coordinate(body: CoordinateRequest, request: Request) -> Any:
    """Run a payload through the enrich → filter → dispatch pipeline."""
    core = request.app.state.core
    try:
        outcome = await core.coordinate_data_flow(
            body.source,
            body.target,
            body.payload,
            body.options,
        )
    except ValidationError as exc:
        return JSONResponse(
            status_code=422,
            content={"success": False, "error": "invalid options", "detail": exc.errors(include_url=False, include_context=False)},
        )
    except IntegrationError as exc:
        status = _status_for(exc)
        logger.warning(
            "coordination_request_failed",
            target=body.target,
            error_type=type(exc).__name__,
            status=status,
        )
        return JSONResponse(
            status_code=status,
            content={
                "success": False,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )

    return {
        "success": True,
        "coordination_id": outcome.request_id,
        "filtered": outcome.filtered,
        "elapsed_ms": round(outcome.elapsed_ms, 2),
        "result": outcome.result,
    }


@router.get("/api/audit")
async def get_audit(request: Request, limit: int = 50) -> dict[str, Any]:
    """Most recent audit events, newest first."""
    audit = request.app.state.core.audit
    events = audit.recent(limit=max(1, min(limit, 1000)))
    return {
        "events": [e.model_dump(mode="json") for e in events],
        "stats": audit.stats,
    }
