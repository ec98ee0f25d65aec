"""
XMRT Core — Application Entry Point

FastAPI application. The lifespan builds the one IntegrationCore for this
process, stores it on ``app.state.core`` and shuts it down on exit.

`uvicorn xmrt.main:app` or `xmrt-core`
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Load .env file before any configuration is loaded
load_dotenv()

from xmrt import __version__
from xmrt.api.routers.core import router as core_router
from xmrt.config import XMRTConfig, load_config
from xmrt.primitives.common import utc_now
from xmrt.systems.integration.handlers import HandlerFactory
from xmrt.systems.integration.service import IntegrationCore
from xmrt.telemetry.logging import setup_logging

logger = structlog.get_logger("xmrt.main")

_DEFAULT_CONFIG_PATH = "config/default.yaml"


def _load_default_config() -> XMRTConfig:
    return load_config(os.environ.get("XMRT_CONFIG_PATH", _DEFAULT_CONFIG_PATH))


def create_app(
    config: XMRTConfig | None = None,
    factories: Mapping[str, HandlerFactory] | None = None,
) -> FastAPI:
    """Build the FastAPI application around a fresh IntegrationCore."""
    cfg = config or _load_default_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # ── 1. Logging ────────────────────────────────────────────
        setup_logging(cfg.logging, instance_id=cfg.instance_id)

        # ── 2. Bring the integration core up ──────────────────────
        core = IntegrationCore(cfg, factories=factories)
        report = await core.initialize()
        app.state.core = core
        logger.info(
            "xmrt_ready",
            instance_id=cfg.instance_id,
            started=len(report.started),
            failed=len(report.failed),
            degraded=len(report.degraded),
        )

        yield

        # ── Shutdown ──────────────────────────────────────────────
        logger.info("xmrt_shutting_down")
        await core.shutdown()
        logger.info("xmrt_shutdown_complete")

    app = FastAPI(
        title="XMRT Core",
        description="Ecosystem integration core — API surface",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg

    cors_origins = list(cfg.server.cors_origins)
    # Allow additional origins via env var (comma-separated)
    extra_origins = os.environ.get("CORS_ALLOWED_ORIGINS", "")
    if extra_origins:
        cors_origins.extend(o.strip() for o in extra_origins.split(",") if o.strip())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Liveness check."""
        core: IntegrationCore | None = getattr(request.app.state, "core", None)
        return {
            "status": "healthy",
            "timestamp": utc_now().isoformat(),
            "version": __version__,
            "integration_core": core.is_ready if core is not None else False,
        }

    app.include_router(core_router)
    return app


app = create_app()


def run() -> None:
    """Serve ``app`` on the configured host and port."""
    cfg: XMRTConfig = app.state.config
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port)
