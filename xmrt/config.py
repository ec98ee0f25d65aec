"""
XMRT Core — Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

The service map is consumed once by the LifecycleManager at startup and is
never re-read afterwards.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class CoreConfig(BaseModel):
    # Reject duplicate service names instead of replacing the descriptor
    strict_registration: bool = True
    # Stamped into every payload's _metadata block
    integration_tag: str = "xmrt-v2"
    coordinator_version: str = "1.0.0"
    # Applied when a coordination request sets no timeout of its own
    default_timeout_ms: int | None = None
    service_start_timeout_ms: int = 10_000
    teardown_timeout_ms: int = 5_000
    # 0 disables the background self-report poller
    status_poll_interval_ms: int = 0
    status_check_timeout_ms: int = 2_000
    # Ring buffer size for the audit log
    audit_buffer_size: int = 10_000


class ServiceConfig(BaseModel):
    """
    Per-service entry of the static service map.

    Unknown keys are kept (``model_extra``) and handed to the handler
    factory as keyword arguments.
    """

    model_config = {"extra": "allow"}

    enabled: bool = True
    handler: str = "passthrough"  # built-in kind or "package.module:factory"
    capabilities: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)

    @property
    def params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


def _default_services() -> dict[str, ServiceConfig]:
    # Declaration order is the bring-up order for independent services
    return {
        "supabase": ServiceConfig(
            capabilities=["database", "realtime", "auth", "storage"],
        ),
        "agent_framework": ServiceConfig(
            capabilities=["multi-agent-coordination", "secure-execution", "cloud-deployment"],
            depends_on=["supabase"],
        ),
        "workflow_automation": ServiceConfig(
            capabilities=["workflow-automation", "mcp-integration", "ai-agents"],
            depends_on=["agent_framework"],
        ),
        "data_processing": ServiceConfig(
            capabilities=["multimodal-rag", "data-extraction", "intelligent-queries"],
            depends_on=["supabase"],
        ),
        "security": ServiceConfig(
            handler="security_filter",
            capabilities=["threat-detection", "zero-knowledge-proofs", "compliance-monitoring"],
        ),
        "mesh_network": ServiceConfig(
            capabilities=["offline-communication", "mesh-coordination", "esp32-integration"],
        ),
        "governance_ui": ServiceConfig(
            capabilities=["dao-interface", "voting-system", "proposal-management"],
            depends_on=["supabase"],
        ),
    }


# ─── Root Configuration ──────────────────────────────────────────


class XMRTConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="XMRT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "xmrt-default"

    server: ServerConfig = Field(default_factory=ServerConfig)
    core: CoreConfig = Field(default_factory=CoreConfig)
    services: dict[str, ServiceConfig] = Field(default_factory=_default_services)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _check_dependencies(self) -> XMRTConfig:
        for key, svc in self.services.items():
            unknown = [dep for dep in svc.depends_on if dep not in self.services]
            if unknown:
                raise ValueError(
                    f"Service {key!r} depends on unconfigured service(s): {', '.join(unknown)}"
                )
        return self

    @property
    def enabled_services(self) -> list[str]:
        return [key for key, svc in self.services.items() if svc.enabled]


def load_config(config_path: str | Path | None = None) -> XMRTConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    if instance_id := os.environ.get("XMRT_INSTANCE_ID"):
        raw["instance_id"] = instance_id
    if log_level := os.environ.get("XMRT_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level
    if log_format := os.environ.get("XMRT_LOG_FORMAT"):
        raw.setdefault("logging", {})["format"] = log_format
    if strict := os.environ.get("XMRT_STRICT_REGISTRATION"):
        raw.setdefault("core", {})["strict_registration"] = strict.lower() in ("true", "1", "yes")
    if disabled := os.environ.get("XMRT_DISABLED_SERVICES"):
        services = raw.get("services")
        if services is None:
            services = {
                key: svc.model_dump() for key, svc in _default_services().items()
            }
            raw["services"] = services
        for key in (k.strip() for k in disabled.split(",")):
            if key and key in services:
                services[key] = {**(services[key] or {}), "enabled": False}

    return XMRTConfig(**raw)
