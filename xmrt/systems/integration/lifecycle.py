"""
XMRT Core — Lifecycle Manager

Deterministic, idempotent bring-up and tear-down of every configured service.

Bring-up walks the service map in dependency order (a stable topological
sort that keeps configuration order among independent services):
  - disabled services are skipped and never registered
  - a service whose dependencies are not all active goes straight to
    DEGRADED and is never started
  - a service whose handler fails to build or initialise goes INACTIVE;
    a handler that was built gets a best-effort teardown first
  - everyone else goes ACTIVE
One failing service never aborts the others; every failure is collected
into the InitializationReport.

Tear-down runs in reverse registration order. Each live descriptor is
released (INACTIVE, handler dropped) before its teardown hook runs, so a
dispatch racing the shutdown fails with ServiceUnroutable instead of
reaching a half-torn-down handler. Teardown errors are collected, never
raised.

Per-service state machine:
  pending → active | degraded | inactive
  active ⇄ degraded     (runtime self-report)
  * → inactive          (shutdown)
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

from xmrt.systems.integration.errors import (
    ConfigurationError,
    DependencyUnavailable,
    IntegrationError,
)
from xmrt.systems.integration.handlers import (
    BUILTIN_FACTORIES,
    HandlerFactory,
    build_handler,
    call_hook,
)
from xmrt.systems.integration.types import (
    AuditEventType,
    InitializationReport,
    ServiceDescriptor,
    ServiceStatus,
    ShutdownReport,
)

if TYPE_CHECKING:
    from xmrt.config import CoreConfig, ServiceConfig
    from xmrt.systems.integration.audit import AuditLog
    from xmrt.systems.integration.registry import ServiceRegistry

logger = structlog.get_logger("xmrt.systems.integration.lifecycle")


def resolve_start_order(services: Mapping[str, ServiceConfig]) -> list[str]:
    """
    Stable topological order of ``services`` by ``depends_on``.

    Raises ConfigurationError for an unconfigured dependency or a cycle.
    """
    for key, svc in services.items():
        unknown = [dep for dep in svc.depends_on if dep not in services]
        if unknown:
            raise ConfigurationError(
                f"Service {key!r} depends on unconfigured service(s): {', '.join(unknown)}"
            )

    order: list[str] = []
    placed: set[str] = set()
    remaining = list(services)
    while remaining:
        progressed = False
        for key in list(remaining):
            if all(dep in placed for dep in services[key].depends_on):
                order.append(key)
                placed.add(key)
                remaining.remove(key)
                progressed = True
                # Restart the scan so earlier-declared services keep priority
                break
        if not progressed:
            raise ConfigurationError(
                f"Dependency cycle between services: {', '.join(remaining)}"
            )
    return order


class LifecycleManager:
    """
    Brings every configured service up in dependency order and tears them
    down again. Also polls handlers' ``report_status`` for self-reported
    degradation, either on demand or from a background task.
    """

    def __init__(
        self,
        config: CoreConfig,
        audit: AuditLog,
        factories: Mapping[str, HandlerFactory] | None = None,
    ) -> None:
        self._config = config
        self._audit = audit
        self._factories: dict[str, HandlerFactory] = {**BUILTIN_FACTORIES, **(factories or {})}
        self._logger = logger.bind(component="lifecycle_manager")

        # Background status monitor
        self._monitor_task: asyncio.Task[None] | None = None
        self._monitor_running: bool = False

        # Metrics
        self._total_started: int = 0
        self._total_failed: int = 0
        self._total_status_checks: int = 0

    # ─── Bring-up ────────────────────────────────────────────────────

    async def initialize_all(
        self,
        registry: ServiceRegistry,
        services: Mapping[str, ServiceConfig],
    ) -> InitializationReport:
        """Register and start every enabled service. Never raises for a single failure."""
        order = resolve_start_order(services)
        report = InitializationReport()

        self._logger.info("services_initializing", order=order)

        for name in order:
            svc = services[name]
            if not svc.enabled:
                report.skipped.append(name)
                self._logger.info("service_disabled", service=name)
                continue
            await self._initialize_one(registry, name, svc, report)

        self._logger.info(
            "services_initialized",
            started=report.started,
            degraded=report.degraded,
            failed=report.failed,
            skipped=report.skipped,
        )
        return report

    async def _initialize_one(
        self,
        registry: ServiceRegistry,
        name: str,
        svc: ServiceConfig,
        report: InitializationReport,
    ) -> None:
        descriptor = ServiceDescriptor(
            name=name,
            capabilities=frozenset(svc.capabilities),
            depends_on=tuple(svc.depends_on),
        )
        try:
            registry.register(descriptor)
        except IntegrationError as exc:
            report.failed.append(name)
            report.failures.append((name, exc))
            self._total_failed += 1
            self._logger.error("service_registration_failed", service=name, error=str(exc))
            return

        self._audit.lifecycle(AuditEventType.SERVICE_REGISTERED, target=name)

        missing = [
            dep for dep in svc.depends_on
            if (dep_desc := registry.get(dep)) is None or dep_desc.status != ServiceStatus.ACTIVE
        ]
        if missing:
            cause = DependencyUnavailable(name, missing)
            registry.set_status(name, ServiceStatus.DEGRADED, str(cause))
            report.degraded.append(name)
            report.failures.append((name, cause))
            self._logger.warning("service_dependency_unavailable", service=name, missing=missing)
            self._audit.lifecycle(AuditEventType.SERVICE_DEGRADED, target=name, missing=missing)
            return

        self._logger.info("service_initializing", service=name, handler=svc.handler)
        handler: Any = None
        try:
            handler = build_handler(name, svc, self._factories)
            descriptor.attach(handler)
            await call_hook(handler, "initialize", self._config.service_start_timeout_ms / 1000.0)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
            descriptor.attach(None)
            if handler is not None:
                await self._teardown_partial(name, handler)
            registry.set_status(name, ServiceStatus.INACTIVE, error)
            report.failed.append(name)
            report.failures.append((name, exc))
            self._total_failed += 1
            self._logger.error("service_initialization_failed", service=name, error=error)
            self._audit.lifecycle(AuditEventType.SERVICE_FAILED, target=name, error=error)
            return

        registry.set_status(name, ServiceStatus.ACTIVE)
        report.started.append(name)
        self._total_started += 1
        self._logger.info("service_started", service=name)
        self._audit.lifecycle(AuditEventType.SERVICE_STARTED, target=name)

    async def _teardown_partial(self, name: str, handler: Any) -> None:
        """Best-effort teardown of a handler whose initialize() did not complete."""
        try:
            await call_hook(handler, "teardown", self._config.teardown_timeout_ms / 1000.0)
        except Exception as exc:
            self._logger.warning(
                "service_partial_teardown_failed",
                service=name,
                error=str(exc) or type(exc).__name__,
            )

    # ─── Tear-down ───────────────────────────────────────────────────

    async def shutdown_all(self, registry: ServiceRegistry) -> ShutdownReport:
        """Release every live service, then run teardown hooks. Always completes."""
        report = ShutdownReport()
        live = [
            d for d in reversed(registry.list_all())
            if d.status != ServiceStatus.INACTIVE
        ]
        if not live:
            return report

        # Release everything first so no new dispatch can reach a handler
        released: list[tuple[str, Any]] = []
        for descriptor in live:
            released.append((descriptor.name, descriptor.release("shutdown")))

        timeout_s = self._config.teardown_timeout_ms / 1000.0
        for name, handler in released:
            if handler is not None:
                try:
                    await call_hook(handler, "teardown", timeout_s)
                except Exception as exc:
                    report.errors.append((name, exc))
                    self._logger.error(
                        "service_teardown_failed",
                        service=name,
                        error=str(exc) or type(exc).__name__,
                    )
            report.stopped.append(name)
            self._logger.info("service_stopped", service=name)
            self._audit.lifecycle(AuditEventType.SERVICE_STOPPED, target=name)

        return report

    # ─── Self-reported Status ────────────────────────────────────────

    async def refresh_statuses(
        self,
        registry: ServiceRegistry,
    ) -> dict[str, tuple[ServiceStatus, ServiceStatus]]:
        """
        Poll every routable handler's ``report_status``.

        Returns ``{name: (previous, new)}`` for each service whose status changed.
        """
        changes: dict[str, tuple[ServiceStatus, ServiceStatus]] = {}
        timeout_s = self._config.status_check_timeout_ms / 1000.0

        for descriptor in registry.list_all():
            if not descriptor.is_routable:
                continue
            handler = descriptor.handler
            self._total_status_checks += 1

            reason = ""
            try:
                reported = await call_hook(handler, "report_status", timeout_s)
            except Exception as exc:
                reported = ServiceStatus.DEGRADED
                reason = f"status check failed: {str(exc) or type(exc).__name__}"
                self._logger.warning("status_check_failed", service=descriptor.name, error=str(exc))

            if isinstance(reported, Mapping):
                reported = reported.get("status")
            if reported is None:
                continue
            try:
                new_status = ServiceStatus(reported)
            except ValueError:
                self._logger.warning(
                    "status_report_invalid",
                    service=descriptor.name,
                    reported=str(reported),
                )
                continue
            if new_status not in (ServiceStatus.ACTIVE, ServiceStatus.DEGRADED):
                continue

            # Re-check: the service may have been released while we awaited
            if descriptor.status == new_status or not descriptor.is_routable:
                continue

            previous = registry.set_status(
                descriptor.name,
                new_status,
                reason or "self-reported",
            )
            changes[descriptor.name] = (previous, new_status)
            self._audit.lifecycle(
                AuditEventType.SERVICE_DEGRADED
                if new_status == ServiceStatus.DEGRADED
                else AuditEventType.SERVICE_RECOVERED,
                target=descriptor.name,
                previous=previous.value,
            )

        return changes

    def start_status_monitor(self, registry: ServiceRegistry, interval_s: float) -> asyncio.Task[None]:
        """Start the background self-report polling loop."""
        if self._monitor_running:
            raise RuntimeError("Status monitor is already running")
        self._monitor_running = True
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(registry, interval_s),
            name="xmrt_status_monitor",
        )
        self._logger.info("status_monitor_started", interval_s=interval_s)
        return self._monitor_task

    async def stop_status_monitor(self) -> None:
        self._monitor_running = False
        if self._monitor_task and not self._monitor_task.done():
            self._monitor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor_task
        self._monitor_task = None

    async def _monitor_loop(self, registry: ServiceRegistry, interval_s: float) -> None:
        while self._monitor_running:
            try:
                await self.refresh_statuses(registry)
                await asyncio.sleep(interval_s)
            except asyncio.CancelledError:
                return
            except Exception as exc:
                self._logger.error("status_monitor_error", error=str(exc))
                await asyncio.sleep(interval_s)

    # ─── Stats ───────────────────────────────────────────────────────

    @property
    def monitor_running(self) -> bool:
        return self._monitor_running

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_started": self._total_started,
            "total_failed": self._total_failed,
            "total_status_checks": self._total_status_checks,
            "monitor_running": self._monitor_running,
        }
