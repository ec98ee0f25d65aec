"""
XMRT Core — Integration Core

Composition root binding the ServiceRegistry, LifecycleManager,
DataFlowCoordinator and AuditLog into one object. The process entry point
constructs exactly one instance and hands it to the HTTP layer; there is no
module-level singleton.

Lifecycle:
  created → initializing → ready → shutting_down → shutdown

  initialize()           — bring every configured service up (idempotent)
  coordinate_data_flow() — move a payload to a named service
  get_system_status()    — aggregate status snapshot
  shutdown()             — tear everything down (idempotent)

Partial start-up failure never raises: the core always reaches READY, and
the failed or degraded services are visible through get_system_status()
and the returned InitializationReport.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

from xmrt import __version__
from xmrt.systems.integration.audit import AuditLog
from xmrt.systems.integration.coordinator import DataFlowCoordinator
from xmrt.systems.integration.errors import InvalidStatusTransition
from xmrt.systems.integration.lifecycle import LifecycleManager
from xmrt.systems.integration.registry import ServiceRegistry
from xmrt.systems.integration.types import (
    AuditEventType,
    CoordinationOptions,
    CoordinationResult,
    CoreState,
    CoreStatus,
    FailureView,
    InitializationReport,
    ServiceDescriptor,
    ServiceStatus,
    ServiceView,
    ShutdownReport,
    SystemStatusReport,
)

if TYPE_CHECKING:
    from xmrt.config import XMRTConfig
    from xmrt.systems.integration.handlers import HandlerFactory

logger = structlog.get_logger("xmrt.systems.integration")


class IntegrationCore:
    """
    The XMRT ecosystem integration core.

    Owns process-wide service state. Coordination calls never take the
    lifecycle lock, so they keep flowing while status is being read.
    """

    def __init__(
        self,
        config: XMRTConfig,
        factories: Mapping[str, HandlerFactory] | None = None,
    ) -> None:
        self._config = config
        self._logger = logger.bind(system="integration_core")

        self._audit = AuditLog(maxlen=config.core.audit_buffer_size)
        self._registry = ServiceRegistry(strict=config.core.strict_registration)
        self._lifecycle = LifecycleManager(
            config=config.core,
            audit=self._audit,
            factories=factories,
        )
        self._coordinator = DataFlowCoordinator(
            registry=self._registry,
            audit=self._audit,
            config=config.core,
        )

        self._state: CoreState = CoreState.CREATED
        self._lock = asyncio.Lock()
        self._init_report: InitializationReport | None = None
        self._shutdown_report: ShutdownReport | None = None

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def initialize(self) -> InitializationReport:
        """
        Bring every enabled service up.

        A no-op once the core is READY or later: the first report is returned
        again and nothing is re-run.
        """
        async with self._lock:
            if self._state.at_least(CoreState.READY):
                return self._init_report or InitializationReport()

            self._state = CoreState.INITIALIZING
            self._logger.info(
                "integration_core_initializing",
                instance_id=self._config.instance_id,
                services=list(self._config.services),
            )

            try:
                report = await self._lifecycle.initialize_all(
                    self._registry,
                    self._config.services,
                )
            except Exception:
                self._state = CoreState.CREATED
                raise

            self._init_report = report
            self._state = CoreState.READY

            interval_ms = self._config.core.status_poll_interval_ms
            if interval_ms > 0:
                self._lifecycle.start_status_monitor(self._registry, interval_ms / 1000.0)

            summary = self._registry.summary()
            self._audit.lifecycle(
                AuditEventType.CORE_READY,
                active=summary.active,
                degraded=summary.degraded,
                inactive=summary.inactive,
            )
            if report.ok:
                self._logger.info("integration_core_ready", total=summary.total)
            else:
                self._logger.warning(
                    "integration_core_ready_degraded",
                    total=summary.total,
                    failed=report.failed,
                    degraded=report.degraded,
                )
            return report

    async def shutdown(self) -> ShutdownReport | None:
        """Tear every service down. A no-op once already shut down."""
        async with self._lock:
            if self._state == CoreState.SHUTDOWN:
                return None

            self._state = CoreState.SHUTTING_DOWN
            self._logger.info("integration_core_shutting_down")

            await self._lifecycle.stop_status_monitor()
            report = await self._lifecycle.shutdown_all(self._registry)

            self._shutdown_report = report
            self._state = CoreState.SHUTDOWN
            self._audit.lifecycle(
                AuditEventType.CORE_SHUTDOWN,
                stopped=report.stopped,
                errors=len(report.errors),
            )
            self._logger.info(
                "integration_core_shutdown_complete",
                stopped=len(report.stopped),
                teardown_errors=len(report.errors),
            )
            return report

    # ─── Coordination ────────────────────────────────────────────────

    async def coordinate_data_flow(
        self,
        source: str,
        target: str,
        payload: Mapping[str, Any] | None = None,
        options: CoordinationOptions | Mapping[str, Any] | None = None,
    ) -> CoordinationResult:
        """Single process-wide entry point for moving data between services."""
        return await self._coordinator.coordinate(source, target, payload, options)

    # ─── Status ──────────────────────────────────────────────────────

    def get_service(self, name: str) -> ServiceDescriptor | None:
        return self._registry.get(name)

    def report_status(self, name: str, status: ServiceStatus, reason: str = "") -> ServiceStatus:
        """
        Explicit runtime status report from or about a service.

        Only ``active`` ⇄ ``degraded`` moves are accepted here; shutdown is
        the only path to ``inactive``. A service with no live handler cannot be
        reported ``active``.
        """
        if status not in (ServiceStatus.ACTIVE, ServiceStatus.DEGRADED):
            raise ValueError(f"Runtime reports may only set active or degraded, not {status.value}")
        descriptor = self._registry.require(name)
        # A service held back by an unavailable dependency never started
        if status == ServiceStatus.ACTIVE and descriptor.handler is None:
            raise InvalidStatusTransition(name, descriptor.status, status)
        previous = self._registry.set_status(name, status, reason)
        if previous != status:
            self._audit.lifecycle(
                AuditEventType.SERVICE_DEGRADED
                if status == ServiceStatus.DEGRADED
                else AuditEventType.SERVICE_RECOVERED,
                target=name,
                previous=previous.value,
                reason=reason,
            )
        return previous

    def get_system_status(self) -> SystemStatusReport:
        failures = []
        if self._init_report is not None:
            failures = [
                FailureView(name=name, error_type=type(exc).__name__, error=str(exc))
                for name, exc in self._init_report.failures
            ]
        return SystemStatusReport(
            core=CoreStatus(
                initialized=self._state.at_least(CoreState.READY),
                state=self._state,
                version=__version__,
                instance_id=self._config.instance_id,
            ),
            services={
                d.name: ServiceView.from_descriptor(d) for d in self._registry.list_all()
            },
            summary=self._registry.summary(),
            failures=failures,
        )

    async def refresh_statuses(self) -> dict[str, tuple[ServiceStatus, ServiceStatus]]:
        """Poll every live handler's self-reported status once."""
        return await self._lifecycle.refresh_statuses(self._registry)

    # ─── Accessors ───────────────────────────────────────────────────

    @property
    def state(self) -> CoreState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == CoreState.READY

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def initialization_report(self) -> InitializationReport | None:
        return self._init_report

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "coordinator": self._coordinator.stats,
            "lifecycle": self._lifecycle.stats,
            "audit": self._audit.stats,
        }
