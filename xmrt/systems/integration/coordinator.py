"""
XMRT Core — Data-Flow Coordinator

Moves a payload from a logical source to a named target service through a
fixed three-stage pipeline:

  1. Enrich   — deep-copy the payload and stamp the _metadata block
  2. Filter   — pass it through the active ``security`` service, if any
  3. Dispatch — resolve the target and invoke its handler

Exactly one coordination audit event is recorded per call, whatever the
outcome. The coordinator holds no lock: calls to different targets run
concurrently, and a handler that needs serialisation must provide it.

The request timeout bounds the filter and dispatch stages, each on its own;
a hung filter fails with CoordinationTimeout naming ``security``.
Timeouts are best-effort. ``asyncio.wait_for`` cancels the awaiting task,
but a handler that blocks the event loop or shields its own work keeps
running after CoordinationTimeout has been raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import copy
import time
from typing import TYPE_CHECKING, Any

import structlog

from xmrt.primitives.common import new_id, utc_now
from xmrt.systems.integration.errors import (
    CoordinationTimeout,
    IntegrationError,
    SecurityRejected,
    ServiceDispatchError,
    ServiceUnroutable,
    UnknownServiceError,
)
from xmrt.systems.integration.handlers import resolve
from xmrt.systems.integration.types import (
    AuditEvent,
    AuditEventType,
    AuditKind,
    CoordinationOptions,
    CoordinationOutcome,
    CoordinationResult,
    RouteMode,
    ServiceStatus,
)

if TYPE_CHECKING:
    from xmrt.config import CoreConfig
    from xmrt.systems.integration.audit import AuditLog
    from xmrt.systems.integration.registry import ServiceRegistry

logger = structlog.get_logger("xmrt.systems.integration.coordinator")

# Name of the service whose handler acts as the payload filter
SECURITY_SERVICE: str = "security"

METADATA_KEY: str = "_metadata"


class DataFlowCoordinator:
    """
    Enrich → filter → dispatch pipeline over a ServiceRegistry.

    Never talks HTTP; the integration core is its only caller.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        audit: AuditLog,
        config: CoreConfig,
    ) -> None:
        self._registry = registry
        self._audit = audit
        self._config = config
        self._logger = logger.bind(component="coordinator")

        # Metrics
        self._total_calls: int = 0
        self._total_failures: int = 0
        self._in_flight: int = 0

    # ─── Coordination ────────────────────────────────────────────────

    async def coordinate(
        self,
        source: str,
        target: str,
        payload: Mapping[str, Any] | None = None,
        options: CoordinationOptions | Mapping[str, Any] | None = None,
    ) -> CoordinationResult:
        """
        Run one payload through the pipeline and return the target's result.

        Raises UnknownServiceError, ServiceUnroutable, SecurityRejected,
        CoordinationTimeout or ServiceDispatchError.
        """
        request_id = new_id()
        t0 = time.monotonic()

        self._total_calls += 1
        self._in_flight += 1
        outcome = CoordinationOutcome.FAILED
        error: str | None = None
        filtered = False

        self._logger.info(
            "data_flow_started",
            request_id=request_id,
            source=source,
            target=target,
        )

        try:
            opts = CoordinationOptions.coerce(options)
            timeout_ms = opts.timeout_ms or self._config.default_timeout_ms

            metadata = self._build_metadata(request_id, source, target)
            enriched = self._enrich(payload, metadata)

            if not opts.bypass_security_filter:
                enriched, filtered = await self._apply_security_filter(
                    enriched, metadata, timeout_ms
                )

            result = await self._dispatch(target, enriched, timeout_ms)
            outcome = CoordinationOutcome.SUCCESS

        except SecurityRejected as exc:
            outcome = CoordinationOutcome.REJECTED
            error = str(exc)
            raise
        except CoordinationTimeout as exc:
            outcome = CoordinationOutcome.TIMEOUT
            error = str(exc)
            raise
        except IntegrationError as exc:
            error = str(exc)
            raise
        except asyncio.CancelledError:
            outcome = CoordinationOutcome.CANCELLED
            error = "cancelled"
            raise
        except Exception as exc:
            # Invalid options, or a payload that cannot be copied
            error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            self._in_flight -= 1
            elapsed_ms = (time.monotonic() - t0) * 1000.0
            if outcome != CoordinationOutcome.SUCCESS:
                self._total_failures += 1
                self._logger.warning(
                    "data_flow_failed",
                    request_id=request_id,
                    source=source,
                    target=target,
                    outcome=outcome.value,
                    error=error,
                    elapsed_ms=round(elapsed_ms, 2),
                )
            self._audit.record(AuditEvent(
                kind=AuditKind.COORDINATION,
                event_type=AuditEventType.DATA_FLOW,
                source=source,
                target=target,
                outcome=outcome,
                error=error,
                request_id=request_id,
                data={"filtered": filtered, "elapsed_ms": round(elapsed_ms, 2)},
            ))

        self._logger.info(
            "data_flow_completed",
            request_id=request_id,
            source=source,
            target=target,
            filtered=filtered,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return CoordinationResult(
            request_id=request_id,
            source=source,
            target=target,
            result=result,
            filtered=filtered,
            elapsed_ms=elapsed_ms,
        )

    # ─── Stage 1: Enrich ─────────────────────────────────────────────

    def _build_metadata(self, request_id: str, source: str, target: str) -> dict[str, Any]:
        return {
            "processed_at": utc_now().isoformat(),
            "integration_core": self._config.integration_tag,
            "version": self._config.coordinator_version,
            "request_id": request_id,
            "source": source,
            "target": target,
        }

    @staticmethod
    def _enrich(payload: Mapping[str, Any] | None, metadata: dict[str, Any]) -> dict[str, Any]:
        # Caller's payload is never mutated; caller-supplied _metadata is overwritten
        enriched = copy.deepcopy(dict(payload or {}))
        enriched[METADATA_KEY] = dict(metadata)
        return enriched

    # ─── Stage 2: Filter ─────────────────────────────────────────────

    async def _apply_security_filter(
        self,
        payload: dict[str, Any],
        metadata: dict[str, Any],
        timeout_ms: int | None,
    ) -> tuple[dict[str, Any], bool]:
        descriptor = self._registry.get(SECURITY_SERVICE)
        if (
            descriptor is None
            or descriptor.status != ServiceStatus.ACTIVE
            or descriptor.handler is None
        ):
            return payload, False

        handler = descriptor.handler
        try:
            call = resolve(handler.route(payload, mode=RouteMode.FILTER))
            if timeout_ms is None:
                verdict = await call
            else:
                try:
                    verdict = await asyncio.wait_for(call, timeout=timeout_ms / 1000.0)
                except TimeoutError as exc:
                    raise CoordinationTimeout(SECURITY_SERVICE, timeout_ms) from exc
        except (SecurityRejected, CoordinationTimeout):
            raise
        except Exception as exc:
            # Fail closed: a broken filter never lets data through
            raise SecurityRejected(f"security filter error: {exc}") from exc

        if isinstance(verdict, Mapping):
            payload = dict(verdict)
            payload[METADATA_KEY] = dict(metadata)
        return payload, True

    # ─── Stage 3: Dispatch ───────────────────────────────────────────

    async def _dispatch(
        self,
        target: str,
        payload: dict[str, Any],
        timeout_ms: int | None,
    ) -> Any:
        # Lookup, status check and handler capture happen without suspending
        descriptor = self._registry.get(target)
        if descriptor is None:
            raise UnknownServiceError(target)
        handler = descriptor.handler
        if handler is None:
            raise ServiceUnroutable(target)
        if not descriptor.is_routable:
            raise ServiceUnroutable(target, f"status is {descriptor.status.value}")

        try:
            call = resolve(handler.route(payload, mode=RouteMode.DISPATCH))
            if timeout_ms is None:
                return await call
            try:
                return await asyncio.wait_for(call, timeout=timeout_ms / 1000.0)
            except TimeoutError as exc:
                raise CoordinationTimeout(target, timeout_ms) from exc
        except IntegrationError:
            raise
        except Exception as exc:
            raise ServiceDispatchError(target, f"{type(exc).__name__}: {exc}") from exc

    # ─── Stats ───────────────────────────────────────────────────────

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_calls": self._total_calls,
            "total_failures": self._total_failures,
            "in_flight": self._in_flight,
        }
