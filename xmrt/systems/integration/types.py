"""
XMRT Core — Integration Type Definitions

All data types for the integration core: service descriptors and their
status state machine, the handler capability contract, coordination options
and results, audit events, and lifecycle reports.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
import enum
from typing import Any, Protocol, runtime_checkable

from pydantic import Field, field_validator

from xmrt.primitives.common import XMRTBaseModel, new_id, utc_now
from xmrt.systems.integration.errors import (
    InitializationPartialFailure,
    InvalidStatusTransition,
)

# ─── Service Status ───────────────────────────────────────────────────


class ServiceStatus(enum.StrEnum):
    """Operational state of a registered service."""

    PENDING = "pending"
    ACTIVE = "active"
    DEGRADED = "degraded"
    INACTIVE = "inactive"


_ALLOWED_TRANSITIONS: dict[ServiceStatus, frozenset[ServiceStatus]] = {
    ServiceStatus.PENDING: frozenset({
        ServiceStatus.ACTIVE,
        ServiceStatus.DEGRADED,
        ServiceStatus.INACTIVE,
    }),
    ServiceStatus.ACTIVE: frozenset({ServiceStatus.DEGRADED, ServiceStatus.INACTIVE}),
    ServiceStatus.DEGRADED: frozenset({ServiceStatus.ACTIVE, ServiceStatus.INACTIVE}),
    # Terminal: a fresh bring-up creates a new descriptor
    ServiceStatus.INACTIVE: frozenset(),
}

ROUTABLE_STATUSES: frozenset[ServiceStatus] = frozenset({
    ServiceStatus.ACTIVE,
    ServiceStatus.DEGRADED,
})


class RouteMode(enum.StrEnum):
    """Hint passed to ``route()`` telling the handler why it is being called."""

    DISPATCH = "dispatch"
    FILTER = "filter"


# ─── Handler Contract ─────────────────────────────────────────────────


@runtime_checkable
class RoutableHandler(Protocol):
    """
    Minimal capability every service handler must expose.

    Optional hooks looked up by the core (sync or async):
      - initialize() -> None        awaited once during bring-up
      - teardown() -> None          awaited once during shutdown
      - report_status() -> status   polled for self-reported degradation
    """

    def route(self, payload: dict[str, Any], *, mode: RouteMode = RouteMode.DISPATCH) -> Any:
        ...


class ServiceHandler(ABC):
    """
    Base class for service handlers.

    Subclasses implement ``route``; the lifecycle hooks default to no-ops.
    ``report_status`` returning None means "no opinion".
    """

    name: str = ""

    @abstractmethod
    async def route(
        self,
        payload: dict[str, Any],
        *,
        mode: RouteMode = RouteMode.DISPATCH,
    ) -> Any:
        """Handle a payload routed to this service."""
        ...

    async def initialize(self) -> None:
        return None

    async def teardown(self) -> None:
        return None

    async def report_status(self) -> ServiceStatus | None:
        return None


def _check_handler(handler: Any) -> Any:
    if handler is not None and not callable(getattr(handler, "route", None)):
        raise ValueError(f"Handler {handler!r} has no callable route()")
    return handler


# ─── Service Descriptor ───────────────────────────────────────────────


class ServiceDescriptor(XMRTBaseModel):
    """
    The registry's record of one pluggable service.

    ``name`` is frozen once constructed. Status moves only through
    ``transition_to`` (driven by the LifecycleManager or explicit status
    reports), which enforces the service state machine.
    """

    name: str = Field(min_length=1, frozen=True)
    status: ServiceStatus = ServiceStatus.PENDING
    status_reason: str = ""
    capabilities: frozenset[str] = Field(default_factory=frozenset)
    depends_on: tuple[str, ...] = ()
    handler: Any = Field(default=None, exclude=True, repr=False)
    registered_at: datetime = Field(default_factory=utc_now)
    status_changed_at: datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Service name must not be blank")
        return value

    @field_validator("handler")
    @classmethod
    def _handler_is_routable(cls, value: Any) -> Any:
        return _check_handler(value)

    @property
    def is_routable(self) -> bool:
        return self.handler is not None and self.status in ROUTABLE_STATUSES

    def can_transition_to(self, status: ServiceStatus) -> bool:
        return status == self.status or status in _ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, status: ServiceStatus, reason: str = "") -> ServiceStatus:
        """Move to ``status``. Returns the previous status."""
        previous = self.status
        if status == previous:
            if reason:
                self.status_reason = reason
            return previous
        if status not in _ALLOWED_TRANSITIONS[previous]:
            raise InvalidStatusTransition(self.name, previous, status)
        self.status = status
        self.status_reason = reason
        self.status_changed_at = utc_now()
        return previous

    def attach(self, handler: Any) -> None:
        self.handler = _check_handler(handler)

    def release(self, reason: str = "shutdown") -> Any:
        """Drop the handler and go inactive. Returns the dropped handler."""
        handler = self.handler
        self.handler = None
        self.transition_to(ServiceStatus.INACTIVE, reason)
        return handler


class ServiceSummary(XMRTBaseModel):
    """Aggregate status counts over every registered service."""

    total: int = 0
    active: int = 0
    degraded: int = 0
    inactive: int = 0
    pending: int = 0


# ─── Coordination ─────────────────────────────────────────────────────


class CoordinationOptions(XMRTBaseModel):
    """Per-request options. Unknown keys are ignored."""

    timeout_ms: int | None = Field(default=None, gt=0, alias="timeoutMs")
    bypass_security_filter: bool = Field(default=False, alias="bypassSecurityFilter")

    @classmethod
    def coerce(
        cls,
        options: CoordinationOptions | Mapping[str, Any] | None,
    ) -> CoordinationOptions:
        if options is None:
            return cls()
        if isinstance(options, CoordinationOptions):
            return options
        return cls.model_validate(dict(options))


class CoordinationOutcome(enum.StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class CoordinationResult(XMRTBaseModel):
    """Result of a single coordinate() call."""

    request_id: str
    source: str
    target: str
    result: Any = None
    filtered: bool = False
    elapsed_ms: float = 0.0
    timestamp: datetime = Field(default_factory=utc_now)


# ─── Audit ────────────────────────────────────────────────────────────


class AuditKind(enum.StrEnum):
    COORDINATION = "coordination"
    LIFECYCLE = "lifecycle"


class AuditEventType(enum.StrEnum):
    """Every audit event type the core records."""

    # Coordination
    DATA_FLOW = "data_flow"

    # Service lifecycle
    SERVICE_REGISTERED = "service_registered"
    SERVICE_STARTED = "service_started"
    SERVICE_DEGRADED = "service_degraded"
    SERVICE_FAILED = "service_failed"
    SERVICE_RECOVERED = "service_recovered"
    SERVICE_STOPPED = "service_stopped"

    # Core lifecycle
    CORE_READY = "core_ready"
    CORE_SHUTDOWN = "core_shutdown"


class AuditEvent(XMRTBaseModel):
    """One entry of the ordered audit trail."""

    id: str = Field(default_factory=new_id)
    kind: AuditKind
    event_type: AuditEventType
    source: str = ""
    target: str = ""
    outcome: CoordinationOutcome | None = None
    error: str | None = None
    request_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)


# ─── Lifecycle Reports ────────────────────────────────────────────────


@dataclass
class InitializationReport:
    """Outcome of one initialize_all() pass."""

    started: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[tuple[str, BaseException]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def partial_failure(self) -> InitializationPartialFailure | None:
        if not self.failures:
            return None
        return InitializationPartialFailure(list(self.failures))

    def raise_for_failures(self) -> None:
        error = self.partial_failure()
        if error is not None:
            raise error


@dataclass
class ShutdownReport:
    """Outcome of one shutdown_all() pass."""

    stopped: list[str] = field(default_factory=list)
    errors: list[tuple[str, BaseException]] = field(default_factory=list)


# ─── Core State ───────────────────────────────────────────────────────


class CoreState(enum.StrEnum):
    CREATED = "created"
    INITIALIZING = "initializing"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    SHUTDOWN = "shutdown"

    @property
    def rank(self) -> int:
        return list(CoreState).index(self)

    def at_least(self, other: CoreState) -> bool:
        return self.rank >= other.rank


class ServiceView(XMRTBaseModel):
    name: str
    status: ServiceStatus
    capabilities: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)
    reason: str = ""
    routable: bool = False

    @classmethod
    def from_descriptor(cls, descriptor: ServiceDescriptor) -> ServiceView:
        return cls(
            name=descriptor.name,
            status=descriptor.status,
            capabilities=sorted(descriptor.capabilities),
            depends_on=list(descriptor.depends_on),
            reason=descriptor.status_reason,
            routable=descriptor.is_routable,
        )


class CoreStatus(XMRTBaseModel):
    initialized: bool
    state: CoreState
    version: str
    instance_id: str
    timestamp: datetime = Field(default_factory=utc_now)


class FailureView(XMRTBaseModel):
    name: str
    error_type: str
    error: str


class SystemStatusReport(XMRTBaseModel):
    """Snapshot returned by IntegrationCore.get_system_status()."""

    core: CoreStatus
    services: dict[str, ServiceView] = Field(default_factory=dict)
    summary: ServiceSummary = Field(default_factory=ServiceSummary)
    failures: list[FailureView] = Field(default_factory=list)
