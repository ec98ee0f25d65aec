"""
XMRT Core — Integration

Pluggable service registry with a typed data-flow coordinator and an
ordered lifecycle manager, composed into one IntegrationCore.
"""

from xmrt.systems.integration.audit import AuditLog
from xmrt.systems.integration.coordinator import DataFlowCoordinator
from xmrt.systems.integration.errors import (
    ConfigurationError,
    CoordinationTimeout,
    DependencyUnavailable,
    DuplicateServiceError,
    InitializationPartialFailure,
    IntegrationError,
    InvalidStatusTransition,
    SecurityRejected,
    ServiceDispatchError,
    ServiceUnroutable,
    UnknownServiceError,
)
from xmrt.systems.integration.handlers import (
    PassthroughHandler,
    SecurityFilterHandler,
    build_handler,
)
from xmrt.systems.integration.lifecycle import LifecycleManager, resolve_start_order
from xmrt.systems.integration.registry import ServiceRegistry
from xmrt.systems.integration.service import IntegrationCore
from xmrt.systems.integration.types import (
    AuditEvent,
    AuditEventType,
    AuditKind,
    CoordinationOptions,
    CoordinationOutcome,
    CoordinationResult,
    CoreState,
    InitializationReport,
    RoutableHandler,
    RouteMode,
    ServiceDescriptor,
    ServiceHandler,
    ServiceStatus,
    ServiceSummary,
    ShutdownReport,
    SystemStatusReport,
)

__all__ = [
    # Service
    "IntegrationCore",
    # Sub-systems
    "AuditLog",
    "DataFlowCoordinator",
    "LifecycleManager",
    "ServiceRegistry",
    "resolve_start_order",
    # Handlers
    "PassthroughHandler",
    "RoutableHandler",
    "SecurityFilterHandler",
    "ServiceHandler",
    "build_handler",
    # Errors
    "ConfigurationError",
    "CoordinationTimeout",
    "DependencyUnavailable",
    "DuplicateServiceError",
    "InitializationPartialFailure",
    "IntegrationError",
    "InvalidStatusTransition",
    "SecurityRejected",
    "ServiceDispatchError",
    "ServiceUnroutable",
    "UnknownServiceError",
    # Types
    "AuditEvent",
    "AuditEventType",
    "AuditKind",
    "CoordinationOptions",
    "CoordinationOutcome",
    "CoordinationResult",
    "CoreState",
    "InitializationReport",
    "RouteMode",
    "ServiceDescriptor",
    "ServiceStatus",
    "ServiceSummary",
    "ShutdownReport",
    "SystemStatusReport",
]
