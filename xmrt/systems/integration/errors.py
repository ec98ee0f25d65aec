"""
XMRT Core — Integration Error Hierarchy

All exceptions raised by the registry, lifecycle manager and data-flow
coordinator.

Coordination errors (UnknownServiceError, ServiceUnroutable,
SecurityRejected, CoordinationTimeout, ServiceDispatchError) propagate to
the caller; the HTTP layer maps each kind to a status code.
Initialisation errors are collected into an InitializationPartialFailure
and never abort bring-up.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from xmrt.systems.integration.types import ServiceStatus


class IntegrationError(RuntimeError):
    """Base for all integration core errors."""


class ConfigurationError(IntegrationError):
    """The service map cannot be brought up (unknown dependency or a cycle)."""


class DuplicateServiceError(IntegrationError):
    """A service with this name is already registered (strict mode)."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Service already registered: {name}")
        self.name = name


class UnknownServiceError(IntegrationError):
    """No service is registered under this name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Service not found: {name}")
        self.name = name


class InvalidStatusTransition(IntegrationError):
    """The requested status change is not allowed by the service state machine."""

    def __init__(self, name: str, current: ServiceStatus, requested: ServiceStatus) -> None:
        super().__init__(
            f"Service {name!r} cannot move from {current.value} to {requested.value}"
        )
        self.name = name
        self.current = current
        self.requested = requested


class ServiceUnroutable(IntegrationError):
    """The service is registered but has no live handler to route to."""

    def __init__(self, name: str, reason: str = "no handler attached") -> None:
        super().__init__(f"Service {name!r} is not routable: {reason}")
        self.name = name
        self.reason = reason


class SecurityRejected(IntegrationError):
    """The security filter vetoed the payload. Dispatch never happened."""

    def __init__(self, reason: str = "rejected by security filter") -> None:
        super().__init__(reason)
        self.reason = reason


class CoordinationTimeout(IntegrationError):
    """The target handler did not complete within the requested timeout."""

    def __init__(self, target: str, timeout_ms: int) -> None:
        super().__init__(f"Service {target!r} did not respond within {timeout_ms}ms")
        self.target = target
        self.timeout_ms = timeout_ms


class ServiceDispatchError(IntegrationError):
    """The target handler raised while processing the payload."""

    def __init__(self, target: str, error: str) -> None:
        super().__init__(f"Service {target!r} failed: {error}")
        self.target = target
        self.error = error


class DependencyUnavailable(IntegrationError):
    """A service was not started because a dependency is not active."""

    def __init__(self, name: str, missing: list[str]) -> None:
        super().__init__(f"Service {name!r} has unavailable dependencies: {', '.join(missing)}")
        self.name = name
        self.missing = missing


class InitializationPartialFailure(IntegrationError):
    """
    One or more configured services failed to start.

    Carries every failure as a ``(name, cause)`` pair so callers can tell
    "fully up" from "partially degraded".
    """

    def __init__(self, failures: list[tuple[str, BaseException]]) -> None:
        names = ", ".join(name for name, _ in failures)
        super().__init__(f"{len(failures)} service(s) failed to start: {names}")
        self.failures = failures
