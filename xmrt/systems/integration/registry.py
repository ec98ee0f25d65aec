"""
XMRT Core — Service Registry

Owns the mapping from service name to ServiceDescriptor. Insertion order is
preserved so status enumeration is deterministic.

Lookups never suspend: callers that read a descriptor and its status get a
consistent view without any registry-wide lock.
"""

from __future__ import annotations

from collections.abc import Iterator

import structlog

from xmrt.systems.integration.errors import DuplicateServiceError, UnknownServiceError
from xmrt.systems.integration.types import ServiceDescriptor, ServiceStatus, ServiceSummary

logger = structlog.get_logger("xmrt.systems.integration.registry")


class ServiceRegistry:
    """
    Name → ServiceDescriptor mapping.

    In strict mode (the default) registering an existing name raises
    DuplicateServiceError and leaves the original descriptor untouched.
    Otherwise the new descriptor replaces the old one in place.
    """

    def __init__(self, strict: bool = True) -> None:
        self._strict = strict
        self._services: dict[str, ServiceDescriptor] = {}
        self._logger = logger.bind(component="service_registry")

    @property
    def strict(self) -> bool:
        return self._strict

    # ─── Registration ────────────────────────────────────────────────

    def register(self, descriptor: ServiceDescriptor) -> ServiceDescriptor:
        name = descriptor.name
        existing = self._services.get(name)
        if existing is not None:
            if self._strict:
                raise DuplicateServiceError(name)
            self._logger.warning(
                "service_replaced",
                service=name,
                previous_status=existing.status.value,
            )

        self._services[name] = descriptor
        self._logger.info(
            "service_registered",
            service=name,
            status=descriptor.status.value,
            capabilities=sorted(descriptor.capabilities),
        )
        return descriptor

    # ─── Lookup ──────────────────────────────────────────────────────

    def get(self, name: str) -> ServiceDescriptor | None:
        return self._services.get(name)

    def require(self, name: str) -> ServiceDescriptor:
        descriptor = self._services.get(name)
        if descriptor is None:
            raise UnknownServiceError(name)
        return descriptor

    def list_all(self) -> list[ServiceDescriptor]:
        return list(self._services.values())

    def names(self) -> list[str]:
        return list(self._services)

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def __len__(self) -> int:
        return len(self._services)

    def __iter__(self) -> Iterator[ServiceDescriptor]:
        return iter(self.list_all())

    # ─── Status ──────────────────────────────────────────────────────

    def set_status(self, name: str, status: ServiceStatus, reason: str = "") -> ServiceStatus:
        """Transition a service's status. Returns the previous status."""
        descriptor = self.require(name)
        previous = descriptor.transition_to(status, reason)
        if previous != status:
            self._logger.info(
                "service_status_changed",
                service=name,
                previous=previous.value,
                status=status.value,
                reason=reason,
            )
        return previous

    def summary(self) -> ServiceSummary:
        counts = {s: 0 for s in ServiceStatus}
        for descriptor in self._services.values():
            counts[descriptor.status] += 1
        return ServiceSummary(
            total=len(self._services),
            active=counts[ServiceStatus.ACTIVE],
            degraded=counts[ServiceStatus.DEGRADED],
            inactive=counts[ServiceStatus.INACTIVE],
            pending=counts[ServiceStatus.PENDING],
        )
