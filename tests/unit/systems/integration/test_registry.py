"""
Unit tests for the ServiceRegistry and the ServiceDescriptor state machine.
"""

from __future__ import annotations

from pydantic import ValidationError
import pytest

from xmrt.systems.integration.errors import (
    DuplicateServiceError,
    InvalidStatusTransition,
    UnknownServiceError,
)
from xmrt.systems.integration.handlers import PassthroughHandler
from xmrt.systems.integration.registry import ServiceRegistry
from xmrt.systems.integration.types import ServiceDescriptor, ServiceStatus

# ─── Fixtures ─────────────────────────────────────────────────────────────────


def _make_descriptor(name: str = "supabase", **kwargs) -> ServiceDescriptor:
    return ServiceDescriptor(name=name, **kwargs)


# ─── Tests ────────────────────────────────────────────────────────────────────


class TestRegistration:
    def test_register_and_get(self):
        registry = ServiceRegistry()
        descriptor = registry.register(_make_descriptor())
        assert registry.get("supabase") is descriptor
        assert "supabase" in registry
        assert len(registry) == 1

    def test_get_unknown_returns_none(self):
        registry = ServiceRegistry()
        assert registry.get("nope") is None

    def test_require_unknown_raises(self):
        registry = ServiceRegistry()
        with pytest.raises(UnknownServiceError) as exc_info:
            registry.require("nope")
        assert exc_info.value.name == "nope"

    def test_duplicate_rejected_in_strict_mode(self):
        registry = ServiceRegistry(strict=True)
        original_handler = PassthroughHandler("supabase")
        original = _make_descriptor(handler=original_handler)
        registry.register(original)

        with pytest.raises(DuplicateServiceError):
            registry.register(_make_descriptor(handler=PassthroughHandler("supabase")))

        assert registry.get("supabase") is original
        assert registry.get("supabase").handler is original_handler
        assert len(registry) == 1

    def test_duplicate_replaces_when_not_strict(self):
        registry = ServiceRegistry(strict=False)
        registry.register(_make_descriptor())
        replacement = _make_descriptor(capabilities=frozenset({"auth"}))
        registry.register(replacement)

        assert registry.get("supabase") is replacement
        assert len(registry) == 1

    def test_replacement_keeps_position(self):
        registry = ServiceRegistry(strict=False)
        for name in ("a", "b", "c"):
            registry.register(_make_descriptor(name))
        registry.register(_make_descriptor("a"))
        assert registry.names() == ["a", "b", "c"]

    def test_insertion_order_preserved(self):
        registry = ServiceRegistry()
        names = ["supabase", "security", "mesh_network", "agent_framework"]
        for name in names:
            registry.register(_make_descriptor(name))
        assert registry.names() == names
        assert [d.name for d in registry.list_all()] == names
        assert [d.name for d in registry] == names


class TestDescriptor:
    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            ServiceDescriptor(name="   ")

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            ServiceDescriptor(name="")

    def test_name_is_frozen(self):
        descriptor = _make_descriptor()
        with pytest.raises(ValidationError):
            descriptor.name = "other"

    def test_handler_without_route_rejected(self):
        with pytest.raises(ValidationError):
            ServiceDescriptor(name="x", handler=object())

    def test_attach_rejects_handler_without_route(self):
        descriptor = _make_descriptor()
        with pytest.raises(ValueError):
            descriptor.attach(object())

    def test_pending_is_not_routable(self):
        descriptor = _make_descriptor(handler=PassthroughHandler("supabase"))
        assert descriptor.status == ServiceStatus.PENDING
        assert not descriptor.is_routable

    def test_active_without_handler_is_not_routable(self):
        descriptor = _make_descriptor()
        descriptor.transition_to(ServiceStatus.ACTIVE)
        assert not descriptor.is_routable

    def test_degraded_with_handler_is_routable(self):
        descriptor = _make_descriptor(handler=PassthroughHandler("supabase"))
        descriptor.transition_to(ServiceStatus.DEGRADED, "slow")
        assert descriptor.is_routable
        assert descriptor.status_reason == "slow"

    def test_inactive_is_terminal(self):
        descriptor = _make_descriptor()
        descriptor.transition_to(ServiceStatus.INACTIVE)
        assert not descriptor.can_transition_to(ServiceStatus.ACTIVE)
        with pytest.raises(InvalidStatusTransition):
            descriptor.transition_to(ServiceStatus.ACTIVE)

    def test_cannot_return_to_pending(self):
        descriptor = _make_descriptor()
        descriptor.transition_to(ServiceStatus.ACTIVE)
        with pytest.raises(InvalidStatusTransition) as exc_info:
            descriptor.transition_to(ServiceStatus.PENDING)
        assert exc_info.value.current == ServiceStatus.ACTIVE
        assert exc_info.value.requested == ServiceStatus.PENDING

    def test_release_drops_handler(self):
        handler = PassthroughHandler("supabase")
        descriptor = _make_descriptor(handler=handler)
        descriptor.transition_to(ServiceStatus.ACTIVE)

        released = descriptor.release()

        assert released is handler
        assert descriptor.handler is None
        assert descriptor.status == ServiceStatus.INACTIVE
        assert descriptor.status_reason == "shutdown"

    def test_handler_excluded_from_dump(self):
        descriptor = _make_descriptor(handler=PassthroughHandler("supabase"))
        assert "handler" not in descriptor.model_dump()


class TestStatus:
    def test_set_status_returns_previous(self):
        registry = ServiceRegistry()
        registry.register(_make_descriptor())
        previous = registry.set_status("supabase", ServiceStatus.ACTIVE)
        assert previous == ServiceStatus.PENDING
        assert registry.get("supabase").status == ServiceStatus.ACTIVE

    def test_set_status_same_value_is_noop(self):
        registry = ServiceRegistry()
        registry.register(_make_descriptor())
        registry.set_status("supabase", ServiceStatus.ACTIVE)
        changed_at = registry.get("supabase").status_changed_at

        previous = registry.set_status("supabase", ServiceStatus.ACTIVE)

        assert previous == ServiceStatus.ACTIVE
        assert registry.get("supabase").status_changed_at == changed_at

    def test_set_status_unknown_raises(self):
        registry = ServiceRegistry()
        with pytest.raises(UnknownServiceError):
            registry.set_status("ghost", ServiceStatus.ACTIVE)

    def test_invalid_transition_leaves_status(self):
        registry = ServiceRegistry()
        registry.register(_make_descriptor())
        registry.set_status("supabase", ServiceStatus.INACTIVE)
        with pytest.raises(InvalidStatusTransition):
            registry.set_status("supabase", ServiceStatus.DEGRADED)
        assert registry.get("supabase").status == ServiceStatus.INACTIVE

    def test_summary_counts(self):
        registry = ServiceRegistry()
        for name in ("a", "b", "c", "d", "e"):
            registry.register(_make_descriptor(name))
        registry.set_status("a", ServiceStatus.ACTIVE)
        registry.set_status("b", ServiceStatus.ACTIVE)
        registry.set_status("c", ServiceStatus.DEGRADED)
        registry.set_status("d", ServiceStatus.INACTIVE)

        summary = registry.summary()

        assert summary.total == 5
        assert summary.active == 2
        assert summary.degraded == 1
        assert summary.inactive == 1
        assert summary.pending == 1
        assert summary.active + summary.degraded + summary.inactive + summary.pending == summary.total

    def test_summary_empty(self):
        summary = ServiceRegistry().summary()
        assert summary.total == 0
        assert summary.active == 0
