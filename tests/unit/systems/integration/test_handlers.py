"""
Unit tests for the built-in service handlers and factory resolution.
"""

from __future__ import annotations

import pytest

from xmrt.config import ServiceConfig
from xmrt.systems.integration.errors import ConfigurationError, SecurityRejected
from xmrt.systems.integration.handlers import (
    PassthroughHandler,
    SecurityFilterHandler,
    build_handler,
    call_hook,
    resolve,
)
from xmrt.systems.integration.types import RoutableHandler, RouteMode, ServiceStatus

# ─── Fixtures ─────────────────────────────────────────────────────────────────


class ExternalHandler:
    """Stand-in for a handler loaded from an import path."""

    def __init__(self, name: str, endpoint: str = "") -> None:
        self.name = name
        self.endpoint = endpoint

    def route(self, payload, *, mode=RouteMode.DISPATCH):
        return {"endpoint": self.endpoint}


class SyncHooks:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def route(self, payload, *, mode=RouteMode.DISPATCH):
        return payload

    def teardown(self) -> None:
        self.calls.append("teardown")


# ─── Tests ────────────────────────────────────────────────────────────────────


class TestPassthrough:
    @pytest.mark.asyncio
    async def test_returns_payload(self):
        handler = PassthroughHandler("supabase", url="http://localhost")
        result = await handler.route({"a": 1})
        assert result == {"a": 1}
        assert handler.routed_count == 1
        assert handler.params == {"url": "http://localhost"}

    def test_satisfies_protocol(self):
        assert isinstance(PassthroughHandler("x"), RoutableHandler)

    @pytest.mark.asyncio
    async def test_default_hooks_are_noops(self):
        handler = PassthroughHandler("x")
        assert await handler.initialize() is None
        assert await handler.teardown() is None
        assert await handler.report_status() is None


class TestSecurityFilter:
    @pytest.mark.asyncio
    async def test_clean_payload_passes_unchanged(self):
        handler = SecurityFilterHandler()
        assert await handler.route({"task": "x"}, mode=RouteMode.FILTER) is None

    @pytest.mark.asyncio
    async def test_blocked_key_rejected(self):
        handler = SecurityFilterHandler(blocked_keys=["seed_phrase"])
        with pytest.raises(SecurityRejected) as exc_info:
            await handler.route({"wallet": {"seed_phrase": "..."}}, mode=RouteMode.FILTER)
        assert "wallet.seed_phrase" in str(exc_info.value)
        assert handler.stats["rejected"] == 1

    @pytest.mark.asyncio
    async def test_blocked_key_case_insensitive(self):
        handler = SecurityFilterHandler(blocked_keys=["Private_Key"])
        with pytest.raises(SecurityRejected):
            await handler.route({"PRIVATE_KEY": "x"}, mode=RouteMode.FILTER)

    @pytest.mark.asyncio
    async def test_oversized_payload_rejected(self):
        handler = SecurityFilterHandler(max_payload_bytes=32)
        with pytest.raises(SecurityRejected) as exc_info:
            await handler.route({"blob": "x" * 100}, mode=RouteMode.FILTER)
        assert "exceeds limit" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_redaction_nested_and_in_lists(self):
        handler = SecurityFilterHandler()
        payload = {"users": [{"name": "a", "password": "p1"}], "secret": "s"}

        result = await handler.route(payload, mode=RouteMode.FILTER)

        assert result == {"users": [{"name": "a", "password": "[REDACTED]"}], "secret": "[REDACTED]"}
        assert payload["secret"] == "s"
        assert handler.stats["redacted"] == 1

    @pytest.mark.asyncio
    async def test_dispatch_mode_returns_scan_report(self):
        handler = SecurityFilterHandler(blocked_keys=["private_key"])
        report = await handler.route({"private_key": "x", "password": "y"})
        assert report["scanned"] is True
        assert report["blocked_fields"] == ["private_key"]
        assert "password" in report["redactable_fields"]
        assert report["size_bytes"] > 0


class TestBuildHandler:
    def test_default_is_passthrough(self):
        handler = build_handler("supabase", ServiceConfig())
        assert isinstance(handler, PassthroughHandler)
        assert handler.name == "supabase"

    def test_extra_keys_become_kwargs(self):
        config = ServiceConfig(handler="security_filter", blocked_keys=["x"], max_payload_bytes=10)
        handler = build_handler("security", config)
        assert isinstance(handler, SecurityFilterHandler)
        assert handler.name == "security"

    def test_custom_factory_table(self):
        config = ServiceConfig(handler="external", endpoint="http://svc")
        handler = build_handler("mesh", config, {"external": ExternalHandler})
        assert isinstance(handler, ExternalHandler)
        assert handler.endpoint == "http://svc"

    def test_import_path(self):
        config = ServiceConfig(handler="xmrt.systems.integration.handlers:PassthroughHandler")
        handler = build_handler("mesh", config, {})
        assert isinstance(handler, PassthroughHandler)

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            build_handler("mesh", ServiceConfig(handler="nonexistent"))

    def test_bad_import_path(self):
        with pytest.raises(ConfigurationError):
            build_handler("mesh", ServiceConfig(handler="xmrt.no_such_module:factory"))

    def test_missing_factory_attribute(self):
        with pytest.raises(ConfigurationError):
            build_handler("mesh", ServiceConfig(handler="xmrt.systems.integration.handlers:nope"))


class TestHooks:
    @pytest.mark.asyncio
    async def test_resolve_plain_value(self):
        assert await resolve(5) == 5

    @pytest.mark.asyncio
    async def test_missing_hook_returns_none(self):
        assert await call_hook(ExternalHandler("x"), "initialize", 1.0) is None

    @pytest.mark.asyncio
    async def test_sync_hook_called(self):
        handler = SyncHooks()
        await call_hook(handler, "teardown", 1.0)
        assert handler.calls == ["teardown"]

    @pytest.mark.asyncio
    async def test_async_hook_result(self):
        class Reporter:
            def route(self, payload, *, mode=RouteMode.DISPATCH):
                return payload

            async def report_status(self):
                return ServiceStatus.DEGRADED

        assert await call_hook(Reporter(), "report_status", 1.0) == ServiceStatus.DEGRADED
