"""
Integration tests for the HTTP surface.

Runs the full FastAPI lifespan, so every request goes through a real
IntegrationCore with in-process handlers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient
import pytest

from xmrt import main
from xmrt.config import ServerConfig, ServiceConfig, XMRTConfig
from xmrt.main import create_app
from xmrt.systems.integration.types import RouteMode

# ─── Fixtures ─────────────────────────────────────────────────────────────────


class SlowHandler:
    def __init__(self, name: str) -> None:
        self.name = name

    async def route(self, payload: dict[str, Any], *, mode: RouteMode = RouteMode.DISPATCH) -> Any:
        await asyncio.sleep(1.0)
        return payload


class BrokenHandler:
    def __init__(self, name: str) -> None:
        self.name = name

    async def route(self, payload: dict[str, Any], *, mode: RouteMode = RouteMode.DISPATCH) -> Any:
        raise KeyError("wallet")


def _make_config() -> XMRTConfig:
    return XMRTConfig(
        instance_id="api-test",
        services={
            "supabase": ServiceConfig(capabilities=["database"]),
            "security": ServiceConfig(handler="security_filter", blocked_keys=["private_key"]),
            "slow": ServiceConfig(handler="slow"),
            "broken": ServiceConfig(handler="broken"),
            "mesh_network": ServiceConfig(enabled=False),
        },
    )


@pytest.fixture
def client() -> Iterator[TestClient]:
    app = create_app(
        config=_make_config(),
        factories={"slow": SlowHandler, "broken": BrokenHandler},
    )
    with TestClient(app) as test_client:
        yield test_client


# ─── Tests ────────────────────────────────────────────────────────────────────


class TestHealth:
    def test_health(self, client: TestClient):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["integration_core"] is True
        assert body["version"] == "1.0.0"


class TestStatus:
    def test_system_status(self, client: TestClient):
        body = client.get("/api/system/status").json()
        assert body["core"]["initialized"] is True
        assert body["core"]["state"] == "ready"
        assert body["core"]["instance_id"] == "api-test"
        assert body["summary"]["total"] == 4
        assert body["summary"]["active"] == 4
        assert "mesh_network" not in body["services"]

    def test_service_found(self, client: TestClient):
        resp = client.get("/api/services/supabase")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "active"
        assert body["capabilities"] == ["database"]
        assert body["routable"] is True

    def test_service_not_found(self, client: TestClient):
        resp = client.get("/api/services/ghost")
        assert resp.status_code == 404
        assert resp.json() == {"error": "ghost not initialized"}


class TestCoordinate:
    def test_success(self, client: TestClient):
        resp = client.post(
            "/api/coordinate",
            json={"source": "dashboard", "target": "supabase", "payload": {"task": "x"}},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["coordination_id"]
        assert body["filtered"] is True
        assert body["result"]["task"] == "x"
        assert body["result"]["_metadata"]["source"] == "dashboard"
        assert body["result"]["_metadata"]["request_id"] == body["coordination_id"]

    def test_unknown_target(self, client: TestClient):
        resp = client.post("/api/coordinate", json={"target": "ghost"})
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error_type"] == "UnknownServiceError"

    def test_security_rejection(self, client: TestClient):
        resp = client.post(
            "/api/coordinate",
            json={"target": "supabase", "payload": {"private_key": "0xdead"}},
        )
        assert resp.status_code == 403
        assert resp.json()["error_type"] == "SecurityRejected"

    def test_timeout(self, client: TestClient):
        resp = client.post(
            "/api/coordinate",
            json={"target": "slow", "options": {"timeoutMs": 50}},
        )
        assert resp.status_code == 504
        assert resp.json()["error_type"] == "CoordinationTimeout"

    def test_handler_failure(self, client: TestClient):
        resp = client.post("/api/coordinate", json={"target": "broken"})
        assert resp.status_code == 502
        assert resp.json()["error_type"] == "ServiceDispatchError"

    def test_invalid_options(self, client: TestClient):
        resp = client.post(
            "/api/coordinate",
            json={"target": "supabase", "options": {"timeoutMs": -1}},
        )
        assert resp.status_code == 422
        assert resp.json()["success"] is False

    def test_missing_target_rejected_by_schema(self, client: TestClient):
        resp = client.post("/api/coordinate", json={"payload": {}})
        assert resp.status_code == 422


class TestAudit:
    def test_recent_events_newest_first(self, client: TestClient):
        client.post("/api/coordinate", json={"target": "supabase", "payload": {"n": 1}})
        client.post("/api/coordinate", json={"target": "ghost"})

        body = client.get("/api/audit", params={"limit": 2}).json()

        assert len(body["events"]) == 2
        assert body["events"][0]["target"] == "ghost"
        assert body["events"][0]["outcome"] == "failed"
        assert body["events"][1]["target"] == "supabase"
        assert body["events"][1]["outcome"] == "success"
        assert body["stats"]["outcomes"]["success"] == 1
        assert body["stats"]["outcomes"]["failed"] == 1


class TestShutdown:
    def test_core_shut_down_on_exit(self):
        app = create_app(config=_make_config(), factories={"slow": SlowHandler, "broken": BrokenHandler})
        with TestClient(app):
            core = app.state.core
            assert core.is_ready
        assert core.state == "shutdown"
        assert core.get_service("supabase").status == "inactive"


class TestServerConfig:
    def test_cors_origins_from_config(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("CORS_ALLOWED_ORIGINS", raising=False)
        config = _make_config()
        config.server = ServerConfig(cors_origins=["https://dash.xmrt.io"])

        client = TestClient(create_app(config=config))
        allowed = client.get("/health", headers={"Origin": "https://dash.xmrt.io"})
        other = client.get("/health", headers={"Origin": "https://evil.example"})

        assert allowed.headers["access-control-allow-origin"] == "https://dash.xmrt.io"
        assert "access-control-allow-origin" not in other.headers

    def test_default_app_reads_yaml_before_startup(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.delenv("CORS_ALLOWED_ORIGINS", raising=False)
        path = tmp_path / "xmrt.yaml"
        path.write_text(
            "server:\n  port: 6100\n  cors_origins: [https://yaml.xmrt.io]\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("XMRT_CONFIG_PATH", str(path))

        app = create_app()

        assert app.state.config.server.port == 6100
        resp = TestClient(app).get("/health", headers={"Origin": "https://yaml.xmrt.io"})
        assert resp.headers["access-control-allow-origin"] == "https://yaml.xmrt.io"
        assert resp.json()["integration_core"] is False

    def test_run_uses_configured_host_and_port(self, monkeypatch: pytest.MonkeyPatch):
        calls: list[dict[str, Any]] = []
        monkeypatch.setattr(main.uvicorn, "run", lambda app, **kwargs: calls.append(kwargs))

        main.run()

        server = main.app.state.config.server
        assert calls == [{"host": server.host, "port": server.port}]
