"""
XMRT Core — Service Handlers

Built-in handler kinds and the factory lookup used by the LifecycleManager
to turn a ServiceConfig entry into a live handler.

Built-in kinds:
  passthrough      — logs and returns the payload (default for every service)
  security_filter  — blocks, redacts and size-limits payloads in filter mode

Any other kind is resolved as a ``package.module:factory`` import path. The
factory is called with ``name=<service key>`` plus the service's extra
config keys as keyword arguments.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
import importlib
import inspect
import json
from typing import TYPE_CHECKING, Any

import structlog

from xmrt.systems.integration.errors import ConfigurationError, SecurityRejected
from xmrt.systems.integration.types import RouteMode, ServiceHandler

if TYPE_CHECKING:
    from xmrt.config import ServiceConfig

logger = structlog.get_logger("xmrt.systems.integration.handlers")

HandlerFactory = Callable[..., Any]

_REDACTED: str = "[REDACTED]"


async def resolve(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


async def call_hook(handler: Any, hook_name: str, timeout_s: float | None = None) -> Any:
    """
    Call an optional lifecycle hook (sync or async) on a handler.

    Returns None when the handler does not define the hook.
    """
    hook = getattr(handler, hook_name, None)
    if hook is None or not callable(hook):
        return None
    if timeout_s is None:
        return await resolve(hook())
    return await asyncio.wait_for(resolve(hook()), timeout=timeout_s)


# ─── Built-in Handlers ───────────────────────────────────────────────


class PassthroughHandler(ServiceHandler):
    """
    Default handler for services whose backend lives elsewhere.

    Accepts any extra config keys and keeps them on ``params``.
    """

    def __init__(self, name: str, **params: Any) -> None:
        self.name = name
        self.params = params
        self._logger = logger.bind(component="passthrough", service=name)
        self._routed: int = 0

    async def route(
        self,
        payload: dict[str, Any],
        *,
        mode: RouteMode = RouteMode.DISPATCH,
    ) -> Any:
        self._routed += 1
        self._logger.info("routing_to_service", mode=mode.value, keys=sorted(payload))
        return payload

    @property
    def routed_count(self) -> int:
        return self._routed


class SecurityFilterHandler(ServiceHandler):
    """
    Payload filter for the ``security`` service.

    In filter mode:
      - any key listed in ``blocked_keys`` (at any depth) rejects the payload
      - a serialised payload larger than ``max_payload_bytes`` is rejected
      - values under ``redact_keys`` are replaced and the redacted copy returned

    In dispatch mode it returns a scan report instead of vetoing.
    """

    def __init__(
        self,
        name: str = "security",
        blocked_keys: Iterable[str] = (),
        redact_keys: Iterable[str] = ("password", "private_key", "secret"),
        max_payload_bytes: int | None = None,
        **params: Any,
    ) -> None:
        self.name = name
        self.params = params
        self._blocked = frozenset(k.lower() for k in blocked_keys)
        self._redact = frozenset(k.lower() for k in redact_keys)
        self._max_bytes = max_payload_bytes
        self._logger = logger.bind(component="security_filter", service=name)

        self._total_scanned: int = 0
        self._total_rejected: int = 0
        self._total_redacted: int = 0

    async def route(
        self,
        payload: dict[str, Any],
        *,
        mode: RouteMode = RouteMode.DISPATCH,
    ) -> Any:
        self._total_scanned += 1
        blocked = self._find_keys(payload, self._blocked)

        if mode != RouteMode.FILTER:
            return {
                "scanned": True,
                "blocked_fields": blocked,
                "redactable_fields": self._find_keys(payload, self._redact),
                "size_bytes": self._payload_size(payload),
            }

        if blocked:
            self._total_rejected += 1
            self._logger.warning("payload_blocked", fields=blocked)
            raise SecurityRejected(f"blocked field(s): {', '.join(blocked)}")

        if self._max_bytes is not None:
            size = self._payload_size(payload)
            if size > self._max_bytes:
                self._total_rejected += 1
                self._logger.warning("payload_too_large", size=size, limit=self._max_bytes)
                raise SecurityRejected(
                    f"payload of {size} bytes exceeds limit of {self._max_bytes}"
                )

        redacted_fields = self._find_keys(payload, self._redact)
        if not redacted_fields:
            return None

        self._total_redacted += 1
        self._logger.info("payload_redacted", fields=redacted_fields)
        return self._redact_copy(payload)

    # ─── Helpers ─────────────────────────────────────────────────────

    @classmethod
    def _find_keys(cls, value: Any, keys: frozenset[str], prefix: str = "") -> list[str]:
        found: list[str] = []
        if not keys:
            return found
        if isinstance(value, Mapping):
            for k, v in value.items():
                path = f"{prefix}.{k}" if prefix else str(k)
                if str(k).lower() in keys:
                    found.append(path)
                found.extend(cls._find_keys(v, keys, path))
        elif isinstance(value, list | tuple):
            for i, item in enumerate(value):
                found.extend(cls._find_keys(item, keys, f"{prefix}[{i}]"))
        return found

    def _redact_copy(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {
                k: _REDACTED if str(k).lower() in self._redact else self._redact_copy(v)
                for k, v in value.items()
            }
        if isinstance(value, list | tuple):
            return [self._redact_copy(item) for item in value]
        return value

    @staticmethod
    def _payload_size(payload: Any) -> int:
        return len(json.dumps(payload, default=str).encode("utf-8"))

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "scanned": self._total_scanned,
            "rejected": self._total_rejected,
            "redacted": self._total_redacted,
        }


BUILTIN_FACTORIES: dict[str, HandlerFactory] = {
    "passthrough": PassthroughHandler,
    "security_filter": SecurityFilterHandler,
}


# ─── Factory Resolution ──────────────────────────────────────────────


def _import_factory(path: str) -> HandlerFactory:
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Handler path must look like 'package.module:factory', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import handler module {module_name!r}: {exc}") from exc
    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ConfigurationError(f"Handler factory {path!r} not found")
    return factory


def build_handler(
    name: str,
    config: ServiceConfig,
    factories: Mapping[str, HandlerFactory] | None = None,
) -> Any:
    """Construct the handler for one configured service."""
    kind = config.handler
    table = BUILTIN_FACTORIES if factories is None else factories
    factory = table.get(kind)
    if factory is None:
        if ":" not in kind:
            raise ConfigurationError(f"Unknown handler kind {kind!r} for service {name!r}")
        factory = _import_factory(kind)
    return factory(name=name, **config.params)
