"""
Pytest configuration for integration gateway tests.

Provides an in-memory network for end-to-end client tests: a scripted
resolver plus an httpcore backend that serves canned HTTP/1.1 responses, both
installed as the process-wide guarded backend. No test opens a real socket.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

import httpcore
import pytest

from integration_gateway import client_factory
from integration_gateway.resolver_guard import GuardedNetworkBackend
from integration_gateway.settings import clear_settings_cache


def _http_response(
    status: int = 200,
    reason: str = "OK",
    body: bytes = b"",
    headers: dict[str, str] | None = None,
    close: bool = True,
) -> bytes:
    """Serialize one HTTP/1.1 response."""
    lines = [f"HTTP/1.1 {status} {reason}"]
    merged = {"Content-Length": str(len(body))}
    if close:
        merged["Connection"] = "close"
    merged.update(headers or {})
    lines.extend(f"{name}: {value}" for name, value in merged.items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii") + body


def _json_response(
    status: int = 200, reason: str = "OK", body: bytes = b"{}"
) -> bytes:
    return _http_response(status, reason, body, {"Content-Type": "application/json"})


class ScriptedStream(httpcore.AsyncMockStream):
    """Mock stream that records what the client writes and the TLS server name."""

    def __init__(self, network: "MockNetwork", buffer: list[bytes]) -> None:
        super().__init__(buffer)
        self._network = network

    async def write(self, buffer: bytes, timeout: float | None = None) -> None:
        self._network.written.append(buffer)

    async def start_tls(self, ssl_context, server_hostname=None, timeout=None):
        self._network.tls_server_names.append(server_hostname)
        return self


class HangingStream(httpcore.AsyncMockStream):
    """A stream whose server never answers."""

    async def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        await asyncio.sleep(3600)
        return b""


class ScriptedBackend(httpcore.AsyncNetworkBackend):
    """
    Inner backend serving one canned response per connection, in order.

    The last response is reused once the script runs out. A response of None
    yields a connection that never answers.
    """

    def __init__(self, network: "MockNetwork") -> None:
        self._network = network

    async def connect_tcp(
        self, host, port, timeout=None, local_address=None, socket_options=None
    ):
        self._network.connected.append((host, port))
        script = self._network.responses
        response = script.pop(0) if len(script) > 1 else script[0]
        if response is None:
            return HangingStream([])
        return ScriptedStream(self._network, [response])

    async def connect_unix_socket(self, path, timeout=None, socket_options=None):
        raise AssertionError("unix sockets are never used")

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass
class MockNetwork:
    """
    State of the in-memory network.

    resolve maps hostname -> addresses, or -> a list of address lists consumed
    one per lookup (for rebinding). Unknown hosts resolve to a public address.
    """

    responses: list[bytes | None] = field(default_factory=lambda: [_http_response()])
    resolve: dict[str, list] = field(default_factory=dict)
    lookups: list[str] = field(default_factory=list)
    connected: list[tuple[str, int]] = field(default_factory=list)
    written: list[bytes] = field(default_factory=list)
    tls_server_names: list[str | None] = field(default_factory=list)
    resolver_delay: float = 0.0

    async def resolver(self, hostname: str, port: int) -> list[str]:
        self.lookups.append(hostname)
        if self.resolver_delay:
            await asyncio.sleep(self.resolver_delay)
        answer = self.resolve.get(hostname, ["93.184.216.34"])
        if answer and isinstance(answer[0], list):
            return answer.pop(0) if len(answer) > 1 else answer[0]
        return answer

    @property
    def requests(self) -> list[bytes]:
        """Request heads written by the client (bodies are separate writes)."""
        return [chunk for chunk in self.written if b"HTTP/1.1\r\n" in chunk]


@pytest.fixture(autouse=True)
def _clear_settings():
    """Settings are cached; tests that patch the environment need a fresh load."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove gateway and admin auth env vars for a clean test state."""
    for var in (
        "INTEGRATION_GATEWAY_TIMEOUT_MS",
        "INTEGRATION_GATEWAY_DNS_TIMEOUT",
        "INTEGRATION_GATEWAY_MAX_CONNECTIONS",
        "INTEGRATION_GATEWAY_MAX_KEEPALIVE",
        "INTEGRATION_GATEWAY_MAX_REDIRECTS",
        "ADMIN_API_KEYS",
        "ADMIN_API_KEY",
        "ADMIN_AUTH_ENABLED",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def mock_network(monkeypatch) -> Callable[..., MockNetwork]:
    """
    Install an in-memory network behind the process-wide guarded backend.

    Usage:
        network = mock_network([json_response(body=b'{"total": 3}')])
        async with create_client("https://assets.example.com") as client:
            ...
        assert network.connected == [("93.184.216.34", 443)]
    """

    def install(
        responses: list[bytes | None] | None = None,
        resolve: dict[str, list] | None = None,
        dns_timeout: float = 5.0,
        resolver_delay: float = 0.0,
    ) -> MockNetwork:
        network = MockNetwork(resolver_delay=resolver_delay)
        if responses is not None:
            network.responses = list(responses)
        if resolve is not None:
            network.resolve = resolve
        backend = GuardedNetworkBackend(
            resolver=network.resolver,
            inner=ScriptedBackend(network),
            dns_timeout=dns_timeout,
        )
        monkeypatch.setattr(client_factory, "_GUARDED_BACKEND", backend)
        return network

    return install


@pytest.fixture
def http_response():
    """Factory for canned HTTP/1.1 responses (Connection: close by default)."""
    return _http_response


@pytest.fixture
def json_response():
    """Factory for canned application/json responses."""
    return _json_response
