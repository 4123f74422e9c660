"""
Unit tests for resolver_guard.py - connect-time address validation
==================================================================

Tests cover:
- Every resolved address is classified before the inner backend is called
- The inner backend receives the validated address, never the hostname
- Mixed answers (one public, one private) are refused
- DNS failure, empty answers and slow resolution
- Unix sockets are refused
- resolve_host() uses the event loop resolver and de-duplicates answers
"""

import asyncio
import socket
from unittest.mock import AsyncMock, patch

import httpcore
import pytest

from integration_gateway.client_factory import get_guarded_backend
from integration_gateway.resolver_guard import (
    GuardedNetworkBackend,
    ResolutionBlockedError,
    check_resolved_address,
    resolve_host,
)
from integration_gateway.settings import clear_settings_cache


class RecordingBackend(httpcore.AsyncMockBackend):
    def __init__(self):
        super().__init__([])
        self.calls = []

    async def connect_tcp(self, host, port, **kwargs):
        self.calls.append((host, port))
        return await super().connect_tcp(host, port, **kwargs)


def _resolver(*addresses):
    return AsyncMock(return_value=list(addresses))


class TestCheckResolvedAddress:
    def test_public_address_passes(self):
        check_resolved_address("example.com", "93.184.216.34")

    def test_private_address_raises(self):
        with pytest.raises(ResolutionBlockedError) as exc_info:
            check_resolved_address("evil.example.com", "10.0.0.7")
        err = exc_info.value
        assert err.hostname == "evil.example.com"
        assert err.address == "10.0.0.7"
        assert err.reason == "private IP range 10.0.0.0/8"
        assert "SSRF blocked" in str(err)

    def test_unparseable_address_is_blocked(self):
        with pytest.raises(ResolutionBlockedError) as exc_info:
            check_resolved_address("example.com", "not-an-ip")
        assert "unparseable" in exc_info.value.reason

    def test_is_httpcore_connect_error(self):
        assert issubclass(ResolutionBlockedError, httpcore.ConnectError)


class TestGuardedConnect:
    @pytest.mark.asyncio
    async def test_connects_to_validated_address(self):
        inner = RecordingBackend()
        backend = GuardedNetworkBackend(
            resolver=_resolver("93.184.216.34"), inner=inner
        )
        stream = await backend.connect_tcp("assets.example.com", 443)
        assert isinstance(stream, httpcore.AsyncMockStream)
        assert inner.calls == [("93.184.216.34", 443)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "address", ["127.0.0.1", "169.254.169.254", "192.168.1.1", "::1", "fd00::5"]
    )
    async def test_blocked_address_never_connects(self, address):
        inner = RecordingBackend()
        backend = GuardedNetworkBackend(resolver=_resolver(address), inner=inner)
        with pytest.raises(ResolutionBlockedError):
            await backend.connect_tcp("rebind.example.com", 443)
        assert inner.calls == []

    @pytest.mark.asyncio
    async def test_any_blocked_answer_refuses(self):
        inner = RecordingBackend()
        backend = GuardedNetworkBackend(
            resolver=_resolver("93.184.216.34", "10.0.0.1"), inner=inner
        )
        with pytest.raises(ResolutionBlockedError) as exc_info:
            await backend.connect_tcp("mixed.example.com", 80)
        assert exc_info.value.address == "10.0.0.1"
        assert inner.calls == []

    @pytest.mark.asyncio
    async def test_first_answer_used(self):
        inner = RecordingBackend()
        backend = GuardedNetworkBackend(
            resolver=_resolver("2606:4700::1111", "1.1.1.1"), inner=inner
        )
        await backend.connect_tcp("dual.example.com", 443)
        assert inner.calls == [("2606:4700::1111", 443)]

    @pytest.mark.asyncio
    async def test_every_connect_resolves_again(self):
        inner = RecordingBackend()
        resolver = AsyncMock(side_effect=[["93.184.216.34"], ["127.0.0.1"]])
        backend = GuardedNetworkBackend(resolver=resolver, inner=inner)

        await backend.connect_tcp("rebind.example.com", 443)
        with pytest.raises(ResolutionBlockedError):
            await backend.connect_tcp("rebind.example.com", 443)

        assert resolver.await_count == 2
        assert inner.calls == [("93.184.216.34", 443)]

    @pytest.mark.asyncio
    async def test_resolution_error_is_connect_error(self):
        resolver = AsyncMock(side_effect=socket.gaierror(-2, "Name or service not known"))
        backend = GuardedNetworkBackend(resolver=resolver, inner=RecordingBackend())
        with pytest.raises(httpcore.ConnectError) as exc_info:
            await backend.connect_tcp("nope.invalid", 443)
        assert not isinstance(exc_info.value, ResolutionBlockedError)
        assert "DNS resolution failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_answer_is_connect_error(self):
        backend = GuardedNetworkBackend(resolver=_resolver(), inner=RecordingBackend())
        with pytest.raises(httpcore.ConnectError, match="no results"):
            await backend.connect_tcp("empty.example.com", 443)

    @pytest.mark.asyncio
    async def test_slow_resolution_times_out(self):
        async def slow_resolver(host, port):
            await asyncio.sleep(5)
            return ["93.184.216.34"]

        backend = GuardedNetworkBackend(
            resolver=slow_resolver, inner=RecordingBackend(), dns_timeout=0.05
        )
        with pytest.raises(httpcore.ConnectTimeout):
            await backend.connect_tcp("slow.example.com", 443)

    @pytest.mark.asyncio
    async def test_unix_socket_refused(self):
        backend = GuardedNetworkBackend(inner=RecordingBackend())
        with pytest.raises(httpcore.ConnectError):
            await backend.connect_unix_socket("/var/run/docker.sock")


class TestResolveHost:
    @pytest.mark.asyncio
    async def test_uses_loop_resolver_and_dedupes(self):
        infos = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 443)),
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 443)),
            (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("2606:2800::1", 443, 0, 0)),
        ]
        loop = asyncio.get_running_loop()
        with patch.object(
            loop, "getaddrinfo", AsyncMock(return_value=infos)
        ) as mock_getaddrinfo:
            addresses = await resolve_host("example.com", 443)

        assert addresses == ["93.184.216.34", "2606:2800::1"]
        mock_getaddrinfo.assert_awaited_once()
        assert mock_getaddrinfo.await_args.args[:2] == ("example.com", 443)

    @pytest.mark.asyncio
    async def test_resolution_error_propagates(self):
        loop = asyncio.get_running_loop()
        with patch.object(
            loop, "getaddrinfo", AsyncMock(side_effect=socket.gaierror(-2, "fail"))
        ):
            with pytest.raises(socket.gaierror):
                await resolve_host("nope.invalid", 80)


class TestDNSTimeoutSetting:
    @pytest.mark.asyncio
    async def test_timeout_read_from_current_settings(self, clean_env, monkeypatch):
        async def slow_resolver(host, port):
            await asyncio.sleep(5)
            return ["93.184.216.34"]

        backend = GuardedNetworkBackend(
            resolver=slow_resolver, inner=RecordingBackend()
        )
        assert backend.dns_timeout == 5.0

        monkeypatch.setenv("INTEGRATION_GATEWAY_DNS_TIMEOUT", "0.05")
        clear_settings_cache()
        assert backend.dns_timeout == 0.05
        with pytest.raises(httpcore.ConnectTimeout, match="after 0.05s"):
            await backend.connect_tcp("slow.example.com", 443)

    def test_explicit_timeout_wins(self, monkeypatch):
        monkeypatch.setenv("INTEGRATION_GATEWAY_DNS_TIMEOUT", "9")
        clear_settings_cache()
        assert GuardedNetworkBackend(dns_timeout=0.5).dns_timeout == 0.5

    def test_process_wide_backend_follows_environment(self, monkeypatch):
        monkeypatch.setenv("INTEGRATION_GATEWAY_DNS_TIMEOUT", "0.25")
        clear_settings_cache()
        assert get_guarded_backend().dns_timeout == 0.25
