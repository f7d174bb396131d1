"""Tests for the shared HTTPX AsyncClient factory."""

import ssl

import httpx
import pytest

from QmKit.network.client import (
    _create_http_client,
    _create_ssl_context,
    close_http_client,
    configure_http_client,
    get_http_client,
    reset_http_client,
)
from QmKit.settings import HttpSettings
from QmKit.testing import use_mock_http_client


class TestClientSingleton:
    """Lazy singleton initialization and reuse."""

    def setup_method(self):
        reset_http_client()

    def teardown_method(self):
        reset_http_client()

    @pytest.mark.asyncio
    async def test_same_loop_reuses_client(self):
        client1 = get_http_client()
        client2 = get_http_client()
        assert client1 is client2
        assert isinstance(client1, httpx.AsyncClient)
        await close_http_client()

    @pytest.mark.asyncio
    async def test_close_then_get_rebuilds(self):
        client1 = get_http_client()
        await close_http_client()
        client2 = get_http_client()
        assert client1.is_closed
        assert client2 is not client1
        await close_http_client()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        await close_http_client()
        await close_http_client()

    def test_loop_change_rebuilds(self):
        outside = get_http_client()

        async def _inside() -> httpx.AsyncClient:
            client = get_http_client()
            await close_http_client()
            return client

        import asyncio

        inside = asyncio.run(_inside())
        assert inside is not outside


class TestOverrides:
    @pytest.mark.asyncio
    async def test_configured_client_returned_as_is(self):
        async with httpx.AsyncClient() as client:
            configure_http_client(client=client)
            assert get_http_client() is client
        reset_http_client()

    @pytest.mark.asyncio
    async def test_configured_transport_is_used(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(204))
        configure_http_client(transport=transport)
        response = await get_http_client().get("https://example.org/")
        assert response.status_code == 204
        await close_http_client()

    @pytest.mark.asyncio
    async def test_use_mock_http_client_restores_default(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))
        async with use_mock_http_client(transport) as client:
            assert get_http_client() is client
            response = await client.get("https://example.org/")
            assert response.text == "ok"
        assert client.is_closed
        assert get_http_client() is not client
        await close_http_client()


class TestClientConfiguration:
    def test_settings_applied(self):
        settings = HttpSettings(timeout_connect=2.0, timeout_read=7.0, user_agent="qmkit-test/1")
        client = _create_http_client(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        assert client.timeout.connect == 2.0
        assert client.timeout.read == 7.0
        assert client.headers["user-agent"] == "qmkit-test/1"
        assert client.event_hooks["request"] and client.event_hooks["response"]

    def test_redirects_followed_by_default(self):
        client = _create_http_client(HttpSettings(), transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        assert client.follow_redirects is True

    def test_redirects_can_be_disabled(self):
        settings = HttpSettings(follow_redirects=False)
        client = _create_http_client(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        assert client.follow_redirects is False

    def test_ssl_context_verifies_by_default(self):
        ctx = _create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_ssl_context_can_disable_verification(self):
        ctx = _create_ssl_context(verify=False)
        assert ctx.verify_mode == ssl.CERT_NONE
