"""
Tests for RPC endpoint failover.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from agentpay.core.exceptions import ConfigurationError, RpcExhaustedError
from agentpay.core.retry import RPC_RETRY
from agentpay.services.rpc import RpcPool

from conftest import make_settings


URLS = ["https://a.example", "https://b.example", "https://c.example"]


def fake_factory(url, timeout):
    """Stands in for AsyncWeb3: the 'client' is just its URL."""
    return url


@pytest.fixture
def retry_sleep():
    with patch("agentpay.core.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestRpcPool:
    """Tests for RpcPool.call ordering and aggregation."""

    @pytest.mark.asyncio
    async def test_last_endpoint_succeeds(self):
        pool = RpcPool(URLS, timeout_seconds=1, web3_factory=fake_factory)
        tried = []

        async def read(client):
            tried.append(client)
            if client != URLS[-1]:
                raise ConnectionError(f"{client} down")
            return 42

        assert await pool.call("balanceOf", read) == 42
        assert tried == URLS

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self):
        pool = RpcPool(URLS, timeout_seconds=1, web3_factory=fake_factory)
        tried = []

        async def read(client):
            tried.append(client)
            return "ok"

        assert await pool.call("eth_chainId", read) == "ok"
        assert tried == [URLS[0]]

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, retry_sleep):
        pool = RpcPool(URLS, timeout_seconds=1, web3_factory=fake_factory)

        async def read(client):
            raise ConnectionError("connection refused")

        with pytest.raises(RpcExhaustedError) as exc_info:
            await pool.call("quoteExactInputSingle", read)

        error = exc_info.value
        assert error.endpoints == URLS
        assert error.status_code == 503
        for url in URLS:
            assert url in error.message
        assert isinstance(error.last_error, ConnectionError)

    @pytest.mark.asyncio
    async def test_slow_endpoint_falls_through(self):
        pool = RpcPool(URLS[:2], timeout_seconds=0.05, web3_factory=fake_factory)

        async def read(client):
            if client == URLS[0]:
                await asyncio.sleep(1)
            return client

        assert await pool.call("slot0", read) == URLS[1]

    @pytest.mark.asyncio
    async def test_clients_are_reused(self):
        created = []

        def factory(url, timeout):
            created.append(url)
            return url

        pool = RpcPool(URLS[:1], web3_factory=factory)

        async def read(client):
            return client

        await pool.call("a", read)
        await pool.call("b", read)
        assert created == URLS[:1]

    def test_requires_an_endpoint(self):
        with pytest.raises(ConfigurationError):
            RpcPool([])

    def test_from_settings_orders_primary_first(self):
        settings = make_settings(
            rpc_url="https://primary.example/",
            rpc_fallback_urls="https://b.example, https://primary.example,https://c.example",
        )
        pool = RpcPool.from_settings(settings, web3_factory=fake_factory)
        assert pool.urls == ["https://primary.example", "https://b.example", "https://c.example"]


class TestRpcRetry:
    """Tests for repeating failed sweeps with RPC_RETRY backoff."""

    @pytest.mark.asyncio
    async def test_transient_sweep_failure_is_retried(self, retry_sleep):
        pool = RpcPool(URLS[:2], timeout_seconds=1, web3_factory=fake_factory)
        tried = []

        async def read(client):
            tried.append(client)
            if len(tried) <= 2:
                raise ConnectionError("ECONNRESET")
            return 7

        assert await pool.call("balanceOf", read) == 7
        assert tried == [URLS[0], URLS[1], URLS[0]]
        retry_sleep.assert_awaited_once_with(RPC_RETRY.initial_delay)

    @pytest.mark.asyncio
    async def test_persistent_transient_failure_exhausts_retries(self, retry_sleep):
        pool = RpcPool(URLS, timeout_seconds=1, web3_factory=fake_factory)
        calls = []

        async def read(client):
            calls.append(client)
            raise ConnectionError("503 Service Unavailable")

        with pytest.raises(RpcExhaustedError):
            await pool.call("allowance", read)

        assert len(calls) == len(URLS) * (RPC_RETRY.max_retries + 1)
        assert retry_sleep.await_count == RPC_RETRY.max_retries

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, retry_sleep):
        pool = RpcPool(URLS, timeout_seconds=1, web3_factory=fake_factory)
        calls = []

        async def read(client):
            calls.append(client)
            raise ValueError("execution reverted")

        with pytest.raises(RpcExhaustedError):
            await pool.call("quoteExactInputSingle", read)

        assert calls == URLS
        retry_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retry_can_be_disabled(self, retry_sleep):
        pool = RpcPool(URLS, timeout_seconds=1, web3_factory=fake_factory, retry=None)
        calls = []

        async def read(client):
            calls.append(client)
            raise ConnectionError("connection refused")

        with pytest.raises(RpcExhaustedError):
            await pool.call("getPool", read)

        assert calls == URLS
        retry_sleep.assert_not_awaited()
