"""
RPC access layer.

Read calls go to the primary endpoint first, then to each fallback in the
configured order. The first success wins; when every endpoint fails the
caller gets one aggregated error naming all of them. A sweep that failed
with a transient error is repeated with backoff before that error surfaces.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from web3 import AsyncWeb3

from agentpay.config import Settings
from agentpay.core.exceptions import ConfigurationError, RpcExhaustedError
from agentpay.core.retry import RPC_RETRY, RetryConfig, retry_async


logger = logging.getLogger(__name__)

T = TypeVar("T")

Web3Factory = Callable[[str, float], AsyncWeb3]


def default_web3_factory(url: str, timeout: float) -> AsyncWeb3:
    return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": timeout}))


class RpcPool:
    """
    Ordered set of RPC endpoints with per-call timeout and failover.

    Clients are created lazily, one per endpoint, and reused.
    """

    def __init__(
        self,
        urls: list[str],
        timeout_seconds: float = 10.0,
        web3_factory: Web3Factory = default_web3_factory,
        retry: RetryConfig | None = RPC_RETRY,
    ):
        if not urls:
            raise ConfigurationError("At least one RPC endpoint must be configured")
        self.urls = list(urls)
        self.timeout_seconds = timeout_seconds
        self._web3_factory = web3_factory
        self.retry = retry
        self._clients: dict[str, AsyncWeb3] = {}

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RpcPool":
        return cls(settings.rpc_urls, settings.rpc_timeout_seconds, **kwargs)

    def client(self, url: str) -> AsyncWeb3:
        if url not in self._clients:
            self._clients[url] = self._web3_factory(url, self.timeout_seconds)
        return self._clients[url]

    @property
    def primary(self) -> AsyncWeb3:
        """Client for the primary endpoint. Transactions are always sent here."""
        return self.client(self.urls[0])

    async def call(
        self,
        operation: str,
        fn: Callable[[AsyncWeb3], Awaitable[T]],
    ) -> T:
        """
        Run `fn` against each endpoint in order until one succeeds.
        Sweeps that fail with a retryable error are repeated per `self.retry`.

        Args:
            operation: Label for logs and the aggregated error
            fn: Coroutine factory taking a web3 client

        Raises:
            RpcExhaustedError: Every endpoint failed or timed out on the
                last sweep
        """
        if self.retry is None:
            return await self._sweep(operation, fn)
        return await retry_async(lambda: self._sweep(operation, fn), self.retry, operation)

    async def _sweep(
        self,
        operation: str,
        fn: Callable[[AsyncWeb3], Awaitable[T]],
    ) -> T:
        last_error: Exception | None = None

        for index, url in enumerate(self.urls):
            try:
                result = await asyncio.wait_for(fn(self.client(url)), self.timeout_seconds)
                if index > 0:
                    logger.info(f"{operation} succeeded on fallback RPC {url}")
                return result
            except asyncio.TimeoutError:
                last_error = TimeoutError(
                    f"RPC call timed out after {self.timeout_seconds}s"
                )
                logger.warning(f"{operation} timed out on RPC {url}")
            except Exception as e:
                last_error = e
                logger.warning(f"{operation} failed on RPC {url}: {type(e).__name__}: {e}")

        logger.error(f"{operation} failed on all {len(self.urls)} RPC endpoints")
        raise RpcExhaustedError(operation, self.urls, last_error)

    async def chain_id(self) -> int:
        async def _chain_id(w3: AsyncWeb3) -> int:
            return await w3.eth.chain_id

        return await self.call("eth_chainId", _chain_id)
