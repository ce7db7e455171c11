"""Bounded, time-limited cache of backend client handles.

One :class:`openai.AsyncOpenAI` per provider name keeps connection pools warm
across requests.  Entries are dropped least-recently-used when the cache is
full and rebuilt once they are older than the TTL, which also picks up
rotated credentials without an explicit invalidation hook.  Dropped handles
are closed after a grace period.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from openai import AsyncOpenAI

from modelrouter.config import Settings
from modelrouter.providers.models import Provider

_log = structlog.get_logger(__name__)

ClientFactory = Callable[[Provider], Any]


def make_client_factory(settings: Settings) -> ClientFactory:
    """Return a factory building ``AsyncOpenAI`` clients from *settings*.

    The SDK's own retries are disabled: each request makes exactly one
    attempt against its provider.
    """
    proxy = settings.proxy_url or settings.https_proxy

    def _build(provider: Provider) -> AsyncOpenAI:
        http_client = httpx.AsyncClient(proxy=proxy) if proxy else None
        return AsyncOpenAI(
            base_url=provider.base_url,
            api_key=provider.api_key,
            timeout=settings.llm_timeout,
            max_retries=0,
            http_client=http_client,
        )

    return _build


class ClientCache:
    """asyncio-safe LRU + TTL cache keyed by provider name.

    Handles that expire or are evicted leave the cache at once but are only
    closed ``close_grace`` seconds later, so streams still reading from them
    can finish.

    Args:
        factory: Builds a client handle for a provider.
        max_size: Maximum number of live handles.
        ttl: Seconds a handle may live after construction, regardless of use.
        close_grace: Seconds a retired handle stays open before it is closed.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        factory: ClientFactory,
        max_size: int = 10,
        ttl: float = 2 * 60 * 60,
        close_grace: float = 10 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._max_size = max_size
        self._ttl = ttl
        self._close_grace = close_grace
        self._clock = clock
        self._store: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = asyncio.Lock()
        self._retiring: dict[asyncio.Task, Any] = {}

    async def get_or_create(self, provider: Provider) -> Any:
        """Return the cached handle for *provider*, building it on a miss."""
        async with self._lock:
            now = self._clock()
            entry = self._store.get(provider.name)
            if entry is not None:
                created_at, client = entry
                if now - created_at < self._ttl:
                    self._store.move_to_end(provider.name)
                    return client
                del self._store[provider.name]
                _log.info("client_cache_expired", provider=provider.name)
                self._retire(provider.name, client)

            client = self._factory(provider)
            self._store[provider.name] = (now, client)
            _log.info("client_cache_created", provider=provider.name, base_url=provider.base_url)

            while len(self._store) > self._max_size:
                evicted, (_, old) = self._store.popitem(last=False)
                _log.info("client_cache_evicted", provider=evicted)
                self._retire(evicted, old)
            return client

    def __contains__(self, name: object) -> bool:
        return name in self._store

    def __len__(self) -> int:
        return len(self._store)

    @property
    def retiring(self) -> int:
        """Number of retired handles still waiting to be closed."""
        return len(self._retiring)

    async def aclose(self) -> None:
        """Close every cached or retiring handle; used on application shutdown."""
        async with self._lock:
            clients = [client for _, client in self._store.values()]
            self._store.clear()
            retiring = dict(self._retiring)
            self._retiring.clear()
        for task, client in retiring.items():
            task.cancel()
            clients.append(client)
        await asyncio.gather(*retiring, return_exceptions=True)
        for client in clients:
            await _close(client)

    def _retire(self, name: str, client: Any) -> None:
        task = asyncio.create_task(self._close_later(name, client))
        self._retiring[task] = client
        task.add_done_callback(lambda done: self._retiring.pop(done, None))

    async def _close_later(self, name: str, client: Any) -> None:
        await asyncio.sleep(self._close_grace)
        try:
            await _close(client)
        except Exception as exc:
            _log.warning("client_cache_close_failed", provider=name, error=str(exc))
            return
        _log.info("client_cache_closed", provider=name)


async def _close(client: Any) -> None:
    close = getattr(client, "close", None)
    if close is not None:
        await close()
