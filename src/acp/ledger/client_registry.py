"""Caller-owned cache of clients, one per ledger endpoint.

There is no process-wide instance: whoever creates a ``ClientRegistry``
owns it and closes it. Idle clients are evicted after ``max_age`` seconds
(on ``evict_stale()``), the least recently used beyond ``max_size`` are
evicted immediately, and every evicted client is closed.

Example:
    with ClientRegistry(caller=owner) as clients:
        client = clients.get("https://ledger-a.example")
        client.register_agent(identity, stake)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from ..core.config import ACPSettings, get_config
from ..core.lru_cache import LRUDict
from ..crypto.authority import AdminSigner
from ..crypto.field import ensure_bytes32
from .client import ACPClient
from .http import HttpLedgerTransport

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], ACPClient]


class ClientRegistry:
    def __init__(
        self,
        caller: bytes | None = None,
        signer: AdminSigner | None = None,
        factory: ClientFactory | None = None,
        max_size: int | None = None,
        max_age: float | None = None,
        settings: ACPSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_config()
        if factory is None:
            if caller is None:
                raise ValueError("either caller or factory is required")
            caller = ensure_bytes32(caller, "caller")
            factory = self._http_factory(caller, signer)
        self._factory = factory
        self._clients: LRUDict[str, ACPClient] = LRUDict(
            max_size=max_size if max_size is not None else self.settings.client_cache_max_size,
            max_age=max_age if max_age is not None else self.settings.client_cache_max_age_seconds,
            on_evict=self._close_client,
            clock=clock,
        )
        self._closed = False

    def _http_factory(self, caller: bytes, signer: AdminSigner | None) -> ClientFactory:
        def create(endpoint: str) -> ACPClient:
            transport = HttpLedgerTransport(endpoint, timeout=self.settings.ledger_timeout)
            return ACPClient(transport, caller, signer=signer, settings=self.settings)

        return create

    @staticmethod
    def _close_client(endpoint: str, client: ACPClient) -> None:
        logger.debug(f"Closing client for {endpoint}")
        client.close()

    def get(self, endpoint: str) -> ACPClient:
        """Return the cached client for ``endpoint``, creating it if needed."""
        if self._closed:
            raise RuntimeError("client registry is closed")
        endpoint = endpoint.rstrip("/")
        if endpoint in self._clients:
            return self._clients[endpoint]
        client = self._factory(endpoint)
        self._clients[endpoint] = client
        logger.debug(f"Created client for {endpoint} ({len(self._clients)} cached)")
        return client

    def evict(self, endpoint: str) -> bool:
        endpoint = endpoint.rstrip("/")
        if endpoint not in self._clients:
            return False
        del self._clients[endpoint]
        return True

    def evict_stale(self) -> int:
        evicted = self._clients.evict_stale()
        if evicted:
            logger.info(f"Evicted {evicted} idle ledger clients")
        return evicted

    def __contains__(self, endpoint: object) -> bool:
        return isinstance(endpoint, str) and endpoint.rstrip("/") in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def stats(self) -> dict[str, Any]:
        return self._clients.stats()

    def close(self) -> None:
        self._clients.clear()
        self._closed = True

    def __enter__(self) -> ClientRegistry:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
