"""Shared outbound HTTP client management."""

from __future__ import annotations

import asyncio
from typing import Optional, Dict

import httpx

from ..helpers import info_log, error_log
from ..config import settings


_CONNECTION_POOL_CONFIG: Dict[str, object] = {
    "limits": httpx.Limits(
        max_keepalive_connections=20,
        max_connections=100,
        keepalive_expiry=30,
    ),
    "timeout": httpx.Timeout(
        connect=10.0,
        read=300.0,
        write=30.0,
        pool=10.0,
    ),
    "http2": True,
}


class NetworkManager:
    """Own one lazily created httpx.AsyncClient for all upstream calls."""

    def __init__(
            self,
            proxy: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._proxy = proxy if proxy is not None else settings.PROXY
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        if self._proxy:
            info_log("[PROXY] 使用出站代理", proxy=self._proxy)

    async def get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                if self._transport is not None:
                    info_log("[CLIENT] 创建客户端（自定义传输层）")
                    self._client = httpx.AsyncClient(
                        transport=self._transport,
                        trust_env=False,
                        **_CONNECTION_POOL_CONFIG,
                    )
                elif self._proxy:
                    info_log("[CLIENT] 为代理创建新客户端", proxy=self._proxy)
                    self._client = httpx.AsyncClient(proxy=self._proxy, **_CONNECTION_POOL_CONFIG)
                else:
                    info_log("[CLIENT] 创建默认客户端（无代理）")
                    self._client = httpx.AsyncClient(**_CONNECTION_POOL_CONFIG)
            return self._client

    async def cleanup_clients(self) -> None:
        async with self._client_lock:
            client = self._client
            self._client = None

        if client is not None:
            try:
                await client.aclose()
                info_log("[CLIENT] 客户端已关闭")
            except Exception as exc:  # pragma: no cover - 问题记录即可
                error_log("[CLIENT] 关闭客户端失败", error=str(exc))

    @property
    def proxy(self) -> Optional[str]:
        return self._proxy
