# infra/__init__.py
from __future__ import annotations

import logging
from typing import Protocol, Mapping, Any, Optional, Dict

import aiohttp

from infra.http_client import HttpClient, HttpError, ProviderApiError

# ========== 1) Port: upper layers depend on this, not on HttpClient ==========
class HttpPort(Protocol):
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]: ...
    async def post(self, path: str, *,
                   json_body: Optional[Mapping[str, Any]] = None,
                   form: Optional[aiohttp.FormData] = None,
                   headers: Optional[Mapping[str, str]] = None) -> Dict[str, Any]: ...
    async def delete(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]: ...


# ========== 2) Container: create / close ==========
class HttpContainer:
    """
    Owns the HttpClient lifecycle.
    - The composition root (app entry) holds it.
    - Services get container.http injected.
    """
    def __init__(self, http: HttpClient) -> None:
        self.http = http

    @classmethod
    async def start(cls,
                    cfg: Mapping[str, Any],
                    logger: Optional[logging.Logger] = None,
                    api_key: Optional[str] = None,
                    ) -> "HttpContainer":
        http = HttpClient(cfg, logger=logger, api_key=api_key)
        return cls(http)

    async def stop(self) -> None:
        await self.http.close()


__all__ = ["HttpPort", "HttpContainer", "HttpClient", "HttpError", "ProviderApiError"]
