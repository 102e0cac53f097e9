# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import json
import random
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode
import logging
from utils.logger import logger as _default_logger

JSON_SEPARATORS = (",", ":")
RETRY_STATUSES = {429, 500, 502, 503, 504}
# order creation is not idempotent, so POST is never retried here
RETRY_METHODS = {"GET", "DELETE"}


class HttpError(Exception):
    def __init__(self, status: int, message: str, payload: Optional[dict] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.payload = payload or {}


class ProviderApiError(Exception):
    def __init__(self, code: str, msg: str, payload: dict | None = None):
        self.code = code
        self.msg = msg
        self.payload = payload or {}
        super().__init__(f"Provider API code={self.code}, msg={self.msg}")


def _json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=JSON_SEPARATORS, ensure_ascii=False)

def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return "?" + urlencode(params, doseq=True, safe=":/")

def _mask(s: Optional[str]) -> str:
    if not s:
        return ""
    if len(s) <= 8:
        return "*" * len(s)
    return s[:4] + "*" * (len(s) - 8) + s[-4:]

def _provider_error(payload: Mapping[str, Any]) -> Optional[ProviderApiError]:
    """Envelope is {"success": bool, "data": ..., "error": {"code", "message"}}."""
    if payload.get("success", True) is not False:
        return None
    err = payload.get("error") or {}
    if isinstance(err, str):
        return ProviderApiError("error", err, dict(payload))
    return ProviderApiError(str(err.get("code", "unknown")), str(err.get("message", "")), dict(payload))


class HttpClient:
    def __init__(self,
                 cfg: Mapping[str, Any],
                 logger: Optional[logging.Logger] = None,
                 api_key: Optional[str] = None,
                 *,
                 timeout_ms: Optional[int] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 ) -> None:
        self.cfg = cfg
        self.log = logger or _default_logger
        self.session = session
        self._owned_session = session is None

        provider_cfg = cfg.get("provider", {})
        self.base_url = str(provider_cfg.get("base_url", "https://www.mailform.io/app/api/v1")).rstrip("/")

        # credentials
        self.api_key = api_key if api_key is not None else provider_cfg.get("api_key")

        # timeouts & retries
        timeouts_cfg = cfg.get("timeouts", {})
        retries_cfg = cfg.get("retries", {})
        self.timeout_ms = int(timeout_ms or timeouts_cfg.get("rest_ms", 10000))
        self.max_attempts = int(retries_cfg.get("rest_max_attempts", 3))
        self.backoff_ms = int(retries_cfg.get("backoff_ms", 200))

        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)

        self.log.debug(
            f"HttpClient init base_url={self.base_url} key={_mask(self.api_key)}"
        )

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        if self._owned_session and (self.session is None or self.session.closed):
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def _auth_headers(self) -> Dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            json_body: Optional[Mapping[str, Any]] = None,
            form: Optional[aiohttp.FormData] = None,
            headers: Optional[Mapping[str, str]] = None,
            expect_envelope: bool = True,
            timeout_ms: Optional[int] = None,
            retry: bool = True,
        ) -> Dict[str, Any]:
        """
        Single entry point for provider calls.
        - path: relative to base_url, starting with "/"
        - json_body / form: mutually exclusive request bodies
        - expect_envelope: unwrap and check the provider's success/error envelope
        - retry: exponential backoff on 429/5xx and network errors (GET/DELETE only)
        """
        assert path.startswith("/"), "path must start with /"
        if json_body is not None and form is not None:
            raise ValueError("json_body and form are mutually exclusive")
        method = method.upper()
        url = self.base_url + path + _build_query(params)
        req_headers = {"Accept": "application/json"}
        req_headers.update(self._auth_headers())
        if json_body is not None:
            req_headers["Content-Type"] = "application/json"
        if headers:
            req_headers.update(headers)

        extra: Dict[str, Any] = {}
        if timeout_ms:
            extra["timeout"] = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)
        data: Any = _json_dumps_compact(json_body) if json_body is not None else form
        can_retry = retry and method in RETRY_METHODS

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.session.request(
                    method,
                    url,
                    data=data,
                    headers=req_headers,
                    **extra,
                ) as resp:
                    text = await resp.text()
                    status = resp.status
                    if status >= 400:
                        if can_retry and status in RETRY_STATUSES and attempt < self.max_attempts:
                            self.log.warning(f"HTTP {status} from {method} {url}, retrying (attempt {attempt})")
                            await self._sleep_backoff(attempt)
                            continue
                        payload = None
                        try:
                            payload = json.loads(text) if text else None
                        except json.JSONDecodeError:
                            pass
                        if isinstance(payload, dict):
                            err = _provider_error(payload)
                            if err is not None and status < 500:
                                raise err
                        raise HttpError(status, text[:256], payload if isinstance(payload, dict) else None)

                    try:
                        payload = json.loads(text) if text else {}
                    except json.JSONDecodeError:
                        if expect_envelope:
                            raise HttpError(status, f"invalid json: {text[:256]}")
                        return {"raw": text}

                    if expect_envelope and isinstance(payload, dict):
                        err = _provider_error(payload)
                        if err is not None:
                            raise err
                    return payload
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if can_retry and attempt < self.max_attempts:
                    self.log.warning(f"Network error: {e} when requesting {url}, retrying...")
                    await self._sleep_backoff(attempt)
                    continue
                raise HttpError(599, f"Network error: {e}") from e
            except ProviderApiError:
                raise
            except HttpError:
                raise
            except Exception as e:
                raise HttpError(599, f"Unexpected error: {e}") from e

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, self.backoff_ms)
        await asyncio.sleep((base + jitter) / 1000.0)

    # ---- convenience wrappers --------------------------------------------------------
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, *,
                   json_body: Optional[Mapping[str, Any]] = None,
                   form: Optional[aiohttp.FormData] = None,
                   headers: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, json_body=json_body, form=form, headers=headers)

    async def delete(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("DELETE", path, params=params)
