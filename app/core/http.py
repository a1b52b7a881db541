from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_RETRY_STATUS = {429, 500, 502, 503, 504}


class ResponseTooLarge(Exception):
    pass


class ResilientHTTPClient:
    def __init__(
        self,
        timeout: float = 20.0,
        retries: int = 2,
        backoff_sec: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.retries = max(0, retries)
        self.backoff_sec = backoff_sec
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=False)

    async def get_bytes(self, url: str, max_bytes: int) -> tuple[httpx.Response, bytes]:
        """Fetch a body without following redirects, aborting past ``max_bytes``.

        Redirect responses are returned with an empty body so the caller can vet
        the ``Location`` before following it.
        """
        last_exc: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                async with self.client.stream("GET", url) as resp:
                    if resp.is_redirect:
                        return resp, b""
                    if resp.status_code in _RETRY_STATUS and attempt < self.retries:
                        logger.warning(
                            "http_retry",
                            extra={"event": "http_retry", "url": url, "status": resp.status_code, "attempt": attempt + 1},
                        )
                        await asyncio.sleep(self.backoff_sec * (2**attempt))
                        continue
                    resp.raise_for_status()
                    chunks: list[bytes] = []
                    total = 0
                    async for chunk in resp.aiter_bytes():
                        total += len(chunk)
                        if total > max_bytes:
                            raise ResponseTooLarge(f"Image too large (max {max_bytes // (1024 * 1024)}MB)")
                        chunks.append(chunk)
                    return resp, b"".join(chunks)
            except httpx.TransportError as exc:
                last_exc = exc
                if attempt >= self.retries:
                    break
                logger.warning(
                    "http_retry",
                    extra={"event": "http_retry", "url": url, "error": str(exc), "attempt": attempt + 1},
                )
                await asyncio.sleep(self.backoff_sec * (2**attempt))
        if last_exc is None:
            raise RuntimeError(f"GET {url} exhausted retries")
        raise last_exc

    async def post_json(self, url: str, payload: dict, headers: dict | None = None) -> httpx.Response:
        # POSTs are never retried: market creation must not run twice.
        return await self.client.post(url, json=payload, headers=headers)

    async def post_file(self, url: str, field: str, filename: str, data: bytes, content_type: str) -> httpx.Response:
        return await self.client.post(url, files={field: (filename, data, content_type)})

    async def close(self) -> None:
        await self.client.aclose()
