# http_transport.py
"""
HTTP transport used by the sequence runner.

`HttpTransport` is the contract the runner depends on: send one `HttpRequest`,
get one `HttpResponse` back. Implementations never raise for a non-2xx status;
they raise `TransportError` (with the elapsed duration) only when no response
could be obtained at all.
"""

from __future__ import annotations
import asyncio
import logging
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp

from sequence_errors import TransportError
from sequence_logging import logger, mask_headers
from sequence_models import HttpRequest, HttpResponse

__all__ = ["HttpTransport", "AiohttpTransport", "BODY_METHODS"]

BODY_METHODS = ('POST', 'PUT', 'PATCH')


class HttpTransport(ABC):
    """Sends requests on behalf of the runner. Use as an async context manager."""

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @abstractmethod
    async def send(self, request: HttpRequest) -> HttpResponse: ...

    async def close(self) -> None:
        pass


class AiohttpTransport(HttpTransport):
    """aiohttp-backed transport. Owns its ClientSession unless one is passed in."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owns_session = session is None

    def create_session(self) -> aiohttp.ClientSession:
        """Creates a new aiohttp ClientSession. Cookies are not carried between requests."""
        return aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())

    async def __aenter__(self) -> "AiohttpTransport":
        if self._session is None:
            self._session = self.create_session()
        return self

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    @staticmethod
    def _prepare_body(request: HttpRequest, headers: Dict[str, str]) -> Dict[str, Any]:
        body = request.body
        if body is None or body == "" or request.method.upper() not in BODY_METHODS:
            return {}
        if isinstance(body, str):
            return {'data': body.encode('utf-8')}
        has_content_type = any(k.lower() == 'content-type' for k in headers)
        if not has_content_type:
            headers['Content-Type'] = 'application/json'
        return {'data': json.dumps(body).encode('utf-8')}

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> Any:
        text = await resp.text(errors='replace')
        if not text:
            return text
        try:
            return json.loads(text)
        except ValueError:
            return text

    async def send(self, request: HttpRequest) -> HttpResponse:
        if self._session is None:
            self._session = self.create_session()

        headers = dict(request.headers)
        payload = self._prepare_body(request, headers)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"\n--- REQUEST START ---\n"
                         f"URL: {request.method} {request.url}\n"
                         f"Headers: {mask_headers(headers)}\n"
                         f"Payload: {str(request.body)[:200]}\n"
                         f"---------------------")

        start_time = time.monotonic()
        try:
            async with self._session.request(
                request.method,
                request.url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=request.timeout),
                **payload
            ) as resp:
                body = await self._read_body(resp)
                duration = time.monotonic() - start_time
                return HttpResponse(
                    status=resp.status,
                    status_text=resp.reason or "",
                    headers={k: v for k, v in resp.headers.items()},
                    body=body,
                    duration=duration,
                )
        except asyncio.TimeoutError as e:
            duration = time.monotonic() - start_time
            raise TransportError(f"Request timeout after {request.timeout:g}s", duration=duration) from e
        except aiohttp.ClientError as e:
            duration = time.monotonic() - start_time
            raise TransportError(f"Network error: {e}", duration=duration) from e
