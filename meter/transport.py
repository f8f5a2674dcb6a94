"""
Network I/O capability used by the testers.

The engine only needs three operations -- a bodiless round trip, a
streamed GET, and a POST -- so it talks to ``HttpTransport`` and never to
an HTTP library directly.  ``AiohttpTransport`` is the production
implementation; tests substitute an in-memory fake.

``AiohttpTransport`` manages one ``aiohttp.ClientSession`` via the
async-context-manager protocol (``async with AiohttpTransport() as t: ...``).
"""
from __future__ import annotations

import abc
import asyncio
from typing import AsyncIterator, Optional

import aiohttp

from .constants import COMMON_HEADERS, UPLOAD_CONTENT_TYPE
from .errors import TransferError


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class HttpTransport(abc.ABC):
    """Abstract network I/O provider supplied by the host environment."""

    @abc.abstractmethod
    async def head(self, url: str) -> int:
        """Issue a HEAD request and return the status code."""

    @abc.abstractmethod
    def fetch(self, url: str, chunk_size: int) -> AsyncIterator[bytes]:
        """Stream the body of *url* in chunks of at most *chunk_size* bytes."""

    @abc.abstractmethod
    async def post(self, url: str, data: bytes) -> int:
        """POST *data* to *url* and return the status code."""


class AiohttpTransport(HttpTransport):
    """``HttpTransport`` backed by a shared ``aiohttp.ClientSession``."""

    def __init__(
        self,
        connect_timeout: float = 5.0,
        read_timeout: float = 10.0,
    ) -> None:
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(
            total=None, connect=connect_timeout, sock_read=read_timeout,
        )

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> AiohttpTransport:
        self._session = aiohttp.ClientSession(
            headers=COMMON_HEADERS,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "AiohttpTransport must be used as an async context manager "
                "(async with AiohttpTransport() as transport: ...)"
            )
        return self._session

    # -- HttpTransport ------------------------------------------------------

    async def head(self, url: str) -> int:
        session = self._ensure_session()
        try:
            async with session.head(url, allow_redirects=False) as resp:
                return resp.status
        except (aiohttp.ClientError, OSError) as exc:
            raise TransferError(url, str(exc) or type(exc).__name__) from exc

    async def fetch(self, url: str, chunk_size: int) -> AsyncIterator[bytes]:
        session = self._ensure_session()
        try:
            async with session.get(url) as resp:
                if not _is_success(resp.status):
                    raise TransferError(url, f"HTTP {resp.status}", status=resp.status)
                async for chunk in resp.content.iter_chunked(chunk_size):
                    yield chunk
        except (aiohttp.ClientError, OSError) as exc:
            raise TransferError(url, str(exc) or type(exc).__name__) from exc
        except asyncio.TimeoutError as exc:
            raise TransferError(url, "read timeout") from exc

    async def post(self, url: str, data: bytes) -> int:
        session = self._ensure_session()
        headers = {
            "Content-Type": UPLOAD_CONTENT_TYPE,
            "Content-Length": str(len(data)),
        }
        try:
            async with session.post(url, data=data, headers=headers) as resp:
                await resp.read()
                if not _is_success(resp.status):
                    raise TransferError(url, f"HTTP {resp.status}", status=resp.status)
                return resp.status
        except (aiohttp.ClientError, OSError) as exc:
            raise TransferError(url, str(exc) or type(exc).__name__) from exc
        except asyncio.TimeoutError as exc:
            raise TransferError(url, "request timeout") from exc
