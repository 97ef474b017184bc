"""
Stream Proxy

Relays a video file from its upstream host to the client so the upstream URL
never leaves the server. The client's `Range` header is forwarded as-is, which
keeps seeking working: a partial upstream answer (206 with `Content-Range`) is
passed through with its status and range headers.

The upstream response stays open while the body is relayed and is closed once
the last chunk is sent or the client goes away.
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, Optional

import aiohttp

from core.exceptions import StreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_STREAM_TIMEOUT_SECONDS = 600.0
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"
PASSTHROUGH_HEADERS = ("Content-Length", "Content-Range")


class UpstreamStream:
    """An open upstream response ready to be relayed"""

    def __init__(self, response: aiohttp.ClientResponse, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.response = response
        self.chunk_size = chunk_size
        self.status = response.status
        self.headers = self._build_headers(response)

    @staticmethod
    def _build_headers(response: aiohttp.ClientResponse) -> Dict[str, str]:
        headers = {
            "Content-Type": response.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE,
            "Accept-Ranges": "bytes",
            "Cache-Control": "no-store",
        }
        for name in PASSTHROUGH_HEADERS:
            value = response.headers.get(name)
            if value:
                headers[name] = value
        return headers

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.content.iter_chunked(self.chunk_size):
                yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # Headers are already sent; all that is left is to stop the body
            logger.warning(f"Upstream stream interrupted: {e}")
        finally:
            self.response.close()

    async def close(self) -> None:
        self.response.close()


class StreamProxy:
    """Opens upstream video responses with aiohttp"""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = DEFAULT_STREAM_TIMEOUT_SECONDS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.chunk_size = chunk_size
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def open(self, url: str, range_header: Optional[str] = None) -> UpstreamStream:
        """
        Start the upstream request and return once its headers are in.

        Upstream client errors (404, 416 and the like) are relayed to the
        caller unchanged. Network failures and upstream 5xx answers raise
        `StreamUnavailable`.
        """
        headers = {"Range": range_header} if range_header else {}
        session = self._get_session()
        try:
            response = await session.get(url, headers=headers, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise StreamUnavailable(f"upstream timed out after {self.timeout.total}s")
        except aiohttp.ClientError as e:
            raise StreamUnavailable(f"upstream request failed: {e}") from e

        if response.status >= 500:
            response.close()
            raise StreamUnavailable(f"upstream returned HTTP {response.status}")

        logger.debug(
            f"Streaming upstream response {response.status}",
            extra={"range": range_header or "", "status": response.status},
        )
        return UpstreamStream(response, self.chunk_size)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
