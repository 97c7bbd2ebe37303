"""
Network leg shared by every strategy, the queue and the sync pass.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Describe the wire encoding of the original body, not the decoded copy we keep
_WIRE_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


class Network:
    """
    Sends requests through the real transport and returns fully read responses.

    Responses are buffered so they can be cached, returned to the caller, or
    both, without worrying about a half-consumed stream.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport):
        self.transport = transport

    async def fetch(self, request: httpx.Request, timeout: Optional[float] = None) -> httpx.Response:
        """
        Send ``request`` and read the whole body.

        Raises httpx.TransportError on network failure. When ``timeout`` (in
        seconds) runs out the send is cancelled and httpx.ReadTimeout raised,
        so callers only have one family of errors to handle.
        """
        if timeout is None:
            return await self._send(request)
        try:
            return await asyncio.wait_for(self._send(request), timeout)
        except asyncio.TimeoutError as e:
            logger.debug("%s %s timed out after %ss", request.method, request.url.path, timeout)
            raise httpx.ReadTimeout(
                f"Request timed out after {timeout}s", request=request
            ) from e

    async def _send(self, request: httpx.Request) -> httpx.Response:
        response = await self.transport.handle_async_request(request)
        try:
            content = await response.aread()
        finally:
            await response.aclose()
        headers = [
            (name, value)
            for name, value in response.headers.multi_items()
            if name.lower() not in _WIRE_HEADERS
        ]
        return httpx.Response(
            response.status_code, headers=headers, content=content, request=request
        )

    async def aclose(self) -> None:
        await self.transport.aclose()
