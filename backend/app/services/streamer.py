import logging
from typing import AsyncGenerator, Dict, Optional

import httpx

from backend.app.core.config import settings
from backend.app.core.errors import TranscodeError

logger = logging.getLogger(__name__)


async def open_source(
    url: str,
    headers: Optional[Dict[str, str]] = None,
    chunk_size: int = settings.STREAM_CHUNK_SIZE,
) -> AsyncGenerator[bytes, None]:
    """Forward-only read of a remote media URL, chunk by chunk."""
    headers = headers or {'User-Agent': settings.USER_AGENT}
    # No read timeout: a stalled upstream stalls the response until disconnect
    async with httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(30.0, read=None)) as client:
        async with client.stream("GET", url, headers=headers) as response:
            if response.status_code >= 400:
                raise TranscodeError(f"Upstream responded with HTTP {response.status_code}")
            logger.debug("Source stream opened (%s bytes)", response.headers.get("Content-Length", "unknown"))
            async for chunk in response.aiter_bytes(chunk_size=chunk_size):
                yield chunk
