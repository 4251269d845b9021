"""
HTTP fetcher streaming one remote dataset file to a local staging path.

Bytes move from the socket to disk chunk by chunk; the payload is never
held in memory. A failed transfer is not retried, and a partially written
destination is left for the caller to clean up.
"""

import httpx
from pathlib import Path
from typing import Optional, Union
from core.config import settings
from core.exceptions import TransferError
from ingestion.streams import write_chunks
import logging
import time

logger = logging.getLogger(__name__)


class HTTPFetcher:
    """
    Download remote files over HTTP(S).

    Attributes:
        client: Optional shared ``httpx.AsyncClient``; when omitted a client
            is created per download and closed afterwards
        timeout: Request timeout in seconds, ``None`` for no timeout
        chunk_size: Bytes requested per network read and per disk write
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        chunk_size: Optional[int] = None
    ):
        self.client = client
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT
        self.chunk_size = chunk_size or settings.STREAM_CHUNK_SIZE

    async def download(self, url: str, destination: Union[str, Path]) -> int:
        """
        Stream ``url`` into ``destination``, overwriting any existing file.

        Returns:
            Number of bytes written

        Raises:
            TransferError: Non-2xx status, connection failure mid-transfer,
                or a destination that cannot be written
        """
        logger.info(f"Starting download {url}")
        started = time.monotonic()

        if self.client is not None:
            written = await self._stream_to_file(self.client, url, destination)
        else:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                written = await self._stream_to_file(client, url, destination)

        logger.info(
            f"Download completed {url} "
            f"({written} bytes in {time.monotonic() - started:.1f}s)"
        )
        return written

    async def _stream_to_file(
        self,
        client: httpx.AsyncClient,
        url: str,
        destination: Union[str, Path]
    ) -> int:
        context = {"url": url, "destination": str(destination)}
        try:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    context["status_code"] = response.status_code
                    raise TransferError(
                        f"Download failed with HTTP {response.status_code}: {url}",
                        context=context
                    )
                return await write_chunks(
                    response.aiter_bytes(self.chunk_size),
                    destination,
                    self.chunk_size
                )

        except TransferError:
            raise

        except httpx.HTTPError as e:
            raise TransferError(
                f"Connection failed during download: {url}",
                context=context,
                original_exception=e
            )

        except OSError as e:
            raise TransferError(
                f"Cannot write download destination: {destination}",
                context=context,
                original_exception=e
            )
