"""Asynchronous fetching of bundle resources.

HTTP(S) URLs are fetched with a per-fetcher `requests.Session`; `file://` URLs
and plain filesystem paths are read from disk. Blocking reads run in worker
threads so a pipeline only suspends at fetch points. Timeouts are the caller's
policy and are not imposed here.

HTTP bodies are streamed in chunks. Between chunks the worker checks whether its
fetch was cancelled or the fetcher was closed, and if so drops the connection,
so an abandoned download stops after at most one more chunk.
"""

import asyncio
import logging
import threading

from pathlib import Path
from typing import Sequence
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from assetsmith.errors import ResourceFetchError

console_logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class FetchAbortedError(Exception):
    """A download was stopped because its fetch was cancelled or the fetcher closed."""


class ResourceFetcher:
    """Fetches resource bytes for a single asset pipeline.

    A fetcher owns its HTTP session and is not meant to be shared between
    concurrently loading assets.
    """

    def __init__(
        self,
        max_concurrency: int = 4,
        verify_ssl: bool = True,
        session: requests.Session | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the fetcher.

        Args:
            max_concurrency: Upper bound on simultaneous fetches in fetch_many.
            verify_ssl: Whether to verify TLS certificates.
            session: Optional pre-configured session (auth headers, adapters).
            chunk_size: Bytes read per step of a streamed HTTP body. Bounds how
                much is still read after a fetch is abandoned.
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.max_concurrency = max_concurrency
        self.verify_ssl = verify_ssl
        self.chunk_size = chunk_size
        self._session = session or requests.Session()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def fetch(self, url: str, resource: str | None = None) -> bytes:
        """Fetch one resource.

        Cancelling the awaiting task also stops the download running in the
        worker thread.

        Args:
            url: HTTP(S) URL, file:// URL, or filesystem path.
            resource: Name used in error messages (defaults to the URL).

        Returns:
            The resource bytes.

        Raises:
            ResourceFetchError: If the resource cannot be read.
        """
        resource = resource or url
        if self.closed:
            raise ResourceFetchError(resource, RuntimeError("fetcher is closed"))

        console_logger.debug(f"Fetching {resource} from {url}")
        abort = threading.Event()
        try:
            return await asyncio.to_thread(self._fetch_blocking, url, abort)
        except asyncio.CancelledError:
            abort.set()
            console_logger.debug(f"Fetch of {resource} cancelled")
            raise
        except Exception as e:
            raise ResourceFetchError(resource, e) from e

    async def fetch_many(
        self, resources: Sequence[tuple[str, str]]
    ) -> list[bytes]:
        """Fetch several resources concurrently with bounded fan-out.

        Completions are unordered but all are awaited; results are returned in
        request order. If any fetch fails (or the caller is cancelled) the
        remaining fetches are cancelled before the error propagates.

        Args:
            resources: (url, resource name) pairs.

        Returns:
            Resource bytes in request order.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded_fetch(url: str, resource: str) -> bytes:
            async with semaphore:
                return await self.fetch(url, resource)

        tasks = [
            asyncio.ensure_future(bounded_fetch(url, resource))
            for url, resource in resources
        ]
        if not tasks:
            return []

        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _fetch_blocking(self, url: str, abort: threading.Event) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            return self._download(url, abort)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path)).read_bytes()
        if parsed.scheme and len(parsed.scheme) > 1:
            raise ValueError(f"Unsupported URL scheme '{parsed.scheme}'")
        # Plain filesystem path (single-letter "schemes" are Windows drives).
        return Path(url).read_bytes()

    def _download(self, url: str, abort: threading.Event) -> bytes:
        response = self._session.get(url, verify=self.verify_ssl, stream=True)
        try:
            response.raise_for_status()
            chunks = []
            for chunk in response.iter_content(chunk_size=self.chunk_size):
                if abort.is_set() or self.closed:
                    raise FetchAbortedError(f"Download of {url} aborted")
                chunks.append(chunk)
            return b"".join(chunks)
        finally:
            # Drops the connection if the body was not read to the end.
            response.close()

    def close(self) -> None:
        """Close the HTTP session and stop downloads still in progress."""
        if not self.closed:
            self._closed.set()
            self._session.close()

    def __enter__(self) -> "ResourceFetcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
