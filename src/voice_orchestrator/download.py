"""
HTTP download engine.

Fetches a URL into a file (with byte-level progress) or parses a URL
response as JSON. Redirects are followed by hand so that the hop count is
bounded and relative ``Location`` headers are resolved against the URL
that produced them. A failed download never leaves a partial file behind.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urljoin

import httpx

from .errors import DownloadError, RedirectError

logger = logging.getLogger("voice-orchestrator.download")

REDIRECT_STATUSES = frozenset({301, 302, 307, 308})
MAX_REDIRECTS = 5
CHUNK_SIZE = 64 * 1024
# Only connecting is bounded; large model downloads may legitimately take minutes.
DEFAULT_TIMEOUT = httpx.Timeout(None, connect=30.0)

PercentCallback = Callable[[int], None]


def _discard(path: Path) -> None:
    """Remove a partially written file, if any."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove partial download %s: %s", path, exc)


def _content_length(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("content-length") or 0)
    except ValueError:
        return 0


class Downloader:
    """Redirect-aware downloader built on ``httpx.AsyncClient``.

    Usage:
        downloader = Downloader()
        await downloader.download(url, Path("voice.onnx"), on_progress=print)
        manifest = await downloader.fetch_json(catalog_url)

    Args:
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        max_redirects: Maximum redirect hops before failing.
        chunk_size: Bytes per streamed chunk.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_redirects: int = MAX_REDIRECTS,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._transport = transport
        self.max_redirects = max_redirects
        self._chunk_size = chunk_size

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=False,
            timeout=DEFAULT_TIMEOUT,
        )

    def _next_hop(self, response: httpx.Response, current: str) -> str:
        location = response.headers.get("location")
        if not location:
            raise RedirectError(
                "Redirect with no location header",
                url=current,
                status_code=response.status_code,
            )
        try:
            target = urljoin(current, location)
            httpx.URL(target)
        except (ValueError, httpx.InvalidURL) as exc:
            raise RedirectError(
                f"Malformed redirect location {location!r}: {exc}",
                url=current,
                status_code=response.status_code,
            ) from exc
        logger.debug("Redirect %s: %s -> %s", response.status_code, current, target)
        return target

    # ------------------------------------------------------------------
    # File downloads
    # ------------------------------------------------------------------

    async def download(
        self,
        url: str,
        dest: Path,
        on_progress: Optional[PercentCallback] = None,
    ) -> str:
        """Download ``url`` into ``dest``.

        Progress is reported as an integer percentage only when the final
        response declares a content length. Percentages never decrease.

        Args:
            url: Source URL.
            dest: Destination file path (parent directory must exist).
            on_progress: Optional callback receiving 0-100.

        Returns:
            The final URL after redirects.

        Raises:
            DownloadError: On network, status, redirect or write failure.
                ``dest`` does not exist afterwards.
        """
        dest = Path(dest)
        try:
            async with self._client() as client:
                final_url = await self._stream_to_file(client, url, dest, on_progress)
        except DownloadError:
            _discard(dest)
            raise
        except httpx.HTTPError as exc:
            _discard(dest)
            raise DownloadError(f"Network error downloading {url}: {exc}", url=url) from exc
        except OSError as exc:
            _discard(dest)
            raise DownloadError(f"Failed to write {dest}: {exc}", url=url) from exc
        except asyncio.CancelledError:
            _discard(dest)
            raise

        logger.info("Downloaded %s -> %s", final_url, dest)
        return final_url

    async def _stream_to_file(
        self,
        client: httpx.AsyncClient,
        url: str,
        dest: Path,
        on_progress: Optional[PercentCallback],
    ) -> str:
        current = url
        for _ in range(self.max_redirects + 1):
            async with client.stream("GET", current) as response:
                if response.status_code in REDIRECT_STATUSES:
                    current = self._next_hop(response, current)
                    continue

                if not response.is_success:
                    raise DownloadError(
                        f"Download failed with status {response.status_code}",
                        url=current,
                        status_code=response.status_code,
                    )

                total = _content_length(response)
                received = 0
                last_percent = -1
                with open(dest, "wb") as fh:
                    async for chunk in response.aiter_bytes(self._chunk_size):
                        fh.write(chunk)
                        received += len(chunk)
                        if on_progress is not None and total > 0:
                            percent = min(100, round(received * 100 / total))
                            if percent > last_percent:
                                last_percent = percent
                                on_progress(percent)
                return current

        raise RedirectError(
            f"Too many redirects (more than {self.max_redirects})", url=url
        )

    # ------------------------------------------------------------------
    # JSON documents
    # ------------------------------------------------------------------

    async def fetch_json(self, url: str) -> Any:
        """Fetch ``url`` and parse the whole body as one JSON document.

        Raises:
            DownloadError: On network, status or redirect failure, or if
                the body is not valid JSON. Nothing is retried.
        """
        try:
            async with self._client() as client:
                current = url
                for _ in range(self.max_redirects + 1):
                    response = await client.get(current)
                    if response.status_code in REDIRECT_STATUSES:
                        current = self._next_hop(response, current)
                        continue
                    if not response.is_success:
                        raise DownloadError(
                            f"HTTP {response.status_code}",
                            url=current,
                            status_code=response.status_code,
                        )
                    return json.loads(response.content)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Network error fetching {url}: {exc}", url=url) from exc
        except ValueError as exc:
            raise DownloadError(f"Invalid JSON from {url}: {exc}", url=url) from exc

        raise RedirectError(
            f"Too many redirects (more than {self.max_redirects})", url=url
        )
