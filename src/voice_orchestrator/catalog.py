"""
TTL cache for the remote Piper voice catalog.

The catalog (``voices.json`` on Hugging Face) lists every downloadable
voice. It is cached in memory for ``ttl`` seconds. When a refresh fails
the last good copy is served, however old; only a cold cache with a
failed fetch is an error. Concurrent refreshes share one in-flight
request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Callable, Optional

from pydantic import ValidationError

from .download import Downloader
from .errors import CatalogError, DownloadError
from .models import VoiceCatalogEntry
from .paths import AssetPaths, ensure_dir
from .results import OperationResult, ProgressCallback, report

logger = logging.getLogger("voice-orchestrator.catalog")

VOICES_CATALOG_URL = "https://huggingface.co/rhasspy/piper-voices/resolve/main/voices.json"
HF_BASE_URL = "https://huggingface.co/rhasspy/piper-voices/resolve/main"

DEFAULT_TTL = 600.0  # 10 minutes


@dataclass(frozen=True)
class CatalogSnapshot:
    """One generation of the cache; replaced whole, never mutated."""

    entries: dict[str, VoiceCatalogEntry]
    fetched_at: float


def parse_catalog(raw: Any) -> dict[str, VoiceCatalogEntry]:
    """Parse the raw manifest (voice key -> entry) into models.

    Entries that fail validation are skipped with a warning.

    Raises:
        CatalogError: If the manifest is not a JSON object.
    """
    if not isinstance(raw, dict):
        raise CatalogError("Invalid voice catalog: expected JSON object")

    entries: dict[str, VoiceCatalogEntry] = {}
    for key, value in raw.items():
        if not isinstance(value, dict):
            continue
        try:
            entries[key] = VoiceCatalogEntry.model_validate({"key": key, **value})
        except ValidationError as exc:
            logger.warning("Skipping invalid catalog entry '%s': %s", key, exc.errors()[:1])
    return entries


class VoiceCatalog:
    """In-memory catalog cache with stale fallback and request coalescing.

    Usage:
        catalog = VoiceCatalog(downloader)
        voices = await catalog.fetch()               # network
        voices = await catalog.fetch()               # cached (within TTL)
        voices = await catalog.fetch(force_refresh=True)

    Args:
        downloader: Downloader used for the manifest fetch.
        url: Manifest URL.
        ttl: Freshness window in seconds.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        downloader: Downloader,
        url: str = VOICES_CATALOG_URL,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._downloader = downloader
        self.url = url
        self.ttl = ttl
        self._clock = clock
        self._snapshot: Optional[CatalogSnapshot] = None
        self._inflight: Optional[asyncio.Task[CatalogSnapshot]] = None
        self.fetch_count = 0

    @property
    def is_populated(self) -> bool:
        return self._snapshot is not None

    def is_fresh(self) -> bool:
        if self._snapshot is None:
            return False
        return (self._clock() - self._snapshot.fetched_at) < self.ttl

    def get_entry(self, key: str) -> Optional[VoiceCatalogEntry]:
        """Look up a voice in the current cache generation, if any."""
        if self._snapshot is None:
            return None
        return self._snapshot.entries.get(key)

    async def fetch(self, force_refresh: bool = False) -> list[VoiceCatalogEntry]:
        """Return the catalog, refreshing it when stale or forced.

        Raises:
            CatalogError: Only if the fetch failed and nothing was ever cached.
        """
        if not force_refresh and self.is_fresh():
            return list(self._snapshot.entries.values())

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
            self._inflight.add_done_callback(self._clear_inflight)

        try:
            snapshot = await asyncio.shield(self._inflight)
        except (DownloadError, CatalogError) as exc:
            if self._snapshot is not None:
                logger.warning("Voice catalog refresh failed, serving cached copy: %s", exc)
                return list(self._snapshot.entries.values())
            if isinstance(exc, CatalogError):
                raise
            raise CatalogError(f"Failed to fetch voice catalog: {exc}") from exc

        return list(snapshot.entries.values())

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        # Consume the exception so an unawaited failure is not reported as lost.
        if not task.cancelled():
            task.exception()

    async def _refresh(self) -> CatalogSnapshot:
        self.fetch_count += 1
        started = self._clock()
        raw = await self._downloader.fetch_json(self.url)
        entries = parse_catalog(raw)
        snapshot = CatalogSnapshot(entries=entries, fetched_at=started)
        self._snapshot = snapshot
        logger.info("Voice catalog loaded: %d voices", len(entries))
        return snapshot

    # ------------------------------------------------------------------
    # Installing a catalog voice
    # ------------------------------------------------------------------

    async def download_voice(
        self,
        voice_key: str,
        paths: AssetPaths,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OperationResult:
        """Download a catalog voice's model and config into the voices directory."""
        try:
            if not self.is_populated:
                await self.fetch()

            entry = self.get_entry(voice_key)
            if entry is None:
                return OperationResult.fail(f'Voice "{voice_key}" not found in catalog')

            model = entry.model_file()
            config = entry.config_file()
            if model is None or config is None:
                return OperationResult.fail("Voice files not found in catalog entry")

            model_path, model_meta = model
            config_path, _ = config

            voices_dir = ensure_dir(paths.piper_voices_dir)
            local_model = voices_dir / PurePosixPath(model_path).name
            local_config = voices_dir / PurePosixPath(config_path).name

            size_mb = round(model_meta.size_bytes / (1024 * 1024))
            report(on_progress, f"Downloading {entry.name or voice_key} ({size_mb}MB)...", 0)

            await self._downloader.download(
                f"{HF_BASE_URL}/{model_path}",
                local_model,
                lambda pct: report(on_progress, "Downloading voice model...", round(pct * 0.9)),
            )

            report(on_progress, "Downloading config...", 95)
            try:
                await self._downloader.download(f"{HF_BASE_URL}/{config_path}", local_config)
            except DownloadError:
                local_model.unlink(missing_ok=True)
                raise

            report(on_progress, "Voice installed successfully", 100)
            return OperationResult.ok(voice_key=voice_key)

        except (DownloadError, CatalogError) as exc:
            logger.error("Catalog voice download failed for %s: %s", voice_key, exc)
            return OperationResult.fail(str(exc))
        except OSError as exc:
            return OperationResult.fail(str(exc))
