"""
Tests for the voice catalog cache.

Tests cover:
- TTL freshness with an injected clock
- Stale fallback when a refresh fails
- Coalescing of concurrent refreshes
- Catalog voice downloads
"""

import asyncio
import json

import httpx
import pytest

from voice_orchestrator.catalog import HF_BASE_URL, VoiceCatalog, parse_catalog
from voice_orchestrator.download import Downloader
from voice_orchestrator.errors import CatalogError

CATALOG = {
    "en_US-amy-medium": {
        "key": "en_US-amy-medium",
        "name": "amy",
        "language": {"code": "en_US", "family": "en", "name_english": "English"},
        "quality": "medium",
        "num_speakers": 1,
        "speaker_id_map": {},
        "files": {
            "en/en_US/amy/medium/en_US-amy-medium.onnx": {"size_bytes": 63201294, "md5_digest": "abc"},
            "en/en_US/amy/medium/en_US-amy-medium.onnx.json": {"size_bytes": 4882, "md5_digest": "def"},
            "en/en_US/amy/medium/MODEL_CARD": {"size_bytes": 281, "md5_digest": "ghi"},
        },
        "aliases": [],
    },
    "de_DE-thorsten-high": {
        "key": "de_DE-thorsten-high",
        "name": "thorsten",
        "language": {"code": "de_DE", "family": "de"},
        "quality": "high",
        "num_speakers": 1,
        "files": {},
        "aliases": ["de-thorsten-high"],
    },
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CatalogServer:
    """MockTransport handler serving the catalog; can be switched to fail."""

    def __init__(self) -> None:
        self.requests: list[str] = []
        self.failing = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        if self.failing:
            return httpx.Response(500)
        if request.url.path.endswith("voices.json"):
            return httpx.Response(200, content=json.dumps(CATALOG).encode())
        if request.url.path.endswith(".onnx"):
            return httpx.Response(200, content=b"model-bytes")
        if request.url.path.endswith(".onnx.json"):
            return httpx.Response(200, content=b'{"audio": {}}')
        return httpx.Response(404)


@pytest.fixture
def server() -> CatalogServer:
    return CatalogServer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog(server, clock) -> VoiceCatalog:
    return VoiceCatalog(Downloader(transport=httpx.MockTransport(server)), ttl=600, clock=clock)


# ============================================================================
# Parsing
# ============================================================================


class TestParseCatalog:
    def test_parses_entries(self):
        entries = parse_catalog(CATALOG)
        amy = entries["en_US-amy-medium"]
        assert amy.language.code == "en_US"
        assert amy.model_file()[0].endswith("en_US-amy-medium.onnx")
        assert amy.config_file()[0].endswith("en_US-amy-medium.onnx.json")

    def test_skips_invalid_entries(self):
        raw = dict(CATALOG)
        raw["broken"] = {"num_speakers": "many"}
        entries = parse_catalog(raw)
        assert "broken" not in entries
        assert len(entries) == 2

    def test_rejects_non_object(self):
        with pytest.raises(CatalogError):
            parse_catalog(["not", "a", "dict"])


# ============================================================================
# TTL caching
# ============================================================================


class TestCatalogCache:
    """Test freshness and stale fallback behavior."""

    @pytest.mark.asyncio
    async def test_second_call_within_ttl_uses_cache(self, catalog, server, clock):
        first = await catalog.fetch()
        clock.now += 599
        second = await catalog.fetch()

        assert len(server.requests) == 1
        assert {v.key for v in first} == {v.key for v in second}

    @pytest.mark.asyncio
    async def test_refetches_once_ttl_elapsed(self, catalog, server, clock):
        await catalog.fetch()
        clock.now += 600
        await catalog.fetch()
        await catalog.fetch()

        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, catalog, server):
        await catalog.fetch()
        await catalog.fetch(force_refresh=True)
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_stale_data_served_when_refresh_fails(self, catalog, server, clock):
        fresh = await catalog.fetch()
        server.failing = True
        clock.now += 3600

        stale = await catalog.fetch()

        assert len(server.requests) == 2
        assert [v.key for v in stale] == [v.key for v in fresh]

    @pytest.mark.asyncio
    async def test_cold_failure_raises(self, catalog, server):
        server.failing = True
        with pytest.raises(CatalogError):
            await catalog.fetch()
        assert not catalog.is_populated

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_request(self, catalog, server):
        results = await asyncio.gather(*(catalog.fetch() for _ in range(5)))

        assert len(server.requests) == 1
        assert catalog.fetch_count == 1
        assert all(len(r) == 2 for r in results)

    @pytest.mark.asyncio
    async def test_concurrent_cold_failures_all_raise(self, catalog, server):
        server.failing = True
        results = await asyncio.gather(
            *(catalog.fetch() for _ in range(3)), return_exceptions=True
        )
        assert len(server.requests) == 1
        assert all(isinstance(r, CatalogError) for r in results)


# ============================================================================
# Catalog voice downloads
# ============================================================================


class TestDownloadCatalogVoice:
    @pytest.mark.asyncio
    async def test_downloads_model_and_config(self, catalog, server, asset_paths):
        progress = []
        result = await catalog.download_voice(
            "en_US-amy-medium", asset_paths, lambda status, pct: progress.append(pct)
        )

        assert result.success
        assert result.voice_key == "en_US-amy-medium"
        assert asset_paths.voice_model_path("en_US-amy-medium").read_bytes() == b"model-bytes"
        assert asset_paths.voice_config_path("en_US-amy-medium").is_file()
        assert f"{HF_BASE_URL}/en/en_US/amy/medium/en_US-amy-medium.onnx" in server.requests
        assert progress[-1] == 100
        assert 95 in progress
        assert max(p for p in progress[:-2] if p is not None) <= 90

    @pytest.mark.asyncio
    async def test_unknown_voice_fails(self, catalog, asset_paths):
        result = await catalog.download_voice("xx_XX-nobody-low", asset_paths)
        assert not result.success
        assert result.error == 'Voice "xx_XX-nobody-low" not found in catalog'

    @pytest.mark.asyncio
    async def test_entry_without_files_fails(self, catalog, asset_paths):
        result = await catalog.download_voice("de_DE-thorsten-high", asset_paths)
        assert not result.success
        assert "not found" in result.error
