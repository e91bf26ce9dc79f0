"""Unit tests for the fingerprint provider and session stores."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from pixpopup.fingerprint import FALLBACK_KEY, FingerprintProvider
from pixpopup.storage import JsonFileSessionStore


@pytest.mark.unit
class TestFingerprintProvider:

    @pytest.mark.asyncio
    async def test_source_result_cached(self, store):
        source = AsyncMock(return_value="visitor-abc")
        provider = FingerprintProvider(source, store)

        assert await provider.get() == "visitor-abc"
        assert await provider.get() == "visitor-abc"
        source.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_lookup(self, store):
        async def slow_source():
            await asyncio.sleep(0.01)
            return "visitor-abc"

        source = AsyncMock(side_effect=slow_source)
        provider = FingerprintProvider(source, store)

        results = await asyncio.gather(provider.get(), provider.get(), provider.get())

        assert results == ["visitor-abc"] * 3
        source.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_uses_persisted_fallback(self, store):
        failing = AsyncMock(side_effect=RuntimeError("blocked"))

        first = await FingerprintProvider(failing, store).get()
        second = await FingerprintProvider(failing, store).get()

        assert first.startswith("fb_")
        assert first == second
        assert store.get(FALLBACK_KEY) == first

    @pytest.mark.asyncio
    async def test_empty_source_result_uses_fallback(self, store):
        provider = FingerprintProvider(AsyncMock(return_value=""), store)
        assert (await provider.get()).startswith("fb_")

    @pytest.mark.asyncio
    async def test_corrupted_fallback_regenerated(self, store):
        store.set(FALLBACK_KEY, "garbage")

        fingerprint = await FingerprintProvider(store=store).get()

        assert fingerprint.startswith("fb_")
        assert store.get(FALLBACK_KEY) == fingerprint


@pytest.mark.unit
class TestJsonFileSessionStore:

    def test_values_survive_new_instance(self, tmp_path):
        path = tmp_path / "session.json"
        JsonFileSessionStore(str(path)).set("key", "value")

        assert JsonFileSessionStore(str(path)).get("key") == "value"

    def test_delete(self, tmp_path):
        store = JsonFileSessionStore(str(tmp_path / "session.json"))
        store.set("key", "value")
        store.delete("key")
        store.delete("missing")

        assert store.get("key") is None

    def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{broken", encoding="utf-8")

        assert JsonFileSessionStore(str(path)).get("key") is None

    def test_write_leaves_no_temporary_file(self, tmp_path):
        path = tmp_path / "nested" / "session.json"
        store = JsonFileSessionStore(str(path))
        store.set("a", "1")
        store.set("b", "2")

        assert sorted(p.name for p in path.parent.iterdir()) == ["session.json"]
        assert JsonFileSessionStore(str(path)).get("a") == "1"

    def test_stale_temporary_file_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        (tmp_path / "session.json.tmp").write_text("{trunc", encoding="utf-8")
        store = JsonFileSessionStore(str(path))

        store.set("key", "value")

        assert store.get("key") == "value"
