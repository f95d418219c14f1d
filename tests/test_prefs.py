"""Tests for the preference stores."""

from __future__ import annotations

import json

import pytest

from passline.storage.prefs import JsonFilePreferenceStore, MemoryPreferenceStore


class TestMemoryPreferenceStore:
    """Test batching and notification on the in-memory store."""

    @pytest.mark.asyncio
    async def test_get_defaults(self):
        """Test missing keys return defaults."""
        store = MemoryPreferenceStore()
        assert await store.get_string("username") is None
        assert await store.get_string("username", "anon") == "anon"
        assert await store.get_string_set("credentials") == frozenset()

    @pytest.mark.asyncio
    async def test_edit_commits_batch(self):
        """Test an edit block applies all changes together."""
        store = MemoryPreferenceStore({"username": "alice", "session_id": "old"})
        async with store.edit() as editor:
            editor.put_string("session_id", "new")
            editor.put_string_set("credentials", {"0;a;pk"})
            editor.remove("username")

        assert await store.get_string("session_id") == "new"
        assert await store.get_string_set("credentials") == frozenset({"0;a;pk"})
        assert await store.get_string("username") is None

    @pytest.mark.asyncio
    async def test_failed_edit_writes_nothing(self):
        """Test an exception inside the edit block discards the batch."""
        store = MemoryPreferenceStore({"username": "alice"})
        with pytest.raises(RuntimeError):
            async with store.edit() as editor:
                editor.remove("username")
                raise RuntimeError("boom")

        assert await store.get_string("username") == "alice"

    @pytest.mark.asyncio
    async def test_listeners_get_changed_keys_only(self):
        """Test listeners hear about keys whose value actually changed."""
        store = MemoryPreferenceStore({"username": "alice"})
        seen: list[str] = []
        store.add_listener(seen.append)

        async with store.edit() as editor:
            editor.put_string("username", "alice")
            editor.put_string("session_id", "s1")
            editor.remove("missing")

        assert seen == ["session_id"]

    @pytest.mark.asyncio
    async def test_listener_error_does_not_break_commit(self):
        """Test a failing listener is logged and others still run."""
        store = MemoryPreferenceStore()
        seen: list[str] = []

        def broken(key: str) -> None:
            raise ValueError(key)

        store.add_listener(broken)
        store.add_listener(seen.append)
        async with store.edit() as editor:
            editor.put_string("username", "bob")

        assert seen == ["username"]
        assert store.peek_string("username") == "bob"

    @pytest.mark.asyncio
    async def test_remove_listener(self):
        """Test removed listeners are not called."""
        store = MemoryPreferenceStore()
        seen: list[str] = []
        store.add_listener(seen.append)
        store.remove_listener(seen.append)
        async with store.edit() as editor:
            editor.put_string("username", "bob")
        assert seen == []


class TestJsonFilePreferenceStore:
    """Test the JSON file-backed store."""

    @pytest.fixture
    def store_path(self, tmp_path):
        return tmp_path / "state" / "passline.json"

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, store_path):
        """Test a missing file loads as empty."""
        store = JsonFilePreferenceStore(store_path)
        assert await store.get_string("username") is None

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, store_path):
        """Test committed values survive a new store instance."""
        store = JsonFilePreferenceStore(store_path)
        async with store.edit() as editor:
            editor.put_string("username", "alice")
            editor.put_string_set("credentials", {"1;b;pk-b", "0;a;pk-a"})

        data = json.loads(store_path.read_text())
        assert data["credentials"] == ["0;a;pk-a", "1;b;pk-b"]

        reloaded = JsonFilePreferenceStore(store_path)
        assert await reloaded.get_string("username") == "alice"
        assert await reloaded.get_string_set("credentials") == frozenset({"0;a;pk-a", "1;b;pk-b"})

    @pytest.mark.asyncio
    async def test_corrupt_file_is_empty(self, store_path):
        """Test an unreadable file is treated as empty and rewritten."""
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")

        store = JsonFilePreferenceStore(store_path)
        assert await store.get_string("username") is None

        async with store.edit() as editor:
            editor.put_string("username", "carol")
        assert json.loads(store_path.read_text()) == {"username": "carol"}
