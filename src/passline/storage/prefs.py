"""Key-value persistence for the sign-in identity and credential cache.

Values are either strings or sets of strings. Writes are grouped in an
``edit()`` block that is applied atomically under the store lock; listeners
are told which keys changed once the batch has been committed.

JSON file format (passline.json):
    {
        "username": "alice",
        "session_id": "s%3Aabc...",
        "credentials": ["0;AbC;pk-1", "1;dEf;pk-2"],
        "local_credential_id": "AbC"
    }
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Union

import structlog

logger = structlog.get_logger()

PrefValue = Union[str, frozenset[str]]
ChangeListener = Callable[[str], None]


class PreferenceEditor:
    """Collects puts and removes for one atomic commit."""

    def __init__(self) -> None:
        self._changes: dict[str, PrefValue | None] = {}

    def put_string(self, key: str, value: str) -> PreferenceEditor:
        self._changes[key] = value
        return self

    def put_string_set(self, key: str, values: set[str] | frozenset[str]) -> PreferenceEditor:
        self._changes[key] = frozenset(values)
        return self

    def remove(self, key: str) -> PreferenceEditor:
        self._changes[key] = None
        return self

    @property
    def changes(self) -> dict[str, PrefValue | None]:
        return dict(self._changes)


class PreferenceStore(ABC):
    """Observable string / string-set store.

    Subclasses only implement loading and saving the whole mapping; locking,
    batching and change notification live here.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._values: dict[str, PrefValue] | None = None
        self._listeners: list[ChangeListener] = []

    @abstractmethod
    async def _load(self) -> dict[str, PrefValue]:
        """Load all values from the backing medium."""

    @abstractmethod
    async def _save(self, values: dict[str, PrefValue]) -> None:
        """Persist all values to the backing medium."""

    async def _ensure_loaded(self) -> dict[str, PrefValue]:
        if self._values is None:
            self._values = await self._load()
        return self._values

    async def load(self) -> None:
        """Load the backing medium now rather than on first access."""
        async with self._lock:
            await self._ensure_loaded()

    async def get_string(self, key: str, default: str | None = None) -> str | None:
        async with self._lock:
            value = (await self._ensure_loaded()).get(key)
        return value if isinstance(value, str) else default

    async def get_string_set(self, key: str) -> frozenset[str]:
        async with self._lock:
            value = (await self._ensure_loaded()).get(key)
        return value if isinstance(value, frozenset) else frozenset()

    def peek_string(self, key: str) -> str | None:
        """Synchronous read of an already loaded value."""
        value = (self._values or {}).get(key)
        return value if isinstance(value, str) else None

    def peek_string_set(self, key: str) -> frozenset[str]:
        """Synchronous read of an already loaded string set."""
        value = (self._values or {}).get(key)
        return value if isinstance(value, frozenset) else frozenset()

    @asynccontextmanager
    async def edit(self) -> AsyncIterator[PreferenceEditor]:
        """Apply a batch of changes atomically.

        Usage:
            async with store.edit() as editor:
                editor.put_string("session_id", sid)
                editor.remove("credentials")

        Nothing is written if the block raises.
        """
        editor = PreferenceEditor()
        yield editor
        await self.commit(editor)

    async def commit(self, editor: PreferenceEditor) -> set[str]:
        """Write the editor's changes and notify listeners. Returns changed keys."""
        changed: set[str] = set()
        async with self._lock:
            current = await self._ensure_loaded()
            updated = dict(current)
            for key, value in editor.changes.items():
                if value is None:
                    if key in updated:
                        del updated[key]
                        changed.add(key)
                elif updated.get(key) != value:
                    updated[key] = value
                    changed.add(key)
            if changed:
                await self._save(updated)
                self._values = updated

        for key in sorted(changed):
            self._notify(key)
        return changed

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback invoked with the key of every committed change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception as e:
                logger.warning("Preference listener error", key=key, error=str(e))


class MemoryPreferenceStore(PreferenceStore):
    """Process-local store, used by tests and one-shot sessions."""

    def __init__(self, initial: dict[str, str | set[str]] | None = None) -> None:
        super().__init__()
        self._initial: dict[str, PrefValue] = {
            key: frozenset(value) if isinstance(value, (set, frozenset)) else value
            for key, value in (initial or {}).items()
        }

    async def _load(self) -> dict[str, PrefValue]:
        return dict(self._initial)

    async def _save(self, values: dict[str, PrefValue]) -> None:
        self._initial = dict(values)


class JsonFilePreferenceStore(PreferenceStore):
    """JSON file-backed store.

    File I/O runs in a worker thread. A missing or unreadable file loads as
    empty; it is rewritten on the next commit.
    """

    def __init__(self, storage_path: str | Path = "passline.json") -> None:
        super().__init__()
        self.storage_path = Path(storage_path)

    async def _load(self) -> dict[str, PrefValue]:
        if not self.storage_path.exists():
            return {}

        try:
            content = await asyncio.to_thread(self.storage_path.read_text, "utf-8")
            data = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable preference file", path=str(self.storage_path), error=str(e))
            return {}

        if not isinstance(data, dict):
            return {}

        values: dict[str, PrefValue] = {}
        for key, value in data.items():
            if isinstance(value, str):
                values[key] = value
            elif isinstance(value, list) and all(isinstance(v, str) for v in value):
                values[key] = frozenset(value)
        return values

    async def _save(self, values: dict[str, PrefValue]) -> None:
        data = {
            key: sorted(value) if isinstance(value, frozenset) else value
            for key, value in values.items()
        }
        content = json.dumps(data, indent=2)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self.storage_path.write_text, content, "utf-8")
