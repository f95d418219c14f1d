"""Local cache of the server's credential list.

The persistence primitive only stores unordered string sets, so each
credential is written as ``"{index};{id};{public_key}"`` where ``index`` is
its position in the server's list. Decoding sorts on that index to restore
server order. Neither ``id`` nor ``public_key`` may contain ``;``.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from passline.core.broadcast import Broadcaster, Subscription
from passline.protocol.types import Credential
from passline.storage.prefs import PreferenceStore

logger = structlog.get_logger()

CREDENTIALS_KEY = "credentials"
DELIMITER = ";"


def encode_credentials(credentials: Iterable[Credential]) -> frozenset[str]:
    """Encode an ordered credential list as an index-tagged string set.

    Raises:
        ValueError: If a credential field contains the delimiter.
    """
    encoded = set()
    for index, credential in enumerate(credentials):
        if DELIMITER in credential.id or DELIMITER in credential.public_key:
            raise ValueError(f"Credential fields must not contain {DELIMITER!r}: {credential.id}")
        encoded.add(f"{index}{DELIMITER}{credential.id}{DELIMITER}{credential.public_key}")
    return frozenset(encoded)


def decode_credentials(encoded: Iterable[str]) -> list[Credential]:
    """Decode an index-tagged string set back into server order.

    Entries that do not have exactly three fields or a numeric index are
    skipped.
    """
    indexed: list[tuple[int, Credential]] = []
    for entry in encoded:
        parts = entry.split(DELIMITER)
        if len(parts) != 3 or not parts[0].isdigit():
            logger.warning("Skipping malformed cached credential", entry_length=len(entry))
            continue
        index, cred_id, public_key = parts
        indexed.append((int(index), Credential(id=cred_id, public_key=public_key)))
    indexed.sort(key=lambda pair: pair[0])
    return [credential for _, credential in indexed]


class CredentialStore:
    """Observable, order-preserving credential cache.

    Publishes the decoded list whenever the underlying key changes, whoever
    changed it (this store, or a batched edit that also rotated the session).
    """

    def __init__(self, prefs: PreferenceStore, buffer_size: int = 16) -> None:
        self._prefs = prefs
        self._updates: Broadcaster[list[Credential]] = Broadcaster(buffer_size=buffer_size)
        self._prefs.add_listener(self._on_change)
        self._started = False

    async def start(self) -> None:
        """Load the cached list and seed observers with it."""
        if self._started:
            return
        self._started = True
        self._updates.publish(await self.current())

    def close(self) -> None:
        self._prefs.remove_listener(self._on_change)
        self._updates.close()

    async def current(self) -> list[Credential]:
        return decode_credentials(await self._prefs.get_string_set(CREDENTIALS_KEY))

    async def replace(self, credentials: list[Credential]) -> None:
        """Atomically overwrite the cached list."""
        encoded = encode_credentials(credentials)
        async with self._prefs.edit() as editor:
            editor.put_string_set(CREDENTIALS_KEY, encoded)

    async def clear(self) -> None:
        async with self._prefs.edit() as editor:
            editor.remove(CREDENTIALS_KEY)

    def observe(self) -> Subscription[list[Credential]]:
        """Subscribe to the decoded list; the current list is delivered first."""
        return self._updates.subscribe()

    def _on_change(self, key: str) -> None:
        if key != CREDENTIALS_KEY:
            return
        credentials = decode_credentials(self._prefs.peek_string_set(CREDENTIALS_KEY))
        self._updates.publish(credentials)
