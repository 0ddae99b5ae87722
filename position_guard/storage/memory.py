"""In-process leased key-value store with transactional writes."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from ..exceptions import ArchivedEntryError, StateError

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def wall_clock() -> int:
    return int(time.time())


@dataclass(frozen=True)
class _Entry:
    value: Any
    live_until: int


class MemoryStore:
    """Keyed store where each entry lives until its lease lapses.

    Writes are only accepted inside ``transaction()``; they are staged and
    become visible to other callers only when the transaction exits cleanly.
    The transaction lock serializes calls, so no two operations interleave
    their effects.
    """

    def __init__(self, clock: Clock | None = None, max_lease: int = 31_536_000) -> None:
        self._clock = clock or wall_clock
        self._max_lease = max_lease
        self._entries: dict[str, _Entry] = {}
        self._archive: dict[str, _Entry] = {}
        self._staged: dict[str, _Entry] | None = None
        self._owner: asyncio.Task[Any] | None = None
        self._lock = asyncio.Lock()

    def _in_transaction(self) -> bool:
        """True when the calling task holds the open transaction."""
        if self._staged is None:
            return False
        try:
            return asyncio.current_task() is self._owner
        except RuntimeError:
            return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _lookup(self, key: str) -> _Entry | None:
        if self._in_transaction() and key in self._staged:
            return self._staged[key]
        return self._entries.get(key)

    def get(self, key: str) -> Any | None:
        """Return the live value for ``key`` or None when it was never written."""
        entry = self._lookup(key)
        if entry is None:
            if key in self._archive:
                raise ArchivedEntryError(f"Entry '{key}' is archived; restore it first")
            return None
        if self._clock() > entry.live_until:
            raise ArchivedEntryError(f"Lease on '{key}' lapsed; restore it first")
        return entry.value

    def has(self, key: str) -> bool:
        return self._lookup(key) is not None or key in self._archive

    def live_until(self, key: str) -> int | None:
        entry = self._lookup(key)
        return entry.live_until if entry else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _require_transaction(self) -> dict[str, _Entry]:
        if not self._in_transaction():
            raise StateError("Store writes require an open transaction")
        return self._staged

    def set(self, key: str, value: Any) -> None:
        staged = self._require_transaction()
        current = self._lookup(key)
        live_until = current.live_until if current else self._clock()
        staged[key] = _Entry(value=value, live_until=live_until)

    def extend_ttl(self, key: str, ttl: int) -> None:
        """Renew the lease on ``key`` to ``now + ttl``, capped at the max lease."""
        staged = self._require_transaction()
        current = self._lookup(key)
        if current is None:
            raise StateError(f"Cannot extend lease on missing entry '{key}'")
        horizon = self._clock() + min(ttl, self._max_lease)
        staged[key] = _Entry(
            value=current.value, live_until=max(current.live_until, horizon)
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._lock:
            self._staged = {}
            self._owner = asyncio.current_task()
            try:
                yield
            except BaseException:
                logger.debug(
                    "Transaction rolled back, discarded %d staged writes",
                    len(self._staged),
                )
                raise
            else:
                self._entries.update(self._staged)
            finally:
                self._staged = None
                self._owner = None

    # ------------------------------------------------------------------
    # Lease maintenance
    # ------------------------------------------------------------------

    def archive_expired(self) -> list[str]:
        """Move every entry whose lease lapsed into the archive."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now > e.live_until]
        for key in expired:
            self._archive[key] = self._entries.pop(key)
        if expired:
            logger.info("Archived %d entries with lapsed leases", len(expired))
        return expired

    def restore(self, key: str, ttl: int) -> None:
        """Re-materialize an archived (or lapsed) entry with a fresh lease."""
        entry = self._archive.pop(key, None) or self._entries.get(key)
        if entry is None:
            raise KeyError(key)
        horizon = self._clock() + min(ttl, self._max_lease)
        self._entries[key] = _Entry(
            value=entry.value, live_until=max(entry.live_until, horizon)
        )
        logger.info("Restored entry '%s' (live until %d)", key, horizon)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def save(self, path: str | Path) -> None:
        """Write committed state to ``path`` as JSON (atomic replace)."""
        path = Path(path)
        payload = {
            "entries": {
                k: {"value": e.value, "live_until": e.live_until}
                for k, e in self._entries.items()
            },
            "archive": {
                k: {"value": e.value, "live_until": e.live_until}
                for k, e in self._archive.items()
            },
        }
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
        os.replace(tmp_path, path)
        logger.debug("Snapshot written to %s", path)

    @classmethod
    def load(
        cls,
        path: str | Path,
        clock: Clock | None = None,
        max_lease: int = 31_536_000,
    ) -> MemoryStore:
        """Load a snapshot written by ``save``; a missing file yields an empty store."""
        store = cls(clock=clock, max_lease=max_lease)
        path = Path(path)
        if not path.exists():
            logger.info("No snapshot at %s, starting with an empty store", path)
            return store

        with open(path) as f:
            payload = json.load(f)

        for key, raw in payload.get("entries", {}).items():
            store._entries[key] = _Entry(raw["value"], int(raw["live_until"]))
        for key, raw in payload.get("archive", {}).items():
            store._archive[key] = _Entry(raw["value"], int(raw["live_until"]))
        logger.info(
            "Loaded %d entries (%d archived) from %s",
            len(store._entries),
            len(store._archive),
            path,
        )
        return store
