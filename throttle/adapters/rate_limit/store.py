"""In-memory window store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: keys are hashed onto a fixed set of shards, each with its own
  lock and dict. Locks live as long as the store, so deleting a record never
  leaves a waiter holding a lock nobody else will use.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Iterator

from throttle.adapters.rate_limit.base import AbstractWindowStore, RecordT

DEFAULT_SHARDS = 64


@dataclass
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    records: dict = field(default_factory=dict)


class InMemoryWindowStore(AbstractWindowStore[RecordT]):
    """Sharded dict of client key to window record."""

    def __init__(self, shards: int = DEFAULT_SHARDS) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards = [_Shard() for _ in range(shards)]

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryWindowStore(shards={len(self._shards)}, size={len(self)})"

    @property
    def shard_count(self) -> int:
        return len(self._shards)

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def lock(self, key: str) -> threading.Lock:
        return self._shard_for(key).lock

    def get(self, key: str) -> RecordT | None:
        return self._shard_for(key).records.get(key)

    def set(self, key: str, record: RecordT) -> None:
        self._shard_for(key).records[key] = record

    def delete(self, key: str) -> None:
        self._shard_for(key).records.pop(key, None)

    def sweep(self, is_expired: Callable[[RecordT], bool]) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [k for k, record in shard.records.items() if is_expired(record)]
                for key in expired:
                    del shard.records[key]
                removed += len(expired)
        return removed

    def keys(self) -> Iterator[str]:
        for shard in self._shards:
            with shard.lock:
                snapshot = list(shard.records)
            yield from snapshot

    def __len__(self) -> int:
        return sum(len(shard.records) for shard in self._shards)
