from __future__ import annotations

import random
from typing import Any, Iterable, Iterator, Optional

import bson

from mongo_sample_check.clients.base import ClusterClient, RawDocument


def make_docs(keys: Iterable[int]) -> list[dict]:
    return [{"_id": k, "name": f"doc-{k}", "n": k * 3} for k in keys]


class FakeCluster(ClusterClient):
    """In-memory cluster; dict insertion order stands in for storage order."""

    def __init__(
        self,
        collections: Optional[dict[str, list[dict]]] = None,
        *,
        indexes: Optional[dict[str, list[dict]]] = None,
        version: tuple[int, ...] = (7, 0, 4),
        database_exists: bool = True,
        estimated_counts: Optional[dict[str, int]] = None,
    ):
        self._collections = {
            name: {doc["_id"]: bson.encode(doc) for doc in docs} for name, docs in (collections or {}).items()
        }
        self._indexes = {name: [bson.encode(spec) for spec in specs] for name, specs in (indexes or {}).items()}
        self._version = version
        self._database_exists = database_exists
        self._estimated_counts = estimated_counts or {}
        self._rng = random.Random(1234)
        self.calls: list[tuple[str, Any]] = []
        self.sample_rates: list[tuple[str, float]] = []
        self.closed = False
        self.open_cursors = 0

    def _ordered(self, collection: str) -> list[tuple[Any, bytes]]:
        return sorted(self._collections[collection].items())

    def close(self) -> None:
        self.closed = True

    def database_exists(self) -> bool:
        return self._database_exists

    def list_collections(self) -> list[str]:
        return sorted(self._collections)

    def server_version(self) -> tuple[int, ...]:
        self.calls.append(("server_version", None))
        return self._version

    def estimated_document_count(self, collection: str) -> int:
        self.calls.append(("count", collection))
        return self._estimated_counts.get(collection, len(self._collections[collection]))

    def find_at_offset(self, *, collection: str, skip: int) -> Optional[RawDocument]:
        self.calls.append(("find_at_offset", skip))
        ordered = self._ordered(collection)
        if skip >= len(ordered):
            return None
        key, raw = ordered[skip]
        return RawDocument(key=key, raw=raw)

    def find_next(self, *, collection: str, from_key: Any, skip: int) -> Optional[RawDocument]:
        self.calls.append(("find_next", from_key))
        candidates = [(k, raw) for k, raw in self._ordered(collection) if k >= from_key]
        if skip >= len(candidates):
            return None
        key, raw = candidates[skip]
        return RawDocument(key=key, raw=raw)

    def find_by_key(self, *, collection: str, key: Any) -> Optional[RawDocument]:
        self.calls.append(("find_by_key", key))
        raw = self._collections[collection].get(key)
        if raw is None:
            return None
        return RawDocument(key=key, raw=raw)

    def _cursor(self, items: list[tuple[Any, bytes]]) -> Iterator[RawDocument]:
        self.open_cursors += 1
        try:
            for k, raw in items:
                yield RawDocument(key=k, raw=raw)
        finally:
            self.open_cursors -= 1

    def sample_documents(self, *, collection: str, sample_size: int) -> Iterable[RawDocument]:
        self.calls.append(("sample", sample_size))
        items = list(self._collections[collection].items())
        return self._cursor(self._rng.sample(items, min(sample_size, len(items))))

    def sample_by_rate(self, *, collection: str, rate: float, operator: str) -> Iterable[RawDocument]:
        self.calls.append((operator, rate))
        self.sample_rates.append((operator, rate))
        return self._cursor([item for item in self._collections[collection].items() if self._rng.random() < rate])

    def iter_documents(self, *, collection: str) -> Iterable[RawDocument]:
        self.calls.append(("scan", collection))
        return self._cursor(list(self._collections[collection].items()))

    def list_index_specs(self, *, collection: str) -> list[bytes]:
        return list(self._indexes.get(collection, []))
