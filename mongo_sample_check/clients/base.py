from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Iterable
from typing import Optional


KEY_FIELD = "_id"


@dataclass(frozen=True)
class RawDocument:
    key: Any
    raw: bytes


class ClusterClient(ABC):
    """One database on one cluster. Every read returns documents as raw BSON bytes."""

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def database_exists(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_collections(self) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    def server_version(self) -> tuple[int, ...]:
        raise NotImplementedError

    @abstractmethod
    def estimated_document_count(self, collection: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def find_at_offset(self, *, collection: str, skip: int) -> Optional[RawDocument]:
        """Document at position `skip` in ascending key order."""
        raise NotImplementedError

    @abstractmethod
    def find_next(self, *, collection: str, from_key: Any, skip: int) -> Optional[RawDocument]:
        """First document with key >= `from_key` after skipping `skip` of them, ascending."""
        raise NotImplementedError

    @abstractmethod
    def find_by_key(self, *, collection: str, key: Any) -> Optional[RawDocument]:
        raise NotImplementedError

    @abstractmethod
    def sample_documents(self, *, collection: str, sample_size: int) -> Iterable[RawDocument]:
        raise NotImplementedError

    @abstractmethod
    def sample_by_rate(self, *, collection: str, rate: float, operator: str) -> Iterable[RawDocument]:
        """Independent per-document inclusion with probability `rate`; operator is sampleRate | rand."""
        raise NotImplementedError

    @abstractmethod
    def iter_documents(self, *, collection: str) -> Iterable[RawDocument]:
        raise NotImplementedError

    @abstractmethod
    def list_index_specs(self, *, collection: str) -> list[bytes]:
        raise NotImplementedError
