from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator
from typing import Optional
from urllib.parse import urlsplit

import bson
from pymongo import ASCENDING
from pymongo.errors import OperationFailure, PyMongoError, ServerSelectionTimeoutError

from mongo_sample_check.clients.base import KEY_FIELD, ClusterClient, RawDocument
from mongo_sample_check.clients.mongo_client_factory import build_mongo_client
from mongo_sample_check.errors import ConnectivityError, ReadError


_KEY_ORDER = [(KEY_FIELD, ASCENDING)]


@contextmanager
def _read_errors(action: str, collection: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        raise ReadError(f"{action} failed for collection={collection}: {exc}") from exc


def _to_raw(doc: Any) -> Optional[RawDocument]:
    if doc is None:
        return None
    return RawDocument(key=doc[KEY_FIELD], raw=bytes(doc.raw))


class MongoClusterClient(ClusterClient):
    """
    One database on a MongoDB deployment, accessed via PyMongo.

    Notes:
    - Documents are read as RawBSONDocument so comparisons see the server's exact bytes.
    - Every command, point query and aggregation carries maxTimeMS. Full-scan getMores are
      bounded by the socket timeout, which defaults to the same value. Nothing is retried.
    """

    def __init__(
        self,
        uri: str,
        database: str,
        *,
        role: str,
        timeout_ms: int,
        logger: logging.Logger | None = None,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self._role = role
        self._database = database
        self._timeout_ms = timeout_ms
        host = urlsplit(uri).hostname or "<unknown-host>"
        self._logger.info("Creating %s MongoDB client for host=%s database=%s", role, host, database)
        try:
            self._client = build_mongo_client(uri, role=role, socket_timeout_ms=timeout_ms, logger=self._logger)
        except (PyMongoError, ValueError) as exc:
            raise ConnectivityError(f"Invalid {role} MongoDB URI: {exc}") from exc
        self._db = self._client[database]
        try:
            self._logger.info("Running %s MongoDB ping for host=%s", role, host)
            self._client.admin.command("ping")
            self._logger.info("%s MongoDB ping succeeded for host=%s", role.capitalize(), host)
        except ServerSelectionTimeoutError as exc:
            self._logger.exception("%s MongoDB ping timed out for host=%s", role.capitalize(), host)
            self._client.close()
            raise ConnectivityError(
                f"Unable to connect to {role} MongoDB at {host} (timed out). "
                "Check the URI and network access (VPN/firewall/IP allowlist). "
                f"Details: {exc}"
            ) from exc
        except OperationFailure as exc:
            self._logger.exception("%s MongoDB ping failed with auth error for host=%s", role.capitalize(), host)
            self._client.close()
            raise ConnectivityError(
                f"Connected to {role} MongoDB at {host}, but authentication/authorization failed. "
                "Check username/password, authSource, and user permissions in the URI."
            ) from exc
        except PyMongoError as exc:
            self._client.close()
            raise ConnectivityError(f"Unable to connect to {role} MongoDB at {host}: {exc}") from exc

    def close(self) -> None:
        try:
            self._client.close()
        except PyMongoError as exc:
            raise ConnectivityError(f"Failed to close {self._role} MongoDB client: {exc}") from exc

    def database_exists(self) -> bool:
        with _read_errors("listDatabases", "<all>"):
            cursor = self._client.list_databases(nameOnly=True, maxTimeMS=self._timeout_ms)
            return any(entry["name"] == self._database for entry in cursor)

    def list_collections(self) -> list[str]:
        with _read_errors("listCollections", "<all>"):
            return sorted(self._db.list_collection_names(maxTimeMS=self._timeout_ms))

    def server_version(self) -> tuple[int, ...]:
        with _read_errors("buildInfo", "<admin>"):
            info = self._client.admin.command("buildInfo", maxTimeMS=self._timeout_ms)
        return tuple(int(part) for part in info.get("versionArray", [])[:3])

    def estimated_document_count(self, collection: str) -> int:
        with _read_errors("estimatedDocumentCount", collection):
            return int(self._db[collection].estimated_document_count(maxTimeMS=self._timeout_ms))

    def find_at_offset(self, *, collection: str, skip: int) -> Optional[RawDocument]:
        with _read_errors(f"find skip={skip}", collection):
            doc = self._db[collection].find_one({}, sort=_KEY_ORDER, skip=skip, max_time_ms=self._timeout_ms)
        return _to_raw(doc)

    def find_next(self, *, collection: str, from_key: Any, skip: int) -> Optional[RawDocument]:
        with _read_errors(f"find from_key={from_key!r} skip={skip}", collection):
            doc = self._db[collection].find_one(
                {KEY_FIELD: {"$gte": from_key}},
                sort=_KEY_ORDER,
                skip=skip,
                max_time_ms=self._timeout_ms,
            )
        return _to_raw(doc)

    def find_by_key(self, *, collection: str, key: Any) -> Optional[RawDocument]:
        with _read_errors(f"find key={key!r}", collection):
            doc = self._db[collection].find_one({KEY_FIELD: key}, max_time_ms=self._timeout_ms)
        return _to_raw(doc)

    def sample_documents(self, *, collection: str, sample_size: int) -> Iterable[RawDocument]:
        pipeline = [{"$sample": {"size": int(sample_size)}}]
        return self._aggregate(collection, pipeline)

    def sample_by_rate(self, *, collection: str, rate: float, operator: str) -> Iterable[RawDocument]:
        if operator == "sampleRate":
            pipeline: list[dict[str, Any]] = [{"$match": {"$sampleRate": float(rate)}}]
        elif operator == "rand":
            pipeline = [{"$match": {"$expr": {"$lt": [{"$rand": {}}, float(rate)]}}}]
        else:
            raise ValueError(f"Unknown random predicate operator: {operator}")
        return self._aggregate(collection, pipeline)

    def iter_documents(self, *, collection: str) -> Iterable[RawDocument]:
        with _read_errors("full scan", collection):
            with self._db[collection].find({}) as cursor:
                for doc in cursor:
                    yield RawDocument(key=doc[KEY_FIELD], raw=bytes(doc.raw))

    def list_index_specs(self, *, collection: str) -> list[bytes]:
        with _read_errors("listIndexes", collection):
            # Collection.list_indexes takes no maxTimeMS; a collection holds at most 64 indexes,
            # so the first batch is the whole list.
            result = self._db.command("listIndexes", collection, maxTimeMS=self._timeout_ms)
        return [bson.encode(spec) for spec in result["cursor"]["firstBatch"]]

    def _aggregate(self, collection: str, pipeline: list[dict[str, Any]]) -> Iterator[RawDocument]:
        self._logger.info("Running %s aggregate collection=%s pipeline=%s", self._role, collection, pipeline)
        with _read_errors("aggregate", collection):
            with self._db[collection].aggregate(pipeline, maxTimeMS=self._timeout_ms) as cursor:
                for doc in cursor:
                    yield RawDocument(key=doc[KEY_FIELD], raw=bytes(doc.raw))
