import logging
import unittest
from unittest import mock

import bson
from bson.raw_bson import RawBSONDocument
from pymongo.errors import ExecutionTimeout, OperationFailure, ServerSelectionTimeoutError

from mongo_sample_check.clients.mongo_cluster import MongoClusterClient
from mongo_sample_check.errors import ConnectivityError, ReadError


URI = "mongodb://src.example:27017"
TIMEOUT_MS = 1234


def _raw(doc: dict) -> RawBSONDocument:
    return RawBSONDocument(bson.encode(doc))


def _failing_cursor(docs: list, exc: Exception):
    yield from docs
    raise exc


def _as_context(cursor_mock: mock.MagicMock, docs) -> None:
    cursor_mock.__enter__.return_value = docs
    cursor_mock.__exit__.return_value = False


class MongoClusterClientTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch("mongo_sample_check.clients.mongo_cluster.build_mongo_client")
        self.build_client = patcher.start()
        self.addCleanup(patcher.stop)

        self.client = mock.MagicMock()
        self.db = mock.MagicMock()
        self.coll = mock.MagicMock()
        self.client.__getitem__.return_value = self.db
        self.db.__getitem__.return_value = self.coll
        self.build_client.return_value = self.client
        self.logger = logging.getLogger("mongo-cluster-tests")

    def _cluster(self) -> MongoClusterClient:
        return MongoClusterClient(URI, "shop", role="source", timeout_ms=TIMEOUT_MS, logger=self.logger)

    def test_socket_timeout_defaults_to_read_timeout(self) -> None:
        self._cluster()
        self.build_client.assert_called_once_with(URI, role="source", socket_timeout_ms=TIMEOUT_MS, logger=self.logger)
        self.client.__getitem__.assert_called_once_with("shop")
        self.client.admin.command.assert_called_once_with("ping")

    def test_ping_timeout_is_connectivity_error(self) -> None:
        self.client.admin.command.side_effect = ServerSelectionTimeoutError("no servers available")
        with self.assertRaises(ConnectivityError) as ctx:
            self._cluster()
        self.assertIn("timed out", str(ctx.exception))
        self.client.close.assert_called_once()

    def test_ping_auth_failure_is_connectivity_error(self) -> None:
        self.client.admin.command.side_effect = OperationFailure("Authentication failed.", code=18)
        with self.assertRaises(ConnectivityError) as ctx:
            self._cluster()
        self.assertIn("authentication", str(ctx.exception))
        self.client.close.assert_called_once()

    def test_invalid_uri_is_connectivity_error(self) -> None:
        self.build_client.side_effect = ValueError("bad uri")
        with self.assertRaises(ConnectivityError):
            self._cluster()

    def test_database_exists(self) -> None:
        self.client.list_databases.return_value = [{"name": "admin"}, {"name": "shop"}]
        self.assertTrue(self._cluster().database_exists())
        self.client.list_databases.assert_called_once_with(nameOnly=True, maxTimeMS=TIMEOUT_MS)

        self.client.list_databases.return_value = [{"name": "admin"}]
        self.assertFalse(self._cluster().database_exists())

    def test_list_collections_sorted(self) -> None:
        self.db.list_collection_names.return_value = ["orders", "audit"]
        self.assertEqual(self._cluster().list_collections(), ["audit", "orders"])
        self.db.list_collection_names.assert_called_once_with(maxTimeMS=TIMEOUT_MS)

    def test_server_version_from_build_info(self) -> None:
        def command(name, **kwargs):
            if name == "buildInfo":
                return {"version": "7.0.4", "versionArray": [7, 0, 4, 0]}
            return {"ok": 1}

        self.client.admin.command.side_effect = command
        self.assertEqual(self._cluster().server_version(), (7, 0, 4))
        self.assertIn(mock.call("buildInfo", maxTimeMS=TIMEOUT_MS), self.client.admin.command.call_args_list)

    def test_estimated_document_count(self) -> None:
        self.coll.estimated_document_count.return_value = 42
        self.assertEqual(self._cluster().estimated_document_count("orders"), 42)
        self.db.__getitem__.assert_called_with("orders")
        self.coll.estimated_document_count.assert_called_once_with(maxTimeMS=TIMEOUT_MS)

    def test_find_at_offset(self) -> None:
        source = {"_id": 7, "name": "x"}
        self.coll.find_one.return_value = _raw(source)
        doc = self._cluster().find_at_offset(collection="orders", skip=3)
        self.coll.find_one.assert_called_once_with({}, sort=[("_id", 1)], skip=3, max_time_ms=TIMEOUT_MS)
        self.assertEqual(doc.key, 7)
        self.assertEqual(doc.raw, bson.encode(source))

    def test_find_at_offset_past_end(self) -> None:
        self.coll.find_one.return_value = None
        self.assertIsNone(self._cluster().find_at_offset(collection="orders", skip=10))

    def test_find_next_anchors_on_last_key(self) -> None:
        self.coll.find_one.return_value = _raw({"_id": 17})
        doc = self._cluster().find_next(collection="orders", from_key=7, skip=10)
        self.coll.find_one.assert_called_once_with(
            {"_id": {"$gte": 7}},
            sort=[("_id", 1)],
            skip=10,
            max_time_ms=TIMEOUT_MS,
        )
        self.assertEqual(doc.key, 17)

    def test_find_by_key(self) -> None:
        self.coll.find_one.return_value = _raw({"_id": "a", "v": 1})
        doc = self._cluster().find_by_key(collection="orders", key="a")
        self.coll.find_one.assert_called_once_with({"_id": "a"}, max_time_ms=TIMEOUT_MS)
        self.assertEqual(doc.key, "a")

    def test_point_read_timeout_is_read_error(self) -> None:
        self.coll.find_one.side_effect = ExecutionTimeout("operation exceeded time limit", code=50)
        with self.assertRaises(ReadError) as ctx:
            self._cluster().find_by_key(collection="orders", key=1)
        self.assertIn("orders", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, ExecutionTimeout)

    def test_count_failure_is_read_error(self) -> None:
        self.coll.estimated_document_count.side_effect = OperationFailure("not authorized", code=13)
        with self.assertRaises(ReadError):
            self._cluster().estimated_document_count("orders")

    def test_sample_pipeline(self) -> None:
        _as_context(self.coll.aggregate.return_value, [_raw({"_id": 1}), _raw({"_id": 2})])
        docs = list(self._cluster().sample_documents(collection="orders", sample_size=5))
        self.coll.aggregate.assert_called_once_with([{"$sample": {"size": 5}}], maxTimeMS=TIMEOUT_MS)
        self.assertEqual([d.key for d in docs], [1, 2])

    def test_sample_rate_pipeline(self) -> None:
        _as_context(self.coll.aggregate.return_value, [_raw({"_id": 3})])
        list(self._cluster().sample_by_rate(collection="orders", rate=0.25, operator="sampleRate"))
        self.coll.aggregate.assert_called_once_with([{"$match": {"$sampleRate": 0.25}}], maxTimeMS=TIMEOUT_MS)

    def test_rand_pipeline(self) -> None:
        _as_context(self.coll.aggregate.return_value, [])
        list(self._cluster().sample_by_rate(collection="orders", rate=0.25, operator="rand"))
        self.coll.aggregate.assert_called_once_with(
            [{"$match": {"$expr": {"$lt": [{"$rand": {}}, 0.25]}}}],
            maxTimeMS=TIMEOUT_MS,
        )

    def test_unknown_rate_operator(self) -> None:
        with self.assertRaises(ValueError):
            self._cluster().sample_by_rate(collection="orders", rate=0.25, operator="bernoulli")
        self.coll.aggregate.assert_not_called()

    def test_aggregate_failure_is_read_error(self) -> None:
        self.coll.aggregate.side_effect = OperationFailure("unrecognized pipeline stage", code=40324)
        with self.assertRaises(ReadError):
            list(self._cluster().sample_documents(collection="orders", sample_size=5))

    def test_full_scan_reads_in_storage_order(self) -> None:
        _as_context(self.coll.find.return_value, [_raw({"_id": 9}), _raw({"_id": 2})])
        docs = list(self._cluster().iter_documents(collection="orders"))
        self.coll.find.assert_called_once_with({})
        self.assertEqual([d.key for d in docs], [9, 2])
        self.coll.find.return_value.__exit__.assert_called_once()

    def test_full_scan_failure_mid_cursor_is_read_error(self) -> None:
        cursor = _failing_cursor([_raw({"_id": 1})], ExecutionTimeout("getMore timed out", code=50))
        _as_context(self.coll.find.return_value, cursor)
        docs = self._cluster().iter_documents(collection="orders")
        self.assertEqual(next(docs).key, 1)
        with self.assertRaises(ReadError):
            next(docs)

    def test_closing_full_scan_closes_cursor(self) -> None:
        _as_context(self.coll.find.return_value, iter([_raw({"_id": 1}), _raw({"_id": 2})]))
        docs = self._cluster().iter_documents(collection="orders")
        next(docs)
        self.coll.find.return_value.__exit__.assert_not_called()
        docs.close()
        self.coll.find.return_value.__exit__.assert_called_once()

    def test_list_index_specs(self) -> None:
        spec = {"v": 2, "key": {"_id": 1}, "name": "_id_"}
        self.db.command.return_value = {"cursor": {"id": 0, "firstBatch": [spec]}, "ok": 1}
        self.assertEqual(self._cluster().list_index_specs(collection="orders"), [bson.encode(spec)])
        self.db.command.assert_called_once_with("listIndexes", "orders", maxTimeMS=TIMEOUT_MS)

    def test_close(self) -> None:
        self._cluster().close()
        self.client.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
