from __future__ import annotations

import logging

from mongo_sample_check.clients.base import ClusterClient
from mongo_sample_check.errors import ConsistencyViolation
from mongo_sample_check.reporting import FailureDetail, render_encoding


def compare_index_specs(*, collection: str, source_specs: list[bytes], target_specs: list[bytes]) -> int:
    """
    Compare two index sets without regard to declaration order.

    Each spec is the raw BSON of one listIndexes entry; both lists are sorted byte-wise
    before the element-wise comparison. Returns the number of indexes compared.
    """
    source_sorted = sorted(bytes(s) for s in source_specs)
    target_sorted = sorted(bytes(s) for s in target_specs)

    if len(source_sorted) != len(target_sorted):
        raise ConsistencyViolation(
            f"Index count differs collection={collection} source={len(source_sorted)} target={len(target_sorted)}",
            kind="index_count",
            collection=collection,
        )

    for src_spec, tgt_spec in zip(source_sorted, target_sorted):
        if src_spec != tgt_spec:
            raise ConsistencyViolation(
                f"Index definition differs collection={collection} "
                f"source={render_encoding(src_spec)} target={render_encoding(tgt_spec)}",
                kind="index_content",
                collection=collection,
                detail=FailureDetail(outcome="index_content", key=None, source=src_spec, target=tgt_spec),
            )
    return len(source_sorted)


def compare_indexes(
    *,
    source: ClusterClient,
    destination: ClusterClient,
    collection: str,
    logger: logging.Logger,
) -> int:
    count = compare_index_specs(
        collection=collection,
        source_specs=source.list_index_specs(collection=collection),
        target_specs=destination.list_index_specs(collection=collection),
    )
    logger.info("Indexes match collection=%s indexes=%s", collection, count)
    return count
