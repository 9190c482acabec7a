from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Iterable

from mongo_sample_check.clients.base import ClusterClient, RawDocument
from mongo_sample_check.errors import ConsistencyViolation
from mongo_sample_check.reporting import ComparisonReport, FailureDetail


class ComparisonOutcome(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING_TOLERATED = "missing_tolerated"
    MISSING_FATAL = "missing_fatal"


def compare_documents(source_raw: bytes, target_raw: bytes) -> bool:
    return bytes(source_raw) == bytes(target_raw)


def classify(source_doc: RawDocument, target_doc: RawDocument | None, *, continue_not_exist: bool) -> ComparisonOutcome:
    if target_doc is None:
        return ComparisonOutcome.MISSING_TOLERATED if continue_not_exist else ComparisonOutcome.MISSING_FATAL
    if compare_documents(source_doc.raw, target_doc.raw):
        return ComparisonOutcome.MATCH
    return ComparisonOutcome.MISMATCH


def compare_samples(
    *,
    samples: Iterable[RawDocument],
    destination: ClusterClient,
    report: ComparisonReport,
    expected: int,
    continue_not_exist: bool,
    logger: logging.Logger,
) -> ComparisonReport:
    """
    Look up every sampled source document on the destination and compare raw bytes.

    Stops at the first mismatch, or the first missing document unless `continue_not_exist`
    is set, by raising ConsistencyViolation with `report` attached. Returns `report`.
    """
    collection = report.collection
    started = time.monotonic()
    progress = 0

    for src_doc in samples:
        report.attempted += 1
        tgt_doc = destination.find_by_key(collection=collection, key=src_doc.key)
        outcome = classify(src_doc, tgt_doc, continue_not_exist=continue_not_exist)

        if outcome is ComparisonOutcome.MISSING_TOLERATED:
            report.tolerated_missing += 1
            logger.warning("Destination missing document collection=%s key=%r (tolerated)", collection, src_doc.key)
            continue

        if outcome is ComparisonOutcome.MISSING_FATAL:
            report.failure = FailureDetail(outcome=outcome.value, key=src_doc.key, source=src_doc.raw)
            raise ConsistencyViolation(
                f"Destination missing document collection={collection} key={src_doc.key!r}",
                kind="missing",
                collection=collection,
                key=src_doc.key,
                detail=report.failure,
                report=report,
            )

        if outcome is ComparisonOutcome.MISMATCH:
            assert tgt_doc is not None
            report.failure = FailureDetail(
                outcome=outcome.value,
                key=src_doc.key,
                source=src_doc.raw,
                target=tgt_doc.raw,
            )
            if report.failure.inline:
                logger.error("Document mismatch collection=%s %s", collection, report.failure.describe())
            raise ConsistencyViolation(
                f"Document mismatch collection={collection} key={src_doc.key!r}",
                kind="mismatch",
                collection=collection,
                key=src_doc.key,
                detail=report.failure,
                report=report,
            )

        report.matched += 1
        if expected > 0:
            pct = min(100, report.matched * 100 // expected)
            if pct > progress:
                progress = pct
                elapsed = max(0.001, time.monotonic() - started)
                logger.info(
                    "Compare progress collection=%s matched=%s/%s progress=%s%% rate_docs_per_sec=%.1f",
                    collection,
                    report.matched,
                    expected,
                    progress,
                    report.attempted / elapsed,
                )

    return report
