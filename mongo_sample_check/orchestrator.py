from __future__ import annotations

import logging
import random
import time
from contextlib import closing
from typing import Optional

from mongo_sample_check.clients.base import ClusterClient
from mongo_sample_check.compare import compare_samples
from mongo_sample_check.config import AppConfig
from mongo_sample_check.errors import ConsistencyViolation, NotFoundError
from mongo_sample_check.indexes import compare_indexes
from mongo_sample_check.reporting import (
    ComparisonReport,
    FailureDetail,
    clear_collection_failure_log,
    write_collection_failure_log,
)
from mongo_sample_check.sampling import (
    check_capability,
    compute_sample_size,
    select_strategy,
    uses_random_predicate,
)


def run_check(
    *,
    cfg: AppConfig,
    source: ClusterClient,
    destination: ClusterClient,
    logger: logging.Logger,
    rng: Optional[random.Random] = None,
) -> list[ComparisonReport]:
    """Check one collection or every collection of the database; the first fatal error propagates."""
    if rng is None:
        rng = random.Random(cfg.sampling.seed)

    if uses_random_predicate(mode=cfg.sampling.mode, rate=cfg.sampling.rate):
        version = source.server_version()
        check_capability(mode=cfg.sampling.mode, server_version=version)
        logger.info(
            "Source server version=%s supports sampling mode=%s",
            ".".join(str(p) for p in version),
            cfg.sampling.mode,
        )

    if not source.database_exists():
        raise NotFoundError(f"Source database {cfg.database} does not exist")
    if not destination.database_exists():
        raise NotFoundError(f"Destination database {cfg.database} does not exist")

    collections = _resolve_collections(cfg=cfg, source=source, destination=destination)
    logger.info("Checking database=%s collections=%s", cfg.database, len(collections))

    reports = []
    for collection_name in collections:
        reports.append(
            check_collection(
                cfg=cfg,
                source=source,
                destination=destination,
                collection=collection_name,
                logger=logger,
                rng=rng,
            )
        )
    logger.info("All collections checked database=%s collections=%s", cfg.database, len(reports))
    return reports


def _resolve_collections(*, cfg: AppConfig, source: ClusterClient, destination: ClusterClient) -> list[str]:
    if cfg.collection:
        if cfg.collection not in source.list_collections():
            raise NotFoundError(f"Source collection {cfg.database}.{cfg.collection} does not exist")
        if cfg.collection not in destination.list_collections():
            raise NotFoundError(f"Destination collection {cfg.database}.{cfg.collection} does not exist")
        return [cfg.collection]

    collections = [name for name in source.list_collections() if not name.startswith("system.")]
    target_names = set(destination.list_collections())
    for name in collections:
        if name not in target_names:
            raise NotFoundError(f"Destination collection {cfg.database}.{name} does not exist")
    return collections


def check_collection(
    *,
    cfg: AppConfig,
    source: ClusterClient,
    destination: ClusterClient,
    collection: str,
    logger: logging.Logger,
    rng: random.Random,
) -> ComparisonReport:
    collection_started = time.monotonic()
    output_dir = cfg.logging.output_dir
    if output_dir:
        clear_collection_failure_log(output_dir=output_dir, collection=collection)

    source_total = source.estimated_document_count(collection)
    target_total = destination.estimated_document_count(collection)
    sample_size = compute_sample_size(total=source_total, rate=cfg.sampling.rate, count=cfg.sampling.count)
    strategy = select_strategy(
        mode=cfg.sampling.mode,
        rate=cfg.sampling.rate,
        sample_size=sample_size,
        source_total=source_total,
        rng=rng,
        logger=logger,
    )
    report = ComparisonReport(
        collection=collection,
        source_total=source_total,
        target_total=target_total,
        strategy=strategy.name,
        sample_size=sample_size,
    )
    logger.info(
        "Starting collection=%s source_total=%s target_total=%s %s",
        collection,
        source_total,
        target_total,
        strategy.describe(),
    )

    try:
        if cfg.checks.indexes:
            report.indexes_compared = compare_indexes(
                source=source,
                destination=destination,
                collection=collection,
                logger=logger,
            )

        compare_started = time.monotonic()
        if source_total <= 0:
            logger.info("Source collection=%s is empty; nothing to sample", collection)
        else:
            with closing(strategy.iter_documents(source, collection)) as samples:
                compare_samples(
                    samples=samples,
                    destination=destination,
                    report=report,
                    expected=strategy.expected,
                    continue_not_exist=cfg.checks.continue_not_exist,
                    logger=logger,
                )
        compare_elapsed = time.monotonic() - compare_started
    except ConsistencyViolation as exc:
        exc.report = report
        if report.failure is None:
            report.failure = exc.detail or FailureDetail(outcome=exc.kind, key=exc.key)
        logger.error(report.to_log_line())
        if output_dir:
            path = write_collection_failure_log(
                output_dir=output_dir,
                collection=collection,
                kind=exc.kind,
                detail=report.failure,
            )
            logger.info("Failure record written collection=%s path=%s", collection, path)
        raise

    logger.info(report.to_log_line())
    logger.info(
        "Collection check complete collection=%s compare_seconds=%.2f total_seconds=%.2f",
        collection,
        compare_elapsed,
        time.monotonic() - collection_started,
    )
    return report
