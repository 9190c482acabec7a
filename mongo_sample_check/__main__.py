from __future__ import annotations

import argparse
import sys
from contextlib import ExitStack
from typing import Any, Optional

from mongo_sample_check.clients.mongo_cluster import MongoClusterClient
from mongo_sample_check.config import ConfigError, load_config
from mongo_sample_check.errors import CheckError
from mongo_sample_check.logging_utils import build_logger
from mongo_sample_check.orchestrator import run_check
from mongo_sample_check.sampling import MODES


EXIT_FATAL = 2


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongo-sample-check",
        description="Verify a destination MongoDB replica against its source by sampling documents.",
    )
    parser.add_argument("--config", help="Optional YAML/JSON config file; flags override its values.")
    parser.add_argument("--src", help="Source cluster URI.")
    parser.add_argument("--dst", help="Destination cluster URI.")
    parser.add_argument("--db", help="Database to check.")
    parser.add_argument("--coll", help="Check a single collection instead of the whole database.")
    parser.add_argument("--count", type=int, help="Maximum documents to sample per collection (default 100).")
    parser.add_argument(
        "--rate",
        type=float,
        help="Fraction of each collection to sample, 0 < rate <= 1; 1.0 scans everything (default 0.1).",
    )
    parser.add_argument("--mode", choices=MODES, help="Sampling strategy (default skip).")
    parser.add_argument("--seed", type=int, help="Seed for the skip walk start offset.")
    parser.add_argument("--timeout-ms", type=int, help="Per-call server time limit in ms (default 60000).")
    parser.add_argument("--check-index", action="store_true", default=None, help="Also compare index definitions.")
    parser.add_argument(
        "--continue-not-exist",
        action="store_true",
        default=None,
        help="Tolerate sampled documents missing on the destination (ongoing replication).",
    )
    parser.add_argument("--main-log", help="Also write the run log to this file.")
    parser.add_argument("--output-dir", help="Directory for per-collection failure records.")
    return parser


def _overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "source.uri": args.src,
        "destination.uri": args.dst,
        "database": args.db,
        "collection": args.coll,
        "sampling.count": args.count,
        "sampling.rate": args.rate,
        "sampling.mode": args.mode,
        "sampling.seed": args.seed,
        "sampling.timeout_ms": args.timeout_ms,
        "checks.indexes": args.check_index,
        "checks.continue_not_exist": args.continue_not_exist,
        "logging.main_log": args.main_log,
        "logging.output_dir": args.output_dir,
    }


def main(argv: Optional[list[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    try:
        cfg = load_config(args.config, _overrides_from_args(args))
    except ConfigError as exc:
        build_logger().error("Invalid configuration: %s", exc)
        return EXIT_FATAL

    logger = build_logger(cfg.logging.main_log)
    logger.info(
        "Starting check database=%s collection=%s mode=%s count=%s rate=%s check_index=%s continue_not_exist=%s",
        cfg.database,
        cfg.collection or "<all>",
        cfg.sampling.mode,
        cfg.sampling.count,
        cfg.sampling.rate,
        cfg.checks.indexes,
        cfg.checks.continue_not_exist,
    )

    try:
        with ExitStack() as stack:
            source = MongoClusterClient(
                cfg.source.uri,
                cfg.database,
                role="source",
                timeout_ms=cfg.sampling.timeout_ms,
                logger=logger,
            )
            stack.callback(source.close)
            destination = MongoClusterClient(
                cfg.destination.uri,
                cfg.database,
                role="destination",
                timeout_ms=cfg.sampling.timeout_ms,
                logger=logger,
            )
            stack.callback(destination.close)
            run_check(cfg=cfg, source=source, destination=destination, logger=logger)
    except CheckError as exc:  # CLI boundary
        logger.error("Fatal error: %s", exc)
        return EXIT_FATAL
    logger.info("Check passed database=%s", cfg.database)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
