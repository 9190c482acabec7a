from __future__ import annotations

import logging
import math
import random
import time
from abc import ABC, abstractmethod
from fractions import Fraction
from typing import Iterable, Iterator

from mongo_sample_check.clients.base import ClusterClient, RawDocument
from mongo_sample_check.errors import CapabilityError, ReadError


SKIP = "skip"
SAMPLE = "sample"
SAMPLE_RATE = "sampleRate"
RAND = "rand"
MODES = (SKIP, SAMPLE, SAMPLE_RATE, RAND)

# Minimum server versions for the server-side random sampling stages.
MIN_SERVER_VERSION: dict[str, tuple[int, ...]] = {
    SAMPLE: (3, 2),
    SAMPLE_RATE: (4, 4, 2),
    RAND: (4, 4, 2),
}

# $sample falls back to a top-k sort over random values above roughly this fraction.
SAMPLE_COST_WARN_FRACTION = 0.05


def compute_sample_size(*, total: int, rate: float, count: int) -> int:
    if total <= 0:
        return 0
    # Fraction(str(rate)) keeps 0.29 as 29/100; total * 0.29 in binary floats is 28.999...
    return max(1, min(int(count), math.floor(total * Fraction(str(rate)))))


def _close(docs: Iterable[RawDocument]) -> None:
    close = getattr(docs, "close", None)
    if close is not None:
        close()


def is_full_scan(rate: float) -> bool:
    return rate >= 1.0


def uses_random_predicate(*, mode: str, rate: float) -> bool:
    return mode != SKIP and not is_full_scan(rate)


def check_capability(*, mode: str, server_version: tuple[int, ...]) -> None:
    required = MIN_SERVER_VERSION.get(mode)
    if required is None:
        return
    if tuple(server_version) < required:
        have = ".".join(str(p) for p in server_version) or "<unknown>"
        need = ".".join(str(p) for p in required)
        raise CapabilityError(f"Sampling mode={mode} requires source server >= {need}, found {have}")


class SamplingStrategy(ABC):
    name = "abstract"

    def __init__(self, *, sample_size: int, source_total: int, logger: logging.Logger):
        self.sample_size = sample_size
        self.source_total = source_total
        self._logger = logger

    @property
    def expected(self) -> int:
        """Number of documents the comparator measures progress against."""
        return self.sample_size

    @abstractmethod
    def iter_documents(self, source: ClusterClient, collection: str) -> Iterator[RawDocument]:
        raise NotImplementedError

    def describe(self) -> str:
        return f"strategy={self.name} sample_size={self.sample_size}"


class SkipWalkStrategy(SamplingStrategy):
    """
    Walk the source in ascending key order, fetching one document every `step_size`.

    Only the start offset is random, drawn from [0, total mod sample_size). Each step
    re-anchors on the last seen key (`_id >= last` with skip=step), so fetched keys
    strictly increase.
    """

    name = SKIP

    def __init__(self, *, sample_size: int, source_total: int, rng: random.Random, logger: logging.Logger):
        super().__init__(sample_size=sample_size, source_total=source_total, logger=logger)
        self.step_size = source_total // sample_size if sample_size > 0 else 0
        remainder = source_total % sample_size if sample_size > 0 else 0
        self.start_offset = rng.randrange(remainder) if remainder > 0 else 0

    def describe(self) -> str:
        return f"{super().describe()} start_offset={self.start_offset} step_size={self.step_size}"

    def iter_documents(self, source: ClusterClient, collection: str) -> Iterator[RawDocument]:
        if self.sample_size <= 0:
            return
        doc = source.find_at_offset(collection=collection, skip=self.start_offset)
        if doc is None:
            raise ReadError(
                f"No document at start offset collection={collection} start_offset={self.start_offset} "
                f"estimated_total={self.source_total}"
            )
        yield doc

        for step in range(1, self.sample_size):
            doc = source.find_next(collection=collection, from_key=doc.key, skip=self.step_size)
            if doc is None:
                self._logger.info(
                    "Skip walk reached end of source collection=%s steps=%s/%s step_size=%s",
                    collection,
                    step,
                    self.sample_size,
                    self.step_size,
                )
                return
            yield doc


class RandomPredicateStrategy(SamplingStrategy):
    """
    Server-side random selection.

    `sample` asks for exactly `sample_size` documents via $sample. `sampleRate` and `rand`
    include each document independently with probability sample_size / total, so the
    number returned is binomial around `sample_size`.
    """

    def __init__(self, *, mode: str, sample_size: int, source_total: int, logger: logging.Logger):
        if mode not in MIN_SERVER_VERSION:
            raise ValueError(f"Not a random predicate sampling mode: {mode}")
        super().__init__(sample_size=sample_size, source_total=source_total, logger=logger)
        self.name = mode
        self.mode = mode

    @property
    def inclusion_rate(self) -> float:
        if self.source_total <= 0:
            return 0.0
        return min(1.0, self.sample_size / self.source_total)

    def describe(self) -> str:
        if self.mode == SAMPLE:
            return super().describe()
        return f"{super().describe()} inclusion_rate={self.inclusion_rate:.6f}"

    def iter_documents(self, source: ClusterClient, collection: str) -> Iterator[RawDocument]:
        if self.sample_size <= 0:
            return
        if self.mode == SAMPLE:
            if self.inclusion_rate > SAMPLE_COST_WARN_FRACTION:
                self._logger.warning(
                    "$sample of %.1f%% of collection=%s exceeds %.0f%%; the server will sort the whole collection",
                    self.inclusion_rate * 100,
                    collection,
                    SAMPLE_COST_WARN_FRACTION * 100,
                )
            docs = source.sample_documents(collection=collection, sample_size=self.sample_size)
        else:
            docs = source.sample_by_rate(collection=collection, rate=self.inclusion_rate, operator=self.mode)

        returned = 0
        try:
            for doc in docs:
                returned += 1
                yield doc
        finally:
            _close(docs)
        self._logger.info(
            "Random sampling completed collection=%s mode=%s requested=%s returned=%s",
            collection,
            self.mode,
            self.sample_size,
            returned,
        )


class FullScanStrategy(SamplingStrategy):
    name = "full"

    @property
    def expected(self) -> int:
        return self.source_total

    def iter_documents(self, source: ClusterClient, collection: str) -> Iterator[RawDocument]:
        started = time.monotonic()
        scanned = 0
        docs = source.iter_documents(collection=collection)
        try:
            for doc in docs:
                scanned += 1
                yield doc
        finally:
            _close(docs)
        elapsed = max(0.001, time.monotonic() - started)
        self._logger.info(
            "Full scan complete collection=%s scanned=%s estimated_total=%s elapsed_seconds=%.1f",
            collection,
            scanned,
            self.source_total,
            elapsed,
        )


def select_strategy(
    *,
    mode: str,
    rate: float,
    sample_size: int,
    source_total: int,
    rng: random.Random,
    logger: logging.Logger,
) -> SamplingStrategy:
    if is_full_scan(rate):
        if mode != SKIP:
            logger.info("Sampling rate is 1.0; using full scan instead of mode=%s", mode)
        return FullScanStrategy(sample_size=sample_size, source_total=source_total, logger=logger)
    if mode == SKIP:
        return SkipWalkStrategy(sample_size=sample_size, source_total=source_total, rng=rng, logger=logger)
    if mode in MIN_SERVER_VERSION:
        return RandomPredicateStrategy(mode=mode, sample_size=sample_size, source_total=source_total, logger=logger)
    raise ValueError(f"Unknown sampling mode: {mode}")
