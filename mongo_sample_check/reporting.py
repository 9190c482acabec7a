from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import bson
from bson import json_util

from mongo_sample_check.serialization import json_default


# Encodings at or above this size are not printed in failure messages.
INLINE_ENCODING_LIMIT = 200

_FILENAME_SAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _collection_log_path(*, output_dir: str, collection: str) -> str:
    safe = _FILENAME_SAFE_RE.sub("_", collection).strip("._-") or "collection"
    return os.path.join(output_dir, f"{safe}_failures.jsonl")


def render_encoding(raw: bytes) -> str:
    return json_util.dumps(bson.decode(raw), json_options=json_util.RELAXED_JSON_OPTIONS)


@dataclass(frozen=True)
class FailureDetail:
    outcome: str
    key: Any
    source: Optional[bytes] = None
    target: Optional[bytes] = None

    @property
    def inline(self) -> bool:
        return (
            self.source is not None
            and self.target is not None
            and len(self.source) < INLINE_ENCODING_LIMIT
            and len(self.target) < INLINE_ENCODING_LIMIT
        )

    def describe(self) -> str:
        if not self.inline:
            return f"outcome={self.outcome} key={self.key!r}"
        assert self.source is not None and self.target is not None
        return (
            f"outcome={self.outcome} key={self.key!r}\n"
            f"source: {render_encoding(self.source)}\n"
            f"target: {render_encoding(self.target)}"
        )


@dataclass
class ComparisonReport:
    collection: str
    source_total: int
    target_total: int
    strategy: str
    sample_size: int
    attempted: int = 0
    matched: int = 0
    tolerated_missing: int = 0
    indexes_compared: Optional[int] = None
    failure: Optional[FailureDetail] = None

    def to_log_line(self) -> str:
        indexes = "skipped" if self.indexes_compared is None else str(self.indexes_compared)
        status = "FAILED" if self.failure is not None else "OK"
        return (
            f"{self.collection} | status={status} "
            f"source_total={self.source_total} target_total={self.target_total} "
            f"strategy={self.strategy} sample_size={self.sample_size} "
            f"attempted={self.attempted} matched={self.matched} "
            f"tolerated_missing={self.tolerated_missing} indexes={indexes}"
        )


def clear_collection_failure_log(*, output_dir: str, collection: str) -> None:
    path = _collection_log_path(output_dir=output_dir, collection=collection)
    try:
        os.remove(path)
    except FileNotFoundError:
        return


def write_collection_failure_log(
    *,
    output_dir: str,
    collection: str,
    kind: str,
    detail: FailureDetail,
) -> str:
    os.makedirs(output_dir, exist_ok=True)
    path = _collection_log_path(output_dir=output_dir, collection=collection)
    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "collection": collection,
        "kind": kind,
        "outcome": detail.outcome,
        "key": detail.key,
        "source": bson.decode(detail.source) if detail.source is not None else None,
        "target": bson.decode(detail.target) if detail.target is not None else None,
    }
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False, default=json_default) + "\n")
    return path
