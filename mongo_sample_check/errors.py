from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from mongo_sample_check.reporting import ComparisonReport, FailureDetail


class CheckError(Exception):
    """Base class for every fatal condition raised during a check run."""


class ConnectivityError(CheckError):
    pass


class NotFoundError(CheckError):
    pass


class ReadError(CheckError):
    pass


class CapabilityError(CheckError):
    pass


class ConsistencyViolation(CheckError):
    """
    Source and destination disagree.

    `kind` is one of: mismatch | missing | index_count | index_content.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        collection: str,
        key: Any = None,
        detail: Optional["FailureDetail"] = None,
        report: Optional["ComparisonReport"] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.collection = collection
        self.key = key
        self.detail = detail
        self.report = report
