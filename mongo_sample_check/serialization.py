from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from bson import ObjectId
from bson.binary import Binary
from bson.decimal128 import Decimal128
from bson.timestamp import Timestamp


def json_default(value: Any) -> Any:
    """
    JSON serializer for BSON values found in failure records.

    Keep this conservative: when unsure, fall back to str(value) so failure logs remain writable.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (Binary, bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (Decimal, Decimal128, ObjectId)):
        return str(value)
    if isinstance(value, Timestamp):
        return {"t": value.time, "i": value.inc}
    return str(value)
