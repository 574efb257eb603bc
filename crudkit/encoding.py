from __future__ import annotations

import decimal
import json
from datetime import date, datetime
from typing import Any, Dict


class ItemEncoder(json.JSONEncoder):
    """JSON encoder for the values DynamoDB hands back (Decimal, sets, bytes)."""

    def default(self, obj):
        if isinstance(obj, decimal.Decimal):
            if obj == obj.to_integral_value():
                return int(obj)
            return float(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        if isinstance(obj, bytes):
            return obj.decode("utf-8", errors="replace")
        # boto3 Binary wrapper
        if hasattr(obj, "value") and isinstance(obj.value, bytes):
            return obj.value.decode("utf-8", errors="replace")
        return super().default(obj)


def dumps(data: Any) -> str:
    """Compact, key-sorted JSON used for every response body."""
    return json.dumps(data, cls=ItemEncoder, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def loads(text: str) -> Any:
    # DynamoDB rejects floats, so numbers with a fraction become Decimal
    return json.loads(text, parse_float=decimal.Decimal)


def to_dynamo(value: Any) -> Any:
    """Recursively convert floats to Decimal so boto3 will serialize them."""
    if isinstance(value, float):
        return decimal.Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_dynamo(v) for v in value]
    return value


def error_body(kind: str, message: str) -> str:
    body: Dict[str, str] = {"error": kind, "message": message}
    return dumps(body)
