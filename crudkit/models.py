from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidOperation

OK = 200
FAILED = 500
BAD_REQUEST = 400


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"

    @classmethod
    def parse(cls, value: Any) -> "Operation":
        """Resolve a wire name (case-insensitive) to an Operation."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidOperation(value)


@dataclass(frozen=True)
class OperationRequest:
    """
    One inbound request. ``operation`` keeps the raw wire value; it is
    resolved inside dispatch so an unknown name becomes a result.
    """
    operation: Any
    table_name: Optional[str]
    payload: Any = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperationRequest":
        return cls(
            operation=data.get("operation"),
            table_name=data.get("tableName"),
            payload=data.get("payload"),
        )


@dataclass(frozen=True)
class OperationResult:
    status_code: int
    body: str

    @property
    def ok(self) -> bool:
        return self.status_code == OK

    def to_response(self) -> Dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": self.body,
        }
