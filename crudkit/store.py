"""
Table stores
============
The dispatcher talks to a ``TableStore``: five methods, each taking the
target table name and the operation payload (DynamoDB request parameters,
e.g. ``{"Key": {"id": "1"}}``).

Return shapes are normalized so both stores answer alike:
  put     -> ``Attributes`` when ``ReturnValues`` asked for them, else ``{}``
  get     -> the item; a missing key raises ``ItemNotFound``
  update  -> ``Attributes`` or ``{}``
  delete  -> ``Attributes`` or ``{}``
  scan    -> ``{"Items": [...], "Count": n, "ScannedCount": n}`` plus
             ``LastEvaluatedKey`` when there is more to read

Missing keys on update/delete follow DynamoDB by default: delete is a no-op
and update creates the item. With ``strict_keys=True`` both raise
``ItemNotFound`` instead. On DynamoDB the existence check is folded into
the request's ``ConditionExpression``; when the caller supplied one too, a
failed check cannot be attributed and surfaces as a plain ``StoreError``.
"""
from __future__ import annotations

import copy
import logging
import re
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import boto3
from botocore.exceptions import ClientError, ParamValidationError

from .encoding import to_dynamo
from .errors import ItemNotFound, StoreError, TableNotFound

logger = logging.getLogger(__name__)


class TableStore(Protocol):
    def put(self, table_name: str, payload: Mapping[str, Any]) -> Any: ...

    def get(self, table_name: str, payload: Mapping[str, Any]) -> Any: ...

    def update(self, table_name: str, payload: Mapping[str, Any]) -> Any: ...

    def delete(self, table_name: str, payload: Mapping[str, Any]) -> Any: ...

    def scan(self, table_name: str, payload: Mapping[str, Any]) -> Any: ...


def _describe_key(key: Mapping[str, Any]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(key.items()))


# ---------------------------
# DynamoDB
# ---------------------------

STRICT_KEY_PLACEHOLDER = "#crudkit_key"


class DynamoTableStore:
    """TableStore backed by a boto3 DynamoDB service resource."""

    def __init__(self, resource=None, region_name: Optional[str] = None,
                 endpoint_url: Optional[str] = None, strict_keys: bool = False):
        if resource is None:
            resource = boto3.resource("dynamodb", region_name=region_name, endpoint_url=endpoint_url)
        self._resource = resource
        self.strict_keys = strict_keys

    def _table(self, table_name: str):
        return self._resource.Table(table_name)

    def _call(self, table_name: str, method: str, payload: Mapping[str, Any],
              key_checked: bool = False, user_condition: bool = False) -> Dict[str, Any]:
        table = self._table(table_name)
        try:
            return getattr(table, method)(**to_dynamo(dict(payload)))
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "ClientError")
            message = error.get("Message", str(e))
            if code == "ResourceNotFoundException":
                raise TableNotFound(f"{code}: {message}") from e
            if code == "ConditionalCheckFailedException" and key_checked:
                key = _describe_key(payload.get("Key", {}))
                if user_condition:
                    # DynamoDB does not say which half of the combined condition failed
                    raise StoreError(
                        f"{code}: no item in {table_name} with key {key}, or its ConditionExpression was not met"
                    ) from e
                raise ItemNotFound(f"No item in {table_name} with key {key}") from e
            raise StoreError(f"{code}: {message}") from e
        except ParamValidationError as e:
            raise StoreError(str(e)) from e

    def _require_existing(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        payload = dict(payload)
        key = payload.get("Key") or {}
        if not key:
            return payload
        # any key attribute will do: it is present on every stored item
        key_name = sorted(key)[0]
        condition = f"attribute_exists({STRICT_KEY_PLACEHOLDER})"
        existing = payload.get("ConditionExpression")
        payload["ConditionExpression"] = f"({existing}) AND {condition}" if existing else condition
        names = dict(payload.get("ExpressionAttributeNames") or {})
        names[STRICT_KEY_PLACEHOLDER] = key_name
        payload["ExpressionAttributeNames"] = names
        return payload

    def put(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        response = self._call(table_name, "put_item", payload)
        return response.get("Attributes", {})

    def get(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        response = self._call(table_name, "get_item", payload)
        item = response.get("Item")
        if item is None:
            raise ItemNotFound(f"No item in {table_name} with key {_describe_key(payload.get('Key', {}))}")
        return item

    def update(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        user_condition = bool(payload.get("ConditionExpression"))
        if self.strict_keys:
            payload = self._require_existing(payload)
        response = self._call(table_name, "update_item", payload, self.strict_keys, user_condition)
        return response.get("Attributes", {})

    def delete(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        user_condition = bool(payload.get("ConditionExpression"))
        if self.strict_keys:
            payload = self._require_existing(payload)
        response = self._call(table_name, "delete_item", payload, self.strict_keys, user_condition)
        return response.get("Attributes", {})

    def scan(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        response = self._call(table_name, "scan", payload)
        result = {
            "Items": response.get("Items", []),
            "Count": response.get("Count", len(response.get("Items", []))),
            "ScannedCount": response.get("ScannedCount", response.get("Count", 0)),
        }
        if response.get("LastEvaluatedKey"):
            result["LastEvaluatedKey"] = response["LastEvaluatedKey"]
        return result


# ---------------------------
# In-memory
# ---------------------------

_CLAUSE_RE = re.compile(r"(?<![#:\w])(SET|REMOVE|ADD|DELETE)\b", re.IGNORECASE)
_NAME_RE = re.compile(r"^[#:]?[A-Za-z_][A-Za-z0-9_\-]*$")


def _split_top_level(text: str) -> List[str]:
    """Split on commas that are not inside parentheses."""
    parts, depth, current = [], 0, []
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


class _Expression:
    """Evaluates the SET/REMOVE subset of DynamoDB update expressions."""

    def __init__(self, names: Mapping[str, str], values: Mapping[str, Any]):
        self.names = names or {}
        self.values = values or {}

    def attribute(self, token: str) -> str:
        token = token.strip()
        if not _NAME_RE.match(token) or token.startswith(":"):
            raise StoreError(f"Unsupported attribute path in update expression: {token!r}")
        if token.startswith("#"):
            if token not in self.names:
                raise StoreError(f"Undefined expression attribute name: {token}")
            return self.names[token]
        return token

    def operand(self, token: str, item: Mapping[str, Any]) -> Any:
        token = token.strip()
        if token.startswith("if_not_exists(") and token.endswith(")"):
            args = _split_top_level(token[len("if_not_exists("):-1])
            if len(args) != 2:
                raise StoreError(f"if_not_exists takes two arguments: {token!r}")
            name = self.attribute(args[0])
            return item[name] if name in item else self.operand(args[1], item)
        if token.startswith("list_append(") and token.endswith(")"):
            args = _split_top_level(token[len("list_append("):-1])
            if len(args) != 2:
                raise StoreError(f"list_append takes two arguments: {token!r}")
            left, right = self.operand(args[0], item), self.operand(args[1], item)
            if not isinstance(left, list) or not isinstance(right, list):
                raise StoreError("list_append operands must be lists")
            return left + right
        if token.startswith(":"):
            if token not in self.values:
                raise StoreError(f"Undefined expression attribute value: {token}")
            return copy.deepcopy(self.values[token])
        name = self.attribute(token)
        if name not in item:
            raise StoreError(f"The provided expression refers to an attribute that does not exist: {name}")
        return item[name]

    def value(self, text: str, item: Mapping[str, Any]) -> Any:
        # a + b / a - b, outside of function parentheses
        depth = 0
        for i, ch in enumerate(text):
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
            elif ch in "+-" and depth == 0 and i > 0 and text[i - 1] == " ":
                left = self.operand(text[:i], item)
                right = self.operand(text[i + 1:], item)
                try:
                    return left + right if ch == "+" else left - right
                except TypeError as e:
                    raise StoreError(f"Incorrect operand type for arithmetic: {e}") from e
        return self.operand(text, item)

    def apply(self, expression: str, item: Dict[str, Any]) -> List[str]:
        """Apply to ``item`` in place; return the names of touched attributes."""
        pieces = _CLAUSE_RE.split(expression)
        if pieces[0].strip():
            raise StoreError(f"Invalid UpdateExpression: {expression!r}")
        touched: List[str] = []
        assignments: List[Tuple[str, Any]] = []
        removals: List[str] = []
        for keyword, body in zip(pieces[1::2], pieces[2::2]):
            keyword = keyword.upper()
            if keyword in ("ADD", "DELETE"):
                raise StoreError(f"{keyword} clauses are not supported by the in-memory store")
            for action in _split_top_level(body):
                if keyword == "SET":
                    if "=" not in action:
                        raise StoreError(f"Invalid SET action: {action!r}")
                    target, source = action.split("=", 1)
                    # evaluate against the original item, like DynamoDB does
                    assignments.append((self.attribute(target), self.value(source.strip(), item)))
                else:
                    removals.append(self.attribute(action))
        for name, value in assignments:
            item[name] = value
            touched.append(name)
        for name in removals:
            item.pop(name, None)
            touched.append(name)
        return touched


def _matches(item: Mapping[str, Any], name: str, condition: Mapping[str, Any]) -> bool:
    op = str(condition.get("ComparisonOperator", "EQ")).upper()
    args = condition.get("AttributeValueList") or []
    present = name in item
    value = item.get(name)
    if op in ("NOT_NULL", "EXISTS"):
        return present
    if op in ("NULL", "NOT_EXISTS"):
        return not present
    if not args:
        raise StoreError(f"ScanFilter {op} on {name} needs an AttributeValueList")
    target = args[0]
    if op == "EQ":
        return present and value == target
    if op == "NE":
        return not present or value != target
    if op == "BEGINS_WITH":
        return isinstance(value, str) and value.startswith(str(target))
    if op == "CONTAINS":
        if isinstance(value, str):
            return isinstance(target, str) and target in value
        return isinstance(value, (list, set)) and target in value
    raise StoreError(f"Unsupported ScanFilter comparison operator: {op}")


class _Table:
    def __init__(self, name: str, key: Sequence[str]):
        if not key or len(key) > 2:
            raise ValueError("key must name a partition key and optionally a sort key")
        self.name = name
        self.key = tuple(key)
        self.items: Dict[Tuple[Any, ...], Dict[str, Any]] = {}

    def key_of(self, key: Mapping[str, Any]) -> Tuple[Any, ...]:
        if not isinstance(key, Mapping) or set(key) != set(self.key):
            raise StoreError("The provided key element does not match the schema")
        return tuple(key[k] for k in self.key)

    def item_key(self, item: Mapping[str, Any]) -> Tuple[Any, ...]:
        if not isinstance(item, Mapping):
            raise StoreError("Item must be a mapping")
        missing = [k for k in self.key if k not in item]
        if missing:
            raise StoreError(f"One of the required keys was not given a value: {', '.join(missing)}")
        return tuple(item[k] for k in self.key)


class InMemoryTableStore:
    """
    Dict-backed TableStore for tests and the local dev server.

    Tables must be declared with ``create_table`` (or loaded via ``seed``)
    before use. Items handed out are copies.
    """

    def __init__(self, strict_keys: bool = False):
        self.strict_keys = strict_keys
        self._tables: Dict[str, _Table] = {}
        self._lock = threading.Lock()

    def create_table(self, name: str, key: Sequence[str] = ("id",), items: Iterable[Mapping[str, Any]] = ()) -> None:
        table = _Table(name, key)
        for item in items:
            table.items[table.item_key(item)] = copy.deepcopy(dict(item))
        with self._lock:
            self._tables[name] = table

    def seed(self, spec: Mapping[str, Any]) -> None:
        """Load ``{"tables": {name: {"key": [...], "items": [...]}}}``."""
        tables = spec.get("tables") or {}
        if not isinstance(tables, Mapping):
            raise ValueError("seed 'tables' must be a mapping")
        for name, table in tables.items():
            table = table or {}
            if not isinstance(table, Mapping):
                raise ValueError(f"seed table {name!r} must be a mapping")
            key = table.get("key", ["id"])
            if isinstance(key, str):
                key = [key]
            items = table.get("items") or []
            if not isinstance(items, list) or not all(isinstance(item, Mapping) for item in items):
                raise ValueError(f"seed table {name!r}: items must be a list of mappings")
            try:
                self.create_table(name, key=key, items=items)
            except (StoreError, TypeError) as e:
                raise ValueError(f"seed table {name!r}: {e}") from e
            logger.info("Seeded table %s with %d item(s)", name, len(items))

    def table_names(self) -> List[str]:
        return sorted(self._tables)

    def _table(self, table_name: str) -> _Table:
        table = self._tables.get(table_name)
        if table is None:
            raise TableNotFound(f"ResourceNotFoundException: Requested resource not found: Table: {table_name} not found")
        return table

    @staticmethod
    def _reject_conditions(payload: Mapping[str, Any]) -> None:
        if payload.get("ConditionExpression") or payload.get("Expected"):
            raise StoreError("Conditional writes are not supported by the in-memory store")

    @staticmethod
    def _return_values(payload: Mapping[str, Any]) -> str:
        return str(payload.get("ReturnValues") or "NONE").upper()

    def put(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        self._reject_conditions(payload)
        if "Item" not in payload:
            raise StoreError("Missing required parameter: Item")
        with self._lock:
            table = self._table(table_name)
            key = table.item_key(payload["Item"])
            old = table.items.get(key)
            table.items[key] = copy.deepcopy(dict(payload["Item"]))
        if self._return_values(payload) == "ALL_OLD" and old is not None:
            return copy.deepcopy(old)
        return {}

    def get(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        if "Key" not in payload:
            raise StoreError("Missing required parameter: Key")
        with self._lock:
            table = self._table(table_name)
            item = table.items.get(table.key_of(payload["Key"]))
            if item is None:
                raise ItemNotFound(f"No item in {table_name} with key {_describe_key(payload['Key'])}")
            item = copy.deepcopy(item)
        projection = payload.get("ProjectionExpression")
        if projection:
            expr = _Expression(payload.get("ExpressionAttributeNames"), {})
            wanted = {expr.attribute(p) for p in _split_top_level(projection)}
            item = {k: v for k, v in item.items() if k in wanted}
        return item

    def update(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        self._reject_conditions(payload)
        if "Key" not in payload:
            raise StoreError("Missing required parameter: Key")
        expression = payload.get("UpdateExpression")
        expr = _Expression(payload.get("ExpressionAttributeNames"), payload.get("ExpressionAttributeValues"))
        with self._lock:
            table = self._table(table_name)
            key = table.key_of(payload["Key"])
            old = table.items.get(key)
            if old is None and self.strict_keys:
                raise ItemNotFound(f"No item in {table_name} with key {_describe_key(payload['Key'])}")
            new = copy.deepcopy(old) if old is not None else dict(payload["Key"])
            touched = expr.apply(expression, new) if expression else []
            if any(name in table.key for name in touched):
                raise StoreError("Cannot update attribute that is part of the key")
            table.items[key] = new
        mode = self._return_values(payload)
        if mode == "ALL_NEW":
            return copy.deepcopy(new)
        if mode == "ALL_OLD":
            return copy.deepcopy(old) if old is not None else {}
        if mode == "UPDATED_NEW":
            return {k: copy.deepcopy(new[k]) for k in touched if k in new}
        if mode == "UPDATED_OLD":
            return {k: copy.deepcopy(old[k]) for k in touched if old and k in old}
        return {}

    def delete(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        self._reject_conditions(payload)
        if "Key" not in payload:
            raise StoreError("Missing required parameter: Key")
        with self._lock:
            table = self._table(table_name)
            old = table.items.pop(table.key_of(payload["Key"]), None)
        if old is None:
            if self.strict_keys:
                raise ItemNotFound(f"No item in {table_name} with key {_describe_key(payload['Key'])}")
            return {}
        if self._return_values(payload) == "ALL_OLD":
            return old
        return {}

    def scan(self, table_name: str, payload: Mapping[str, Any]) -> Any:
        limit = payload.get("Limit")
        if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool) or limit < 1):
            raise StoreError("Limit must be a positive integer")
        filters = payload.get("ScanFilter") or {}
        if not isinstance(filters, Mapping):
            raise StoreError("ScanFilter must be a mapping")
        if payload.get("FilterExpression"):
            raise StoreError("FilterExpression is not supported by the in-memory store; use ScanFilter")
        with self._lock:
            table = self._table(table_name)
            keys = list(table.items)
            if payload.get("ExclusiveStartKey"):
                start = table.key_of(payload["ExclusiveStartKey"])
                keys = keys[keys.index(start) + 1:] if start in keys else []
            scanned = keys[:limit] if limit else keys
            items = [
                copy.deepcopy(table.items[k])
                for k in scanned
                if all(_matches(table.items[k], name, cond) for name, cond in filters.items())
            ]
        result: Dict[str, Any] = {"Items": items, "Count": len(items), "ScannedCount": len(scanned)}
        if limit and len(keys) > limit:
            result["LastEvaluatedKey"] = dict(zip(table.key, scanned[-1]))
        return result
