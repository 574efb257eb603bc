from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from . import encoding
from .errors import InvalidOperation, InvalidRequest
from .models import BAD_REQUEST, FAILED, OK, Operation, OperationRequest, OperationResult
from .store import TableStore

logger = logging.getLogger(__name__)


def _invoke(operation: Operation, table: TableStore, table_name: str, payload: Mapping[str, Any]) -> Any:
    if operation is Operation.CREATE:
        return table.put(table_name, payload)
    elif operation is Operation.READ:
        return table.get(table_name, payload)
    elif operation is Operation.UPDATE:
        return table.update(table_name, payload)
    elif operation is Operation.DELETE:
        return table.delete(table_name, payload)
    elif operation is Operation.LIST:
        return table.scan(table_name, payload)
    raise InvalidOperation(operation)


def _validate(request: OperationRequest) -> Mapping[str, Any]:
    if not isinstance(request.table_name, str) or not request.table_name.strip():
        raise InvalidRequest("tableName is required")
    payload = request.payload if request.payload is not None else {}
    if not isinstance(payload, Mapping):
        raise InvalidRequest(f"payload must be an object, got {type(payload).__name__}")
    return payload


def dispatch(request: OperationRequest, table: TableStore) -> OperationResult:
    """
    Run one request against ``table``. Never raises: every failure comes
    back as a 500 result whose body is ``{"error": kind, "message": text}``.
    """
    try:
        operation = Operation.parse(request.operation)
        payload = _validate(request)
    except InvalidOperation as e:
        logger.warning("Rejected request: %s", e)
        return OperationResult(FAILED, encoding.error_body("InvalidOperation", str(e)))
    except InvalidRequest as e:
        logger.warning("Rejected request: %s", e)
        return OperationResult(FAILED, encoding.error_body("InvalidRequest", str(e)))

    try:
        result = _invoke(operation, table, request.table_name, payload)
        body = encoding.dumps(result)
    except Exception as e:
        logger.exception("%s on table %s failed", operation.value, request.table_name)
        return OperationResult(FAILED, encoding.error_body("BackendFailure", str(e)))

    logger.info("%s on table %s succeeded", operation.value, request.table_name)
    return OperationResult(OK, body)


def _request_body(event: Mapping[str, Any]) -> Mapping[str, Any]:
    # API Gateway proxy integration wraps the request in a JSON string body
    if "operation" not in event and "body" in event:
        body = event.get("body")
        if body is None or body == "":
            raise InvalidRequest("Request body is empty")
        if isinstance(body, str):
            try:
                body = encoding.loads(body)
            except json.JSONDecodeError as e:
                raise InvalidRequest(f"Request body is not valid JSON: {e.msg}") from e
        if not isinstance(body, Mapping):
            raise InvalidRequest("Request body must be a JSON object")
        return body
    return event


def handle_event(event: Any, table: TableStore) -> OperationResult:
    """Decode a direct or proxy-integration event and dispatch it."""
    try:
        if not isinstance(event, Mapping):
            raise InvalidRequest("Event must be a JSON object")
        body = _request_body(event)
    except InvalidRequest as e:
        logger.warning("Malformed event: %s", e)
        return OperationResult(BAD_REQUEST, encoding.error_body("InvalidRequest", str(e)))
    return dispatch(OperationRequest.from_dict(body), table)
