from .dispatcher import dispatch, handle_event
from .errors import CrudkitError, InvalidOperation, InvalidRequest, ItemNotFound, StoreError, TableNotFound
from .models import Operation, OperationRequest, OperationResult
from .store import DynamoTableStore, InMemoryTableStore, TableStore

__all__ = [
    "dispatch",
    "handle_event",
    "Operation",
    "OperationRequest",
    "OperationResult",
    "TableStore",
    "DynamoTableStore",
    "InMemoryTableStore",
    "CrudkitError",
    "InvalidOperation",
    "InvalidRequest",
    "StoreError",
    "TableNotFound",
    "ItemNotFound",
]
