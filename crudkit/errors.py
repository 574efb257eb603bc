class CrudkitError(Exception):
    """Base exception for crudkit errors."""


class InvalidOperation(CrudkitError, ValueError):
    """The request named an operation the dispatcher does not know."""

    def __init__(self, operation):
        self.operation = operation
        super().__init__(f'Unrecognized operation "{operation}"')


class InvalidRequest(CrudkitError, ValueError):
    """The request envelope is missing a field or has the wrong shape."""


class StoreError(CrudkitError):
    """Any failure raised by a table store."""


class TableNotFound(StoreError):
    """The addressed table does not exist."""


class ItemNotFound(StoreError):
    """The addressed key does not exist in the table."""
