"""Exceptions raised by the Ping Pong Match Tracker core."""

from typing import Optional


class TrackerError(Exception):
    """Base exception for tracker errors."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class StorageError(TrackerError):
    """Raised when the underlying database rejects or fails an operation."""

    def __init__(self, operation: str, details: str = None, batch=None):
        super().__init__(
            f"Storage error during {operation}: {details}",
            "Could not save your data. Please try again."
        )
        self.operation = operation
        self.batch = batch


class NotFoundError(TrackerError):
    """Raised when an operation targets a record that does not exist."""

    def __init__(self, collection: str, record_id: str):
        label = collection[:-1].capitalize() if collection.endswith("s") else collection
        super().__init__(
            f"{label} '{record_id}' not found in {collection}",
            f"{label} not found"
        )
        self.collection = collection
        self.record_id = record_id


class ValidationError(TrackerError):
    """Raised when record data or an import bundle is malformed.

    ``field``, ``index`` and ``collection`` point at the first offending
    value when known.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        index: Optional[int] = None,
        collection: Optional[str] = None
    ):
        super().__init__(message, f"Invalid data: {message}")
        self.field = field
        self.index = index
        self.collection = collection
