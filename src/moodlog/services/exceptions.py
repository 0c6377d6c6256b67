"""Custom exceptions for Moodlog services."""


class StorageError(Exception):
    """Base exception for record store failures."""


class RecordNotFoundError(StorageError):
    """Raised when a record does not exist or is not owned by the caller.

    Attributes:
        table: Table (collection) name
        record_id: Identifier that was looked up
    """

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Record not found: {table}/{record_id}")


class RecordModifiedError(StorageError):
    """Raised when a record is modified during an atomic write operation.

    This exception indicates that the record changed between the initial
    read and the final write, which could lead to data loss if the write
    were to proceed.

    Attributes:
        path: Path to the record file that was modified
        message: Human-readable error message
    """

    def __init__(self, path: str, message: str = "Record was modified during write operation"):
        self.path = path
        self.message = message
        super().__init__(f"{message}: {path}")


class TranscriptFinalizedError(RuntimeError):
    """Raised when a token is appended to an already finalized transcript."""


class ClientDisconnectedError(Exception):
    """Raised by a sink when the downstream client is no longer reading."""
