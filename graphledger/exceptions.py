"""Custom exceptions for GraphLedger.

This module provides exception classes used throughout the ledger.
"""


class GraphLedgerError(Exception):
    """Base exception for all GraphLedger errors."""

    def __init__(self, message: str, details: dict | None = None):
        """Initialize exception with message and optional details.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details


class ResourceNotFound(GraphLedgerError):
    """Exception raised when a requested resource is not found."""

    pass


class ValidationError(GraphLedgerError):
    """Exception raised when input validation fails."""

    pass


class ExecutionError(GraphLedgerError):
    """Exception raised when a ledger transaction fails to execute.

    The error is recorded against the transaction in the block that
    contained it; writes made by the failing transaction are discarded.

    Attributes:
        code: Numeric error code stored with the execution record
    """

    DATABASE_ERROR = 1
    POSSIBLE_CONNECTION_ERROR = 2

    code: int

    def __init__(self, message: str, code: int = DATABASE_ERROR):
        """Initialize execution error.

        Args:
            message: Human-readable error message
            code: DATABASE_ERROR or POSSIBLE_CONNECTION_ERROR
        """
        super().__init__(message, details={"code": code})
        self.code = code

    @classmethod
    def database_error(cls, msg: str) -> "ExecutionError":
        return cls(f"Database error: {msg}", cls.DATABASE_ERROR)

    @classmethod
    def possible_connection_error(cls, msg: str) -> "ExecutionError":
        return cls(f"Possible connection error: {msg}", cls.POSSIBLE_CONNECTION_ERROR)


class ConsistencyError(GraphLedgerError):
    """Exception raised when ledger integrity is violated.

    Raised when the block chain is broken or node history refers to
    transactions the ledger never stored.

    Attributes:
        broken_blocks: List of blocks whose links or hashes don't match
        orphans: List of history entries with unknown transactions
    """

    broken_blocks: list[dict]
    orphans: list[dict]

    def __init__(self, message: str, details: dict | None = None):
        """Initialize consistency error.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message, details)
        self.broken_blocks = details.get("broken_blocks", []) if details else []
        self.orphans = details.get("orphans", []) if details else []
