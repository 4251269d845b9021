"""
Custom exceptions for the import pipeline with structured error context.

Each pipeline stage raises its own family so the orchestrator can log
and re-raise without hiding which stage failed. None of these errors is
retried: any of them ends the current run.

Exception Hierarchy:
    ETLException (base)
    ├── TransferError
    ├── DecodeError
    │   ├── CorruptArchiveError
    │   ├── MalformedRecordError
    │   └── RowTransformError
    └── LoadError
        ├── SchemaProvisioningError
        └── BulkCopyError
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ETLException(Exception):
    """
    Base exception for all ETL-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (dataset, path, line, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Transfer Errors
# ============================================================================

class TransferError(ETLException):
    """
    Exception raised when a remote file cannot be downloaded.

    Context should include:
        - url: The resource that failed
        - status_code: HTTP status code (if a response was received)
        - destination: Local staging path
    """
    pass


# ============================================================================
# Decode Errors
# ============================================================================

class DecodeError(ETLException):
    """Base exception for decompression, parsing and row transform failures."""
    pass


class CorruptArchiveError(DecodeError):
    """
    Exception raised when the compressed stream is corrupt or truncated.

    Context should include:
        - bytes_read: Compressed bytes consumed before the failure
    """
    pass


class MalformedRecordError(DecodeError):
    """
    Exception raised when a line cannot be parsed into a record.

    Context should include:
        - line_number: 1-based line number in the decompressed stream
        - expected_fields: Number of header fields
        - actual_fields: Number of fields found on the line
    """
    pass


class RowTransformError(DecodeError):
    """
    Exception raised when the dataset's row transform fails on a record.

    Context should include:
        - record_number: 1-based data record number
        - transform: Name of the transform strategy
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for data loading failures."""
    pass


class SchemaProvisioningError(LoadError):
    """
    Exception raised when CREATE TABLE, TRUNCATE or CREATE INDEX fails.

    Context should include:
        - table_name: Name of the table
        - statement: The statement that failed
    """
    pass


class BulkCopyError(LoadError):
    """
    Exception raised when COPY FROM STDIN rejects the stream.

    Context should include:
        - table_name: Name of the table
        - file_path: Transformed file being copied
    """
    pass
