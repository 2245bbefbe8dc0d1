"""
Custom exception classes for the CRUD service layer and its handlers.
"""
from typing import Optional, Dict, Any


class CrudError(Exception):
    """Base class for errors raised by the CRUD service layer."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize CRUD error.

        Args:
            message: Error message, safe to show to API clients
            status_code: HTTP status code (defaults to the class status code)
            details: Extra debugging context, only exposed outside production
        """
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


class ValidationError(CrudError):
    """Exception raised for malformed descriptors, filters or payloads."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None
    ):
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Field name that failed validation if available
            value: Invalid value if available
        """
        details = {'field': field} if field else None
        super().__init__(message, details=details)
        self.field = field
        self.value = value


class NotFound(CrudError):
    """Exception raised when a required document does not exist."""

    status_code = 404


class Conflict(CrudError):
    """Exception raised when a document to be created already exists."""

    status_code = 409

    def __init__(
        self,
        message: str = 'Document already exists',
        table_name: Optional[str] = None,
        index: Optional[int] = None
    ):
        """
        Initialize conflict error.

        Args:
            message: Error message
            table_name: Table holding the existing document if available
            index: Position of the conflicting payload in a batch create
        """
        details: Dict[str, Any] = {}
        if table_name:
            details['table_name'] = table_name
        if index is not None:
            details['index'] = index
        super().__init__(message, details=details)
        self.table_name = table_name
        self.index = index


class InternalError(CrudError):
    """Exception raised for storage failures and unexpected errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None
    ):
        """
        Initialize internal error.

        Args:
            message: Error message
            operation: Service operation that failed if available
            cause: Underlying exception if available
        """
        details: Dict[str, Any] = {}
        if operation:
            details['operation'] = operation
        if cause is not None:
            details['cause'] = type(cause).__name__
        super().__init__(message, details=details)
        self.operation = operation
        self.cause = cause
