"""
Custom exception classes for the observer.
Provides structured error handling across the ingestion pipeline and API.
"""

from typing import Any, Optional, Dict


class ObserverException(Exception):
    """Base exception class for the Soarchain observer."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class StreamConnectionError(ObserverException):
    """Raised when the event stream transport cannot be opened or subscribed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONNECTION_ERROR", details)


class DecodeError(ObserverException):
    """Raised when a single per-client payload cannot be decoded."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DECODE_ERROR", details)


class EpochFetchError(ObserverException):
    """Raised when the current epoch cannot be fetched or parsed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "EPOCH_FETCH_ERROR", details)


class PersistenceError(ObserverException):
    """Raised when an event transaction is rolled back."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "PERSISTENCE_ERROR", details)


class NotFoundError(ObserverException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "NOT_FOUND", details)


class ClientNotFoundError(NotFoundError):
    """Raised when a client is not found."""

    def __init__(self, field: str, value: str):
        super().__init__(
            f"Client not found: {field}={value}",
            {field: value}
        )
