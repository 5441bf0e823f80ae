"""
Custom Exception Classes

Defines custom exceptions for the wearable ingestion service.
Provides structured error handling across the application.
"""


class IngestionError(Exception):
    """Base exception for ingestion errors."""

    def __init__(self, message: str, details: dict = None):
        """
        Initialize ingestion error.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(IngestionError):
    """Exception raised for malformed webhook requests."""

    def __init__(self, message: str, field: str = None, details: dict = None):
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Field that failed validation
            details: Additional error details
        """
        super().__init__(message, details)
        self.field = field


class AuthenticationError(IngestionError):
    """Exception raised when a webhook cannot be authenticated."""

    pass


class DatastoreError(IngestionError):
    """Exception raised for datastore (PostgREST) errors."""

    def __init__(self, message: str, status_code: int = None, details: dict = None):
        """
        Initialize datastore error.

        Args:
            message: Error message
            status_code: HTTP status code returned by the datastore
            details: Additional error details
        """
        super().__init__(message, details)
        self.status_code = status_code


class TransformationError(IngestionError):
    """Exception raised when a provider data item cannot be transformed."""

    def __init__(self, message: str, source_data: dict = None, details: dict = None):
        super().__init__(message, details)
        self.source_data = source_data


class ConfigurationError(IngestionError):
    """Exception raised for configuration errors."""

    pass
