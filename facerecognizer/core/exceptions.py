"""Custom exceptions for the face recognizer."""
from typing import Optional


class FaceRecognitionError(Exception):
    """Base exception for face recognition operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize face recognition error.

        Args:
            message: Error description
            details: Additional error context
        """
        super().__init__(message)
        self.details = details or {}


class DecodeError(FaceRecognitionError):
    """Raised when a file is not a readable or decodable image."""
    pass


class ModelUnavailableError(FaceRecognitionError):
    """Raised when a model adapter fails to load its backing data."""
    pass


class StorageError(FaceRecognitionError):
    """Raised when a registry connection, migration or query fails."""
    pass


class DuplicateRegistrationError(StorageError):
    """Raised when the content hash uniqueness constraint rejects an insert."""
    pass


class EncodingNotFoundError(StorageError):
    """Raised when a requested face encoding does not exist."""
    pass


class DimensionMismatchError(FaceRecognitionError):
    """Raised when an encoding vector does not have exactly 128 components."""
    pass


class FileTimeoutError(FaceRecognitionError):
    """Raised when processing a single file exceeds the configured timeout."""
    pass


class ConfigurationError(FaceRecognitionError):
    """Raised when user supplied configuration cannot be used."""
    pass
