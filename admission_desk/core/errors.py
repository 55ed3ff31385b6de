"""
Error taxonomy for the admission desk.

Every error carries a machine readable ``error_code`` and the HTTP status the
API layer renders it with. Only ``StorageError`` is ever retried.
"""

from typing import Dict, Optional


class AdmissionError(Exception):
    """Base exception for admission service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class ValidationError(AdmissionError):
    """Caller-correctable input problem, reported per field."""

    def __init__(self, fields: Dict[str, str], message: str = "Invalid application data"):
        self.fields = fields
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=422,
        )


class NotFoundError(AdmissionError):
    def __init__(self, entity: str, entity_id: Optional[str] = None):
        message = f"{entity} {entity_id} not found" if entity_id else f"{entity} not found"
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
        )


class InvalidStateError(AdmissionError):
    """Raised when an application is not in a state that allows the transition."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(
            message=message,
            error_code="INVALID_STATE",
            status_code=409,
        )


class StorageError(AdmissionError):
    """Transient infrastructure failure (timeout, unavailable store)."""

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            status_code=503,
        )


class DuplicateKeyError(Exception):
    """A unique index rejected a write. Internal to stores and their callers."""

    def __init__(self, key: str, value: str):
        self.key = key
        self.value = value
        super().__init__(f"Duplicate value for {key}: {value}")
