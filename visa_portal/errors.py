"""
Case service error types.

Raised by the core operations and mapped to HTTP responses in `visa_portal.api`.
Kept in their own module so every layer can import them without cycles.
"""

from typing import List, Optional


class CaseServiceError(Exception):
    """Base class for case service failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(CaseServiceError):
    """Entity id does not resolve."""

    status_code = 404


class Forbidden(CaseServiceError):
    """Authenticated but not authorized for this case or action."""

    status_code = 403


class ValidationFailed(CaseServiceError):
    """Malformed input, disallowed enum value, or missing required documents."""

    status_code = 400

    def __init__(self, message: str, missing_documents: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_documents = list(missing_documents or [])


class StorageError(CaseServiceError):
    """Upload to or delete from external storage failed."""

    status_code = 502
