"""
Error taxonomy for ingestion, storage and reporting.

Exception Hierarchy:
    StoreSyncError (base)
    ├── AuthError        - Missing/invalid credential or signature (job aborts)
    ├── UpstreamError    - Provider HTTP/GraphQL failure (unit fails, siblings continue)
    ├── ValidationError  - Malformed input row (row dropped, batch continues)
    ├── ConflictError    - Natural-key violation outside the upsert path
    ├── ConfigError      - Missing environment or tenant configuration
    └── NotFoundError    - Referenced record does not exist
"""
from typing import Any, List, Optional

from storesync.utils.helpers import sanitize_error


class StoreSyncError(Exception):
    """Base exception for all storesync errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = sanitize_error(self.details)
        return body


class AuthError(StoreSyncError):
    """
    Credential missing, disabled or rejected by the provider.

    Never retried within a job.
    """

    status_code = 401


class UpstreamError(StoreSyncError):
    """
    Provider returned an error response.

    `partial_records` holds whatever pages were consumed before the failure;
    callers persist them as a valid partial result.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        partial_records: Optional[List[Any]] = None,
    ):
        super().__init__(message, details)
        self.upstream_status = status_code
        self.body = sanitize_error(body) if body else None
        self.partial_records = partial_records or []


class ValidationError(StoreSyncError):
    """Input row or request field failed validation."""

    status_code = 400

    def __init__(self, message: str, row: Optional[int] = None, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.row = row
        self.field = field
        self.value = value


class ConflictError(StoreSyncError):
    """Natural-key violation raised by the store outside the upsert path."""

    status_code = 409


class ConfigError(StoreSyncError):
    """Required environment or tenant configuration is missing or invalid."""

    status_code = 400


class NotFoundError(StoreSyncError):
    """Referenced record does not exist for this tenant."""

    status_code = 404
