"""
Application errors.

Every error that can reach a client carries an HTTP-style status code so the
stream manager and the HTTP layer can render it without special cases.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base error with an HTTP-equivalent status code."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "statusCode": self.status_code,
        }


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(401, message)


class OperationCancelledError(AppError):
    """Raised when a cancelled aggregation reaches a checkpoint."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(499, message)


class AllSourcesFailedError(AppError):
    """Raised when every configured data source failed in one run."""

    def __init__(self, errors: Optional[list] = None, message: str = "All data sources failed"):
        self.errors = list(errors or [])
        super().__init__(500, message)


class UpstreamError(AppError):
    """An upstream API answered with an error payload."""

    def __init__(self, message: str):
        super().__init__(502, message)


class StreamTimeoutError(AppError):
    def __init__(self, message: str = "Operation timed out"):
        super().__init__(504, message)
