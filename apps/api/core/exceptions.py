"""
Custom exception classes and error handling.

Two families live here:
- APIException and subclasses: HTTP-facing, rendered by the handler in main.py.
- SpotPipelineError and subclasses: raised inside the ingestion pipeline.
  Placemark/image errors are counted by the sync and never reach a client;
  format/configuration errors fail the owning source run.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedError(APIException):
    """Authentication required."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN"
        )


class SpotPipelineError(Exception):
    """Base class for ingestion pipeline failures."""


class TransientNetworkError(SpotPipelineError):
    """Download, geocode or upload failed on the wire. Retried by the caller, never automatically."""


class FormatError(SpotPipelineError):
    """Archive, markup or structured text could not be parsed. Aborts only the owning source run."""


class PlacemarkError(SpotPipelineError):
    """A placemark could not be resolved to coordinates. The placemark is skipped."""


class ImageError(SpotPipelineError):
    """An image could not be downloaded, decoded or stored. The image is skipped."""


class ConfigurationError(SpotPipelineError):
    """A required external-service credential is missing. Raised before any I/O."""
