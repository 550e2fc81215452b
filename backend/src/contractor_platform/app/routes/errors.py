"""Translate service exceptions into HTTP errors."""

from fastapi import HTTPException, status

from contractor_platform.services.document_numbers import DocumentNumberingError
from contractor_platform.services.document_service import LineItemLockedError
from contractor_platform.services.errors import DocumentStateError, FieldValidationError, NotFoundError
from contractor_platform.services.esign import PermanentProviderError, ProviderError

NUMBERING_RETRY_AFTER_SECONDS = "1"

SERVICE_ERRORS = (
    FieldValidationError,
    NotFoundError,
    DocumentStateError,
    LineItemLockedError,
    DocumentNumberingError,
    ProviderError,
)


def to_http_exception(exc: Exception, last_status: str | None = None) -> HTTPException:
    """Map a service exception to an ``HTTPException``.

    ``last_status`` is the document status to report alongside provider
    failures so the caller can offer a retry.
    """
    if isinstance(exc, FieldValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"field": exc.field, "message": exc.message},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (DocumentStateError, LineItemLockedError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, DocumentNumberingError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": NUMBERING_RETRY_AFTER_SECONDS},
        )
    if isinstance(exc, ProviderError):
        code = (
            status.HTTP_502_BAD_GATEWAY
            if isinstance(exc, PermanentProviderError)
            else status.HTTP_504_GATEWAY_TIMEOUT
        )
        return HTTPException(
            status_code=code,
            detail={"message": str(exc), "status": last_status, "retryable": code == status.HTTP_504_GATEWAY_TIMEOUT},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
