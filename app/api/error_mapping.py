"""Translate service-layer errors into the API's ``HTTPException`` envelope."""

from fastapi import HTTPException, status

from app.services.application_errors import ApplicationError
from app.services.providers import ProviderError


APPLICATION_ERROR_STATUS = {
    "loan_not_found": status.HTTP_404_NOT_FOUND,
    "invalid_loan": status.HTTP_404_NOT_FOUND,
    "already_completed": status.HTTP_409_CONFLICT,
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "identity_skip_disabled": status.HTTP_403_FORBIDDEN,
}

PROVIDER_ERROR_STATUS = {
    "phone_verification_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "identity_verification_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "provider_unavailable": status.HTTP_502_BAD_GATEWAY,
    "provider_error": status.HTTP_502_BAD_GATEWAY,
    "identity_session_not_found": status.HTTP_404_NOT_FOUND,
}


def application_http_error(exc: ApplicationError) -> HTTPException:
    return HTTPException(
        status_code=APPLICATION_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail={"code": exc.code, "message": exc.message, "details": exc.details},
    )


def provider_http_error(exc: ProviderError) -> HTTPException:
    return HTTPException(
        status_code=PROVIDER_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail={"code": exc.code, "message": exc.message, "details": exc.details},
    )
