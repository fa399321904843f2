"""Translation of domain errors into HTTP responses.

Routes let CondoboardError subclasses propagate; the handlers registered here
map each kind to a status code. Anything not listed falls back to 400.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.condoboard.core.errors import (
    BudgetLineNotFound,
    BudgetPeriodNotFound,
    BuildingNotFound,
    CondoboardError,
    ConflictingResponse,
    DocumentBuildingMismatch,
    DocumentNotFound,
    DocumentTooLarge,
    FeeTemplateNotFound,
    InvalidStateTransition,
    InvalidTenantIdentifier,
    MigrationFailed,
    MissingPaymentNotFound,
    ProvisioningFailed,
    TenantAlreadyExists,
    TenantNotFound,
    TokenNotFound,
    UnitFeeNotFound,
    UnitNotFound,
)

logger = structlog.get_logger(__name__)

STATUS_BY_ERROR: dict[type[CondoboardError], int] = {
    InvalidTenantIdentifier: status.HTTP_400_BAD_REQUEST,
    InvalidStateTransition: status.HTTP_400_BAD_REQUEST,
    DocumentBuildingMismatch: status.HTTP_400_BAD_REQUEST,
    TenantNotFound: status.HTTP_404_NOT_FOUND,
    BudgetPeriodNotFound: status.HTTP_404_NOT_FOUND,
    BuildingNotFound: status.HTTP_404_NOT_FOUND,
    UnitNotFound: status.HTTP_404_NOT_FOUND,
    BudgetLineNotFound: status.HTTP_404_NOT_FOUND,
    DocumentNotFound: status.HTTP_404_NOT_FOUND,
    MissingPaymentNotFound: status.HTTP_404_NOT_FOUND,
    FeeTemplateNotFound: status.HTTP_404_NOT_FOUND,
    UnitFeeNotFound: status.HTTP_404_NOT_FOUND,
    TokenNotFound: status.HTTP_404_NOT_FOUND,
    TenantAlreadyExists: status.HTTP_409_CONFLICT,
    ConflictingResponse: status.HTTP_409_CONFLICT,
    DocumentTooLarge: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    ProvisioningFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
    MigrationFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: CondoboardError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return status.HTTP_400_BAD_REQUEST


async def condoboard_error_handler(request: Request, exc: CondoboardError) -> JSONResponse:
    status_code = status_for(exc)
    content: dict = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ProvisioningFailed):
        content["stage"] = exc.completed_stage
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CondoboardError, condoboard_error_handler)
