"""Map domain errors onto HTTP responses.

Body shape: ``{"detail": {"message": ..., ...}}`` so clients can read the
same ``detail`` key FastAPI uses for its own HTTPExceptions.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from certvault.core.errors import (
    CertVaultError,
    ExternalCollaboratorError,
    IntegrityError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: tuple[tuple[type[CertVaultError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (IntegrityError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (ExternalCollaboratorError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: CertVaultError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def certvault_error_handler(request: Request, exc: CertVaultError) -> JSONResponse:
    code = status_for(exc)
    detail: dict[str, object] = {"message": str(exc)}
    if isinstance(exc, ValidationError) and exc.errors != [str(exc)]:
        detail["errors"] = exc.errors
    if isinstance(exc, InvalidTransition) and exc.current_status:
        detail["currentStatus"] = exc.current_status

    if code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": detail})


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CertVaultError, certvault_error_handler)
