"""Domain error types and the handlers rendering them as JSON envelopes."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class HospitalError(Exception):
    """Base class of every error crossing a service boundary."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        errors: Optional[Dict[str, List[str]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors


class ValidationError(HospitalError):
    """Bad or missing input, including uniqueness violations."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConflictError(HospitalError):
    """A capacity or occupancy constraint would be violated."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(HospitalError):
    status_code = status.HTTP_404_NOT_FOUND


class InternalError(HospitalError):
    """Unexpected store failure; the transaction has been rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def hospital_error_handler(_: Request, exc: HospitalError) -> JSONResponse:
    content: dict = {"success": False, "message": exc.message}
    if exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors: Dict[str, List[str]] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location) or "__root__"
        errors.setdefault(field, []).append(error.get("msg", "Invalid value"))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder({"success": False, "message": "The given data was invalid.", "errors": errors}),
    )


def database_error_handler(_: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Unhandled database error: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Unexpected database error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render domain, validation and store errors as ``{success, message}`` envelopes."""

    app.add_exception_handler(HospitalError, hospital_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
