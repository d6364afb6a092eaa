from __future__ import annotations
import logging
from typing import Any
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class FieldValidationError(Exception):
    """Business-rule validation failure reported against named fields (422)."""

    def __init__(self, errors: dict[str, list[str]] | str, message: str = "Validation failed", field: str | None = None):
        if isinstance(errors, str):
            errors = {field or "non_field_errors": [errors]}
        self.errors = errors
        self.message = message
        super().__init__(message)


def envelope(data: Any = None, message: str = "", success: bool = True) -> dict:
    return {"success": success, "message": message, "data": jsonable_encoder(data)}


def error_response(status_code: int, message: str, data: Any = None, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=envelope(data, message, success=False),
        headers=headers,
    )


def _field_name(loc: tuple) -> str:
    # ("body", "email") -> "email"; ("query", "page") -> "page"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header", "form")]
    return ".".join(parts) or "non_field_errors"


def validation_errors_to_fields(errors: list[dict]) -> dict[str, list[str]]:
    fields: dict[str, list[str]] = {}
    for err in errors:
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        fields.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(msg)
    return fields


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    data = None if isinstance(exc.detail, str) else exc.detail
    return error_response(exc.status_code, message, data, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        validation_errors_to_fields(exc.errors()),
    )


async def field_validation_handler(request: Request, exc: FieldValidationError) -> JSONResponse:
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc.message, exc.errors)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server Error")


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(FieldValidationError, field_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
