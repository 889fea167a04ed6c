from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class DocumentLifecycleError(Exception):
    """Base for domain failures surfaced to callers with a stable code."""

    status_code = 400

    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class DocumentValidationError(DocumentLifecycleError):
    status_code = 422


class DocumentStateConflict(DocumentLifecycleError):
    status_code = 409


class DocumentNotFound(DocumentLifecycleError):
    status_code = 404


INVALID_TYPE = "INVALID_TYPE"
OWNER_REQUIRED = "OWNER_REQUIRED"
INVALID_FILE = "INVALID_FILE"
REJECTION_REASON_REQUIRED = "REJECTION_REASON_REQUIRED"
NOT_MODIFIABLE = "NOT_MODIFIABLE"
DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
RELATION_NOT_FOUND = "RELATION_NOT_FOUND"


def not_modifiable(document_id: Any, action: str) -> DocumentStateConflict:
    return DocumentStateConflict(
        NOT_MODIFIABLE,
        "Document has been superseded and can no longer be modified",
        {"document_id": str(document_id), "action": action},
    )

def _default_code(status_code: int) -> str:
    mapping = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "unprocessable_entity",
    }
    return mapping.get(status_code, "http_error")


def _default_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _normalize_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    if isinstance(details, str):
        return {"detail": details}
    return {"detail": str(details)}


def _build_response(
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    payload = {
        "code": code,
        "message": message,
        "data": None,
        "details": _normalize_details(details),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def _parse_http_exception_detail(detail: Any, status_code: int) -> tuple[str, str, dict]:
    code = _default_code(status_code)
    message = _default_message(status_code)
    details: dict = {}

    if isinstance(detail, dict):
        code = detail.get("code") or code
        message = detail.get("message") or detail.get("detail") or detail.get("error") or message
        if "details" in detail:
            details = _normalize_details(detail.get("details"))
        else:
            remainder = {
                k: v for k, v in detail.items() if k not in {"code", "message", "detail", "error"}
            }
            details = remainder or {
                "detail": detail.get("detail") or detail.get("error") or message
            }
        return code, message, details

    if isinstance(detail, list):
        return code, message, {"errors": detail}

    if isinstance(detail, str):
        return code, detail, {"detail": detail}

    return code, message, {"detail": str(detail)}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _parse_http_exception_detail(exc.detail, exc.status_code)
    return _build_response(exc.status_code, code, message, details)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0] or {}
        loc = first.get("loc") or []
        msg = first.get("msg") or "Validation failed"
        # Drop the request section (body/query/path) from the location
        loc_parts = [str(part) for part in loc if part not in {"body", "query", "path"}]
        if loc_parts:
            message = f"{'.'.join(loc_parts)}: {msg}"
        else:
            message = str(msg)
    return _build_response(
        status_code=422,
        code="validation_error",
        message=message,
        details={"errors": errors, "body": exc.body},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _build_response(
        status_code=500,
        code="internal_server_error",
        message="Internal server error",
        details={},
    )


async def document_error_handler(request: Request, exc: DocumentLifecycleError) -> JSONResponse:
    return _build_response(exc.status_code, exc.code, exc.message, exc.details)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database failure on %s %s", request.method, request.url.path, exc_info=exc)
    return _build_response(
        status_code=503,
        code="service_unavailable",
        message="Storage temporarily unavailable",
        details={"retryable": True},
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DocumentLifecycleError, document_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
