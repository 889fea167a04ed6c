from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

_SKIPPED_HEADERS = {"content-length", "content-type"}


def _success_code(status_code: int) -> str:
    return {200: "ok", 201: "created", 202: "accepted"}.get(status_code, "ok")


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def build_success_envelope(data: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": _success_code(status_code),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "code" in payload
        and "message" in payload
        and ("data" in payload or "details" in payload)
    )


def _rewrap(original: Response, status_code: int, content: dict[str, Any]) -> JSONResponse:
    wrapped = JSONResponse(status_code=status_code, content=content)
    for key, value in original.headers.items():
        if key.lower() not in _SKIPPED_HEADERS:
            wrapped.headers[key] = value
    return wrapped


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON bodies in the ``{code, message, data, details}`` envelope."""

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)

        if not 200 <= response.status_code < 300:
            return response
        if response.status_code == 204:
            return _rewrap(response, 200, build_success_envelope(None, 200))
        if response.headers.get("content-type", "").split(";")[0] != "application/json":
            return response

        body = b""
        async for chunk in response.body_iterator:
            body += chunk
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            return Response(
                content=body,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
            )

        if _is_enveloped(payload):
            normalized = {**build_success_envelope(None, response.status_code), **payload}
            return _rewrap(response, response.status_code, normalized)
        return _rewrap(response, response.status_code, build_success_envelope(payload, response.status_code))


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
