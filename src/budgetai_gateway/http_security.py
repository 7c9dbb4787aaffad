from __future__ import annotations

import re
import uuid

import structlog

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")

API_PREFIX = "/api/"

_BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}
# chat answers and memos are per-user; never let a proxy cache them
_API_HEADERS = {"Cache-Control": "no-store"}


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid.uuid4().hex


def response_headers(path: str) -> dict[str, str]:
    if path.startswith(API_PREFIX):
        return {**_BASE_HEADERS, **_API_HEADERS}
    return dict(_BASE_HEADERS)


def declared_length(value: str | None) -> int | None:
    if value and value.isascii() and value.isdigit():
        return int(value)
    return None


def install_middlewares(app, *, cfg) -> None:
    """One gateway middleware (request id, /api/ body limit, headers) plus optional trusted hosts and CORS."""
    from fastapi.responses import JSONResponse
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    from .schemas import make_error_response

    body_limit = int(getattr(cfg, "max_request_body_bytes", 0) or 0)

    async def _body_too_large(request: Request) -> bool:
        if body_limit <= 0 or request.method != "POST" or not request.url.path.startswith(API_PREFIX):
            return False
        length = declared_length(request.headers.get("content-length"))
        if length is not None and length > body_limit:
            return True
        return len(await request.body()) > body_limit

    class GatewayHttpMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = coerce_request_id(request.headers.get("x-request-id"))
            request.state.request_id = request_id
            structlog.contextvars.bind_contextvars(request_id=request_id)
            try:
                if await _body_too_large(request):
                    response = JSONResponse(
                        status_code=413,
                        content=make_error_response("Request body too large.", request_id=request_id),
                    )
                else:
                    response = await call_next(request)
            finally:
                structlog.contextvars.clear_contextvars()

            for name, value in response_headers(request.url.path).items():
                response.headers.setdefault(name, value)
            response.headers.setdefault("X-Request-Id", request_id)
            return response

    app.add_middleware(GatewayHttpMiddleware)

    allowed_hosts: list[str] = list(getattr(cfg, "allowed_hosts", []) or [])
    if allowed_hosts:
        from starlette.middleware.trustedhost import TrustedHostMiddleware

        app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

    cors_allow_origins: list[str] = list(getattr(cfg, "cors_allow_origins", []) or [])
    if cors_allow_origins:
        from fastapi.middleware.cors import CORSMiddleware

        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_allow_origins,
            allow_credentials=False,
            allow_methods=["POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
            max_age=600,
        )
