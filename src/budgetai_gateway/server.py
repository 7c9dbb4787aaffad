from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Awaitable
from contextlib import asynccontextmanager
from typing import TypeVar

import structlog

try:
    from fastapi import FastAPI, Request
    from fastapi.exceptions import RequestValidationError
    from fastapi.responses import JSONResponse
except ImportError as e:  # pragma: no cover
    raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

from .config import GatewayConfig
from .credentials import init_firebase, load_service_account
from .document_store import DocumentStore, FirestoreDocumentStore
from .errors import (
    AuthenticationError,
    ConfigurationError,
    GatewayError,
    InvalidRequestError,
    RateLimitExhaustedError,
    RequestTimeoutError,
    SearchError,
    UpstreamNetworkError,
    UpstreamProtocolError,
    UpstreamServiceError,
)
from .extraction import ContentFetcher
from .http_security import install_middlewares
from .identity import FirebaseIdentityVerifier, IdentityVerifier, VerifiedUser, bearer_token
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .prompts import budget_to_text, build_chat_prompts
from .provider import OpenAIChatProvider
from .schemas import AiChatRequest, AiChatResponse, WebMemoRequest, WebMemoResponse, make_error_response
from .web_memo import WebMemoService
from .web_search import BraveSearchClient

log = structlog.get_logger()

T = TypeVar("T")

# (error type, HTTP status, metrics label); looked up by exception MRO
_ERROR_STATUS: list[tuple[type[GatewayError], int, str]] = [
    (InvalidRequestError, 400, "invalid_request_error"),
    (AuthenticationError, 401, "authentication_error"),
    (RateLimitExhaustedError, 429, "rate_limit_exhausted"),
    (UpstreamServiceError, 502, "upstream_error"),
    (UpstreamNetworkError, 502, "upstream_network_error"),
    (UpstreamProtocolError, 502, "upstream_protocol_error"),
    (SearchError, 502, "search_error"),
    (RequestTimeoutError, 504, "timeout"),
    (ConfigurationError, 500, "configuration_error"),
    (GatewayError, 500, "api_error"),
]


def create_app(
    cfg: GatewayConfig | None = None,
    *,
    provider: OpenAIChatProvider | None = None,
    search: BraveSearchClient | None = None,
    fetcher: ContentFetcher | None = None,
    identity: IdentityVerifier | None = None,
    store: DocumentStore | None = None,
):
    cfg = cfg or GatewayConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())

    if (identity is None or store is None) and cfg.firebase_configured():
        account = load_service_account(cfg)
        if account is not None:
            firebase_app = init_firebase(account)
            identity = identity or FirebaseIdentityVerifier(firebase_app)
            store = store or FirestoreDocumentStore.from_app(firebase_app)

    provider = provider or OpenAIChatProvider(cfg)
    search = search or BraveSearchClient(
        cfg.brave_search_api_key, url=cfg.brave_search_url, timeout_seconds=cfg.fetch_timeout_seconds
    )
    fetcher = fetcher or ContentFetcher(
        user_agent=cfg.fetch_user_agent,
        timeout_seconds=cfg.fetch_timeout_seconds,
        max_chars=cfg.extract_max_chars,
    )
    memo_service = (
        WebMemoService(cfg, provider=provider, search=search, fetcher=fetcher, store=store)
        if store is not None
        else None
    )

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float | None = None) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        if started_at is not None:
            server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    async def _with_deadline(work: Awaitable[T]) -> T:
        timeout = max(0.0, float(cfg.request_timeout_seconds or 0)) or None
        try:
            return await asyncio.wait_for(work, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError("Request timed out.") from e

    async def _caller(request, *, required: bool) -> VerifiedUser | None:
        token = bearer_token(request.headers.get("authorization"))
        if identity is None:
            if required:
                raise ConfigurationError("Identity verification is not configured.")
            return None
        if token is None:
            if required:
                raise AuthenticationError("Unauthorized")
            return None
        user = await identity.verify(token)
        if user is None and required:
            raise AuthenticationError("Unauthorized")
        return user

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await provider.close()
            await search.close()
            await fetcher.close()

    app = FastAPI(
        title="budgetai-gateway",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    def _error_handler(status_code: int, label: str):
        async def _handle(request: Request, exc: GatewayError):
            server_errors_total.labels(type=label).inc()
            _observe(request.url.path, status_code)
            headers: dict[str, str] = {}
            if isinstance(exc, RateLimitExhaustedError) and exc.retry_after_seconds is not None:
                headers["Retry-After"] = str(exc.retry_after_seconds)
            if isinstance(exc, AuthenticationError):
                headers["WWW-Authenticate"] = 'Bearer realm="budgetai-gateway"'
            if status_code >= 500:
                log.error("request_failed", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
            return JSONResponse(
                status_code=status_code,
                content=make_error_response(
                    str(exc),
                    detail=exc.detail if isinstance(exc, UpstreamServiceError) else None,
                    request_id=_request_id(request),
                ),
                headers=headers,
            )

        return _handle

    for error_type, status_code, label in _ERROR_STATUS:
        app.add_exception_handler(error_type, _error_handler(status_code, label))

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError):
        server_errors_total.labels(type="invalid_request_error").inc()
        _observe(request.url.path, 400)
        return JSONResponse(
            status_code=400,
            content=make_error_response("Invalid JSON body.", request_id=_request_id(request)),
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/ai-chat", response_model=AiChatResponse)
    async def ai_chat(req: AiChatRequest, request: Request):
        started_at = time.monotonic()
        question = req.question if isinstance(req.question, str) else ""
        if not question.strip():
            raise InvalidRequestError('Missing "question"')
        if req.budget is not None and not isinstance(req.budget, dict):
            raise InvalidRequestError("budget must be a JSON object")

        context_html = req.context_html[: cfg.context_html_max_chars] if isinstance(req.context_html, str) else ""
        budget = req.budget
        caller = await _caller(request, required=cfg.require_auth_for_chat)
        if budget is None and caller is not None and store is not None:
            budget = await store.get_state(caller.uid, cfg.user_state_key)

        system_prompt, user_prompt = build_chat_prompts(
            question, context_html, budget_to_text(budget, cfg.budget_json_max_chars)
        )
        answer = await _with_deadline(provider.complete(system_prompt, user_prompt))
        _observe("/api/ai-chat", 200, started_at)
        return AiChatResponse(answer=answer)

    @app.post("/api/web-memo", response_model=WebMemoResponse, response_model_exclude_none=True)
    async def web_memo(req: WebMemoRequest, request: Request):
        started_at = time.monotonic()
        caller = await _caller(request, required=True)
        assert caller is not None
        if not isinstance(req.query, str) or not req.query:
            raise InvalidRequestError("Missing query")
        if memo_service is None:
            raise ConfigurationError("Document store is not configured.")

        memo = await _with_deadline(memo_service.create_memo(caller.uid, req.query))
        _observe("/api/web-memo", 200, started_at)
        return memo

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("budgetai_gateway.server:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
