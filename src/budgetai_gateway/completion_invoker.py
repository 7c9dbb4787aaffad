from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

import httpx
import structlog

from .contracts import (
    AttemptOutcome,
    CompletionAttempt,
    CompletionFailure,
    CompletionRequest,
    CompletionResult,
    FailureKind,
)
from .errors import ConfigurationError, UpstreamNetworkError
from .logging import redact_text
from .metrics import upstream_attempts_total, upstream_retry_wait_seconds

log = structlog.get_logger()

OPENAI_API_BASE = "https://api.openai.com/v1"


def parse_retry_after(value: str | None) -> int | None:
    """Whole seconds from a ``retry-after`` header, or None when absent or not an integer."""
    if value is None:
        return None
    value = value.strip()
    # str.isdigit() also accepts superscripts and other non-ASCII digits
    return int(value) if value.isascii() and value.isdigit() else None


def truncate_detail(text: str, limit: int, secrets: Iterable[str] = ()) -> str:
    return redact_text(text, secrets)[: max(0, limit)]


class ResilientCompletionInvoker:
    """
    Posts chat-completion requests and absorbs transient upstream failures.

    Retry policy, for attempt index ``n`` (0-based) out of ``max_retries + 1``:
      - 429: wait ``retry-after`` seconds when given, else
        ``min(rate_limit_max_ms, rate_limit_base_ms * 2**n)``; once retries are
        spent, return a synthesized ``rate_limit_exhausted`` failure.
      - 5xx: wait ``min(server_error_max_ms, server_error_step_ms * (n + 1))``;
        once retries are spent, return the last response unchanged.
      - any other non-2xx: return a terminal failure right away.

    Nothing is kept between invocations.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = OPENAI_API_BASE,
        timeout_seconds: float = 60,
        max_retries: int = 3,
        rate_limit_base_ms: int = 1000,
        rate_limit_max_ms: int = 15000,
        server_error_step_ms: int = 800,
        server_error_max_ms: int = 6000,
        detail_max_chars: int = 400,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._max_retries = max(0, max_retries)
        self._rate_limit_base_ms = rate_limit_base_ms
        self._rate_limit_max_ms = rate_limit_max_ms
        self._server_error_step_ms = server_error_step_ms
        self._server_error_max_ms = server_error_max_ms
        self._detail_max_chars = detail_max_chars
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep

    async def close(self) -> None:
        await self._client.aclose()

    def rate_limit_wait_ms(self, attempt: int, retry_after_seconds: int | None) -> int:
        if retry_after_seconds is not None:
            return retry_after_seconds * 1000
        return min(self._rate_limit_max_ms, self._rate_limit_base_ms * (2**attempt))

    def server_error_wait_ms(self, attempt: int) -> int:
        return min(self._server_error_max_ms, self._server_error_step_ms * (attempt + 1))

    def _detail(self, resp: httpx.Response) -> str:
        secrets = [self.api_key] if self.api_key else []
        return truncate_detail(resp.text, self._detail_max_chars, secrets)

    async def invoke(self, request: CompletionRequest, max_retries: int | None = None) -> CompletionResult:
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured.")

        retries = self._max_retries if max_retries is None else max(0, max_retries)
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = request.to_payload()
        attempts: list[CompletionAttempt] = []

        for attempt in range(retries + 1):
            try:
                resp = await self._client.post(self._url, headers=headers, json=payload)
            except httpx.HTTPError as e:
                upstream_attempts_total.labels(outcome="network_error").inc()
                log.warning("completion_network_error", attempt=attempt, error_type=type(e).__name__)
                raise UpstreamNetworkError("Completion service is unreachable.") from e

            status = resp.status_code
            last_attempt = attempt >= retries

            if resp.is_success:
                upstream_attempts_total.labels(outcome="success").inc()
                attempts.append(CompletionAttempt(attempt, status, AttemptOutcome.SUCCESS))
                return CompletionResult(response=resp, attempts=tuple(attempts))

            if status == 429:
                retry_after = parse_retry_after(resp.headers.get("retry-after"))
                if last_attempt:
                    upstream_attempts_total.labels(outcome="rate_limit_exhausted").inc()
                    attempts.append(CompletionAttempt(attempt, status, AttemptOutcome.TERMINAL))
                    log.warning("completion_rate_limit_exhausted", attempts=attempt + 1)
                    failure = CompletionFailure(
                        kind=FailureKind.RATE_LIMIT_EXHAUSTED,
                        status_code=status,
                        detail=self._detail(resp),
                        retry_after_seconds=retry_after,
                    )
                    return CompletionResult(failure=failure, attempts=tuple(attempts))
                wait_ms = self.rate_limit_wait_ms(attempt, retry_after)
                await self._backoff(attempts, attempt, status, wait_ms, reason="rate_limit")
                continue

            if 500 <= status <= 599:
                if last_attempt:
                    upstream_attempts_total.labels(outcome="server_error_exhausted").inc()
                    attempts.append(CompletionAttempt(attempt, status, AttemptOutcome.TERMINAL))
                    log.warning("completion_upstream_5xx", status_code=status, body=self._detail(resp))
                    return CompletionResult(response=resp, attempts=tuple(attempts))
                wait_ms = self.server_error_wait_ms(attempt)
                await self._backoff(attempts, attempt, status, wait_ms, reason="server_error")
                continue

            upstream_attempts_total.labels(outcome="terminal").inc()
            attempts.append(CompletionAttempt(attempt, status, AttemptOutcome.TERMINAL))
            failure = CompletionFailure(kind=FailureKind.TERMINAL, status_code=status, detail=self._detail(resp))
            log.info("completion_terminal_error", status_code=status)
            return CompletionResult(failure=failure, attempts=tuple(attempts))

        raise AssertionError("unreachable: the last attempt always returns")  # pragma: no cover

    async def _backoff(
        self,
        attempts: list[CompletionAttempt],
        attempt: int,
        status: int,
        wait_ms: int,
        *,
        reason: str,
    ) -> None:
        upstream_attempts_total.labels(outcome="retryable").inc()
        upstream_retry_wait_seconds.labels(reason=reason).observe(wait_ms / 1000)
        attempts.append(CompletionAttempt(attempt, status, AttemptOutcome.RETRYABLE, wait_ms))
        log.debug("completion_retry_scheduled", attempt=attempt, status_code=status, wait_ms=wait_ms)
        await self._sleep(wait_ms / 1000)
