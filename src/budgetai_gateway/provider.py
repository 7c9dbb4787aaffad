from __future__ import annotations

import time
from typing import Any

import structlog

from .completion_invoker import ResilientCompletionInvoker, truncate_detail
from .config import GatewayConfig
from .contracts import CompletionRequest, CompletionResult, FailureKind
from .errors import (
    RateLimitExhaustedError,
    UpstreamProtocolError,
    UpstreamServiceError,
)
from .metrics import provider_latency_seconds, provider_requests_total

log = structlog.get_logger()

FALLBACK_ANSWER = "Non sono riuscito a generare una risposta."


def first_choice_content(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) and content else None


class OpenAIChatProvider:
    name = "openai"

    def __init__(self, cfg: GatewayConfig, *, invoker: ResilientCompletionInvoker | None = None):
        self.cfg = cfg
        self.invoker = invoker or ResilientCompletionInvoker(
            api_key=cfg.openai_api_key,
            base_url=cfg.openai_base_url,
            timeout_seconds=cfg.upstream_timeout_seconds,
            max_retries=cfg.upstream_max_retries,
            rate_limit_base_ms=cfg.rate_limit_backoff_base_ms,
            rate_limit_max_ms=cfg.rate_limit_backoff_max_ms,
            server_error_step_ms=cfg.server_error_backoff_step_ms,
            server_error_max_ms=cfg.server_error_backoff_max_ms,
            detail_max_chars=cfg.error_detail_max_chars,
        )

    async def close(self) -> None:
        await self.invoker.close()

    def build_request(self, system_prompt: str, user_prompt: str, *, temperature: float | None = None) -> CompletionRequest:
        return CompletionRequest(
            model=self.cfg.openai_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.cfg.openai_temperature if temperature is None else temperature,
        )

    def _unwrap(self, result: CompletionResult) -> Any:
        """Payload of a successful result; every other outcome becomes an exception."""
        if result.failure is not None:
            failure = result.failure
            if failure.kind is FailureKind.RATE_LIMIT_EXHAUSTED:
                raise RateLimitExhaustedError(retry_after_seconds=failure.retry_after_seconds)
            raise UpstreamServiceError(failure.status_code, failure.detail)

        resp = result.response
        assert resp is not None
        if not resp.is_success:
            # server errors outlasted the retries; the invoker hands back the raw response
            secrets = [self.cfg.openai_api_key] if self.cfg.openai_api_key else []
            raise UpstreamServiceError(
                resp.status_code, truncate_detail(resp.text, self.cfg.error_detail_max_chars, secrets)
            )
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamProtocolError("Completion service returned a non-JSON body.") from e

    async def complete(self, system_prompt: str, user_prompt: str, *, temperature: float | None = None) -> str:
        request = self.build_request(system_prompt, user_prompt, temperature=temperature)
        start = time.monotonic()
        try:
            with provider_latency_seconds.time():
                result = await self.invoker.invoke(request)
            data = self._unwrap(result)
        except Exception as e:
            provider_requests_total.labels(status="error").inc()
            log.warning("provider_error", provider=self.name, error_type=type(e).__name__, error=str(e))
            raise

        provider_requests_total.labels(status="success").inc()
        content = first_choice_content(data)
        log.debug(
            "provider_complete_ok",
            model=request.model,
            attempts=len(result.attempts),
            prompt_chars=len(system_prompt) + len(user_prompt),
            latency_seconds=round(time.monotonic() - start, 3),
        )
        return content or FALLBACK_ANSWER
