from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class FailureKind(str, Enum):
    RATE_LIMIT_EXHAUSTED = "rate_limit_exhausted"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    messages: list[dict[str, str]]
    temperature: float | None = None
    extra: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model, "messages": self.messages}
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.extra:
            payload.update(self.extra)
        return payload


@dataclass(frozen=True)
class CompletionAttempt:
    index: int
    status_code: int
    outcome: AttemptOutcome
    wait_ms: int = 0


@dataclass(frozen=True)
class CompletionFailure:
    kind: FailureKind
    status_code: int
    detail: str
    retry_after_seconds: int | None = None


@dataclass(frozen=True)
class CompletionResult:
    """
    Outcome of one invocation.

    Exactly one of `response` / `failure` is set. `response` is the raw upstream
    response: a success, or the last 5xx once server-error retries run out.
    """

    response: httpx.Response | None = None
    failure: CompletionFailure | None = None
    attempts: tuple[CompletionAttempt, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.response is not None and self.response.is_success

    @property
    def status_code(self) -> int:
        if self.response is not None:
            return self.response.status_code
        assert self.failure is not None
        return self.failure.status_code
