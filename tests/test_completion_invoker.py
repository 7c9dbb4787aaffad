import json

import httpx
import pytest

from budgetai_gateway.completion_invoker import ResilientCompletionInvoker, parse_retry_after
from budgetai_gateway.contracts import AttemptOutcome, CompletionRequest, FailureKind
from budgetai_gateway.errors import ConfigurationError, UpstreamNetworkError

from conftest import chat_completion

REQUEST = CompletionRequest(
    model="gpt-4.1-mini",
    messages=[{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}],
    temperature=0.3,
)


def _invoker(handler, sleeper, *, api_key="sk-test-key-123456", **kwargs) -> ResilientCompletionInvoker:
    return ResilientCompletionInvoker(
        api_key=api_key,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url="https://llm.test/v1",
        sleeper=sleeper,
        **kwargs,
    )


def _scripted(*responses):
    """Handler replaying `responses` in order, repeating the last one."""
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        idx = min(calls["n"], len(responses) - 1)
        calls["n"] += 1
        return responses[idx]()

    return handler, calls


def _waits_ms(result):
    return [a.wait_ms for a in result.attempts if a.outcome is AttemptOutcome.RETRYABLE]


@pytest.mark.asyncio
async def test_success_posts_request_and_returns_payload_unchanged(sleeper):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["ctype"] = request.headers.get("content-type")
        seen["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json=chat_completion("hello"))

    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert result.ok
    assert result.failure is None
    assert result.response.json() == chat_completion("hello")
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test-key-123456"
    assert seen["ctype"] == "application/json"
    assert seen["body"] == {
        "model": "gpt-4.1-mini",
        "messages": [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}],
        "temperature": 0.3,
    }
    assert len(result.attempts) == 1
    assert sleeper.waits == []


@pytest.mark.asyncio
@pytest.mark.parametrize("max_retries", [0, 1, 2, 3, 5])
async def test_never_exceeds_max_retries_plus_one_attempts(sleeper, max_retries):
    handler, calls = _scripted(lambda: httpx.Response(503, text="overloaded"))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=max_retries)
    finally:
        await inv.close()

    assert calls["n"] == max_retries + 1
    assert len(result.attempts) == max_retries + 1
    assert len(sleeper.waits) == max_retries


@pytest.mark.asyncio
async def test_success_after_retries_stops_and_returns_that_response(sleeper):
    handler, calls = _scripted(
        lambda: httpx.Response(503, text="a"),
        lambda: httpx.Response(429),
        lambda: httpx.Response(200, json=chat_completion("third time")),
        lambda: httpx.Response(500, text="never reached"),
    )
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=3)
    finally:
        await inv.close()

    assert calls["n"] == 3
    assert result.ok
    assert result.response.json()["choices"][0]["message"]["content"] == "third time"
    assert [a.outcome for a in result.attempts] == [
        AttemptOutcome.RETRYABLE,
        AttemptOutcome.RETRYABLE,
        AttemptOutcome.SUCCESS,
    ]


@pytest.mark.asyncio
async def test_rate_limit_honors_retry_after_hint(sleeper):
    handler, _ = _scripted(
        lambda: httpx.Response(429, headers={"retry-after": "7"}),
        lambda: httpx.Response(200, json=chat_completion()),
    )
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert result.ok
    assert _waits_ms(result) == [7000]
    assert sleeper.waits == [7.0]


@pytest.mark.asyncio
async def test_rate_limit_without_hint_backs_off_exponentially(sleeper):
    handler, calls = _scripted(lambda: httpx.Response(429, json={"error": {"message": "slow down"}}))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=4)
    finally:
        await inv.close()

    assert calls["n"] == 5
    assert _waits_ms(result) == [1000, 2000, 4000, 8000]
    assert sleeper.waits == [1.0, 2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_rate_limit_backoff_is_capped(sleeper):
    handler, _ = _scripted(lambda: httpx.Response(429))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=6)
    finally:
        await inv.close()

    assert _waits_ms(result) == [1000, 2000, 4000, 8000, 15000, 15000]


@pytest.mark.asyncio
async def test_malformed_retry_after_falls_back_to_backoff(sleeper):
    handler, _ = _scripted(
        lambda: httpx.Response(429, headers={"retry-after": "soon"}),
        lambda: httpx.Response(429, headers={"retry-after": "1.5"}),
        lambda: httpx.Response(200, json=chat_completion()),
    )
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert result.ok
    assert _waits_ms(result) == [1000, 2000]


@pytest.mark.asyncio
async def test_non_ascii_digit_retry_after_falls_back_to_backoff(sleeper):
    # header byte 0xB2 decodes to "²" under latin-1
    handler, calls = _scripted(
        lambda: httpx.Response(429, headers=[(b"retry-after", b"\xb2")]),
        lambda: httpx.Response(200, json=chat_completion()),
    )
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert calls["n"] == 2
    assert result.ok
    assert _waits_ms(result) == [1000]


@pytest.mark.asyncio
async def test_rate_limit_exhausted_synthesizes_distinct_failure(sleeper):
    handler, calls = _scripted(lambda: httpx.Response(429, headers={"retry-after": "12"}, text="too many"))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=2)
    finally:
        await inv.close()

    assert calls["n"] == 3
    assert result.response is None
    assert result.failure.kind is FailureKind.RATE_LIMIT_EXHAUSTED
    assert result.failure.status_code == 429
    assert result.failure.retry_after_seconds == 12
    assert result.status_code == 429
    assert not result.ok
    assert result.attempts[-1].outcome is AttemptOutcome.TERMINAL


@pytest.mark.asyncio
async def test_rate_limit_with_zero_retries_makes_one_attempt(sleeper):
    handler, calls = _scripted(lambda: httpx.Response(429))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=0)
    finally:
        await inv.close()

    assert calls["n"] == 1
    assert sleeper.waits == []
    assert result.failure.kind is FailureKind.RATE_LIMIT_EXHAUSTED


@pytest.mark.asyncio
async def test_server_errors_exhausted_pass_through_last_response(sleeper):
    bodies = iter(["first", "second", "third", "fourth"])
    handler, calls = _scripted(lambda: httpx.Response(502, text=next(bodies)))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=3)
    finally:
        await inv.close()

    assert calls["n"] == 4
    assert result.failure is None
    assert result.response.status_code == 502
    assert result.response.text == "fourth"
    assert not result.ok
    assert _waits_ms(result) == [800, 1600, 2400]


@pytest.mark.asyncio
async def test_server_error_backoff_is_capped(sleeper):
    handler, _ = _scripted(lambda: httpx.Response(500))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST, max_retries=8)
    finally:
        await inv.close()

    assert _waits_ms(result) == [800, 1600, 2400, 3200, 4000, 4800, 5600, 6000]


@pytest.mark.asyncio
async def test_client_error_is_terminal_without_retry(sleeper):
    handler, calls = _scripted(lambda: httpx.Response(400, json={"error": {"message": "bad model"}}))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert calls["n"] == 1
    assert sleeper.waits == []
    assert result.failure.kind is FailureKind.TERMINAL
    assert result.failure.status_code == 400
    assert "bad model" in result.failure.detail


@pytest.mark.asyncio
async def test_terminal_detail_is_truncated_to_400_chars(sleeper):
    handler, _ = _scripted(lambda: httpx.Response(404, text="x" * 5000))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert len(result.failure.detail) == 400


@pytest.mark.asyncio
async def test_terminal_detail_never_echoes_api_key(sleeper):
    handler, _ = _scripted(lambda: httpx.Response(401, text="Incorrect API key provided: sk-test-key-123456"))
    inv = _invoker(handler, sleeper)
    try:
        result = await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert "sk-test-key-123456" not in result.failure.detail
    assert "[REDACTED]" in result.failure.detail


@pytest.mark.asyncio
async def test_network_failure_is_surfaced_without_retry(sleeper):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("dns failure", request=request)

    inv = _invoker(handler, sleeper)
    try:
        with pytest.raises(UpstreamNetworkError):
            await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert calls["n"] == 1
    assert sleeper.waits == []


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_any_call(sleeper):
    handler, calls = _scripted(lambda: httpx.Response(200, json=chat_completion()))
    inv = _invoker(handler, sleeper, api_key=None)
    try:
        with pytest.raises(ConfigurationError):
            await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert calls["n"] == 0


@pytest.mark.asyncio
async def test_default_max_retries_comes_from_constructor(sleeper):
    handler, calls = _scripted(lambda: httpx.Response(503))
    inv = _invoker(handler, sleeper, max_retries=1)
    try:
        await inv.invoke(REQUEST)
    finally:
        await inv.close()

    assert calls["n"] == 2


@pytest.mark.parametrize(
    ("value", "expected"),
    [("7", 7), (" 3 ", 3), ("0", 0), (None, None), ("", None), ("-1", None), ("2.5", None), ("Wed, 21 Oct 2015", None), ("\u00b2", None), ("\u0663", None)],
)
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected
