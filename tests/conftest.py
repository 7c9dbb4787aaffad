from __future__ import annotations

from typing import Any

import httpx
import pytest

from budgetai_gateway.identity import VerifiedUser
from budgetai_gateway.web_search import SearchHit


class RecordingSleeper:
    def __init__(self) -> None:
        self.waits: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


class FakeIdentity:
    def __init__(self, tokens: dict[str, str] | None = None):
        self.tokens = tokens or {"good-token": "user-1"}

    async def verify(self, token: str) -> VerifiedUser | None:
        uid = self.tokens.get(token)
        return VerifiedUser(uid=uid) if uid else None


class InMemoryStore:
    def __init__(self, state: dict[tuple[str, str], dict[str, Any]] | None = None):
        self.state = state or {}
        self.memos: dict[str, list[dict[str, Any]]] = {}

    async def get_state(self, uid: str, key: str) -> dict[str, Any] | None:
        return self.state.get((uid, key))

    async def add_memo(self, uid: str, memo: dict[str, Any]) -> str:
        bucket = self.memos.setdefault(uid, [])
        bucket.append(memo)
        return f"memo-{len(bucket)}"


class FakeSearch:
    def __init__(self, hits: list[SearchHit]):
        self.hits = hits
        self.queries: list[tuple[str, int]] = []

    async def search(self, query: str, count: int = 5) -> list[SearchHit]:
        self.queries.append((query, count))
        return list(self.hits)

    async def close(self) -> None:
        return None


class FakeFetcher:
    def __init__(self, pages: dict[str, str]):
        self.pages = pages
        self.fetched: list[str] = []

    async def fetch_text(self, url: str) -> str:
        self.fetched.append(url)
        if url not in self.pages:
            raise httpx.ConnectError("unreachable", request=httpx.Request("GET", url))
        return self.pages[url]

    async def close(self) -> None:
        return None


class FakeProvider:
    def __init__(self, answer: str = "ok", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str, *, temperature: float | None = None) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.answer

    async def close(self) -> None:
        return None


def chat_completion(content: str = "ok") -> dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()
