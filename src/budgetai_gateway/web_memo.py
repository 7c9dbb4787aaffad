from __future__ import annotations

import json
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from .config import GatewayConfig
from .document_store import DocumentStore
from .extraction import ContentFetcher
from .metrics import memos_saved_total
from .prompts import build_memo_prompts
from .provider import OpenAIChatProvider
from .schemas import MemoSource, MemoSummary, WebMemoResponse
from .web_search import BraveSearchClient, domain_of, select_trusted

log = structlog.get_logger()

NO_SOURCES_ANSWER = "Non sono riuscito a leggere fonti utili. Prova a riformulare o usare siti ufficiali."
SUMMARY_FALLBACK_CHARS = 700

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S)


def parse_summary(text: str) -> MemoSummary:
    """Read the model's JSON summary; free text becomes the answer with no bullets or tags."""
    raw = text.strip()
    fenced = _FENCE_RE.match(raw)
    if fenced:
        raw = fenced.group(1)
    try:
        data = json.loads(raw)
        if isinstance(data, dict) and isinstance(data.get("answer"), str):
            return MemoSummary.model_validate(data)
    except (ValueError, ValidationError):
        pass
    log.info("memo_summary_not_json", chars=len(text))
    return MemoSummary(answer=text.strip()[:SUMMARY_FALLBACK_CHARS])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebMemoService:
    def __init__(
        self,
        cfg: GatewayConfig,
        *,
        provider: OpenAIChatProvider,
        search: BraveSearchClient,
        fetcher: ContentFetcher,
        store: DocumentStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self.cfg = cfg
        self.provider = provider
        self.search = search
        self.fetcher = fetcher
        self.store = store
        self._now = clock or _utcnow

    async def gather_sources(self, query: str) -> tuple[list[MemoSource], list[str]]:
        limit = self.cfg.search_result_count
        hits = select_trusted(await self.search.search(query, limit), self.cfg.allow_domains, limit)

        sources: list[MemoSource] = []
        snippets: list[str] = []
        for hit in hits:
            try:
                text = await self.fetcher.fetch_text(hit.url)
            except httpx.HTTPError as e:
                log.info("memo_source_skipped", url=hit.url, error_type=type(e).__name__)
                continue
            if len(text) < self.cfg.min_source_chars:
                continue
            sources.append(MemoSource(title=hit.title, url=hit.url, domain=domain_of(hit.url)))
            snippets.append(text)
        return sources, snippets

    async def summarize(self, query: str, snippets: list[str], sources: list[MemoSource]) -> MemoSummary:
        system, user = build_memo_prompts(query, snippets, sources, snippet_max_chars=self.cfg.snippet_max_chars)
        return parse_summary(await self.provider.complete(system, user))

    async def create_memo(self, uid: str, query: str) -> WebMemoResponse:
        sources, snippets = await self.gather_sources(query)
        if not sources:
            return WebMemoResponse(answer=NO_SOURCES_ANSWER, sources=[])

        summary = await self.summarize(query, snippets, sources)
        created_at = self._now()
        memo: dict[str, Any] = {
            "query": query,
            "answer": summary.answer,
            "bullets": summary.bullets,
            "tags": summary.tags,
            "sources": [s.model_dump() for s in sources],
            "createdAt": created_at,
            "expiresAt": created_at + timedelta(days=self.cfg.memo_ttl_days),
        }
        memo_id = await self.store.add_memo(uid, memo)
        memos_saved_total.inc()
        log.info("memo_saved", memo_id=memo_id, sources=len(sources))
        return WebMemoResponse.model_validate({**memo, "memoId": memo_id})
