from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx
import structlog

from .errors import ConfigurationError, SearchError

log = structlog.get_logger()


@dataclass(frozen=True)
class SearchHit:
    title: str
    url: str
    description: str = ""


def domain_of(url: str) -> str:
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return host.removeprefix("www.")


def is_allowed(url: str, allow_domains: Iterable[str]) -> bool:
    domain = domain_of(url)
    if not domain:
        return False
    return any(domain == allowed or domain.endswith("." + allowed) for allowed in allow_domains)


def select_trusted(hits: Sequence[SearchHit], allow_domains: Iterable[str], limit: int = 5) -> list[SearchHit]:
    """Allow-listed hits first; if none qualify, the first `limit` hits as they came."""
    allowed = list(allow_domains)
    trusted = [h for h in hits if is_allowed(h.url, allowed)][:limit]
    if trusted:
        return trusted
    log.info("search_allowlist_fallback", hits=len(hits))
    return list(hits[:limit])


class BraveSearchClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        client: httpx.AsyncClient | None = None,
        url: str = "https://api.search.brave.com/res/v1/web/search",
        timeout_seconds: float = 15,
    ):
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._url = url

    async def close(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, count: int = 5) -> list[SearchHit]:
        if not self.api_key:
            raise ConfigurationError("BRAVE_SEARCH_API_KEY is not configured.")
        try:
            resp = await self._client.get(
                self._url,
                params={"q": query, "count": str(count)},
                headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
            )
        except httpx.HTTPError as e:
            raise SearchError("Search API is unreachable.") from e

        if not resp.is_success:
            raise SearchError(f"Search API error: {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise SearchError("Search API returned a non-JSON body.") from e

        results = ((data or {}).get("web") or {}).get("results") or []
        hits = [
            SearchHit(title=r.get("title") or "", url=r["url"], description=r.get("description") or "")
            for r in results
            if isinstance(r, dict) and isinstance(r.get("url"), str)
        ]
        log.debug("search_ok", hits=len(hits))
        return hits
