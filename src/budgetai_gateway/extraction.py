from __future__ import annotations

import re

import httpx
from bs4 import BeautifulSoup

_WHITESPACE_RE = re.compile(r"\s+")
_CONTENT_CLASS_RE = re.compile(r"content|post|article|entry", re.I)
_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "form"]


def extract_main_text(html: str, max_chars: int = 12000) -> str:
    """Readable body text of an HTML page, whitespace-collapsed and capped at `max_chars`."""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup.find_all(_BOILERPLATE_TAGS):
        element.decompose()

    main = (
        soup.find("article")
        or soup.find("main")
        or soup.find(attrs={"class": _CONTENT_CLASS_RE})
        or soup.body
        or soup
    )
    text = _WHITESPACE_RE.sub(" ", main.get_text(separator=" ", strip=True)).strip()
    return text[:max_chars]


class ContentFetcher:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        user_agent: str = "Mozilla/5.0 (BudgetAI/1.0)",
        timeout_seconds: float = 15,
        max_chars: int = 12000,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)
        self._headers = {"User-Agent": user_agent}
        self._max_chars = max_chars

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_text(self, url: str) -> str:
        """Raises httpx.HTTPError when the page cannot be downloaded."""
        resp = await self._client.get(url, headers=self._headers)
        resp.raise_for_status()
        return extract_main_text(resp.text, self._max_chars)
