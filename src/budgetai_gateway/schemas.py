from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AiChatRequest(BaseModel):
    # Loosely typed so missing/odd fields map to our own 400s instead of 422s.
    question: Any = None
    context_html: Any = None
    budget: Any = None


class AiChatResponse(BaseModel):
    answer: str


class WebMemoRequest(BaseModel):
    query: Any = None


class MemoSource(BaseModel):
    title: str
    url: str
    domain: str


class MemoSummary(BaseModel):
    answer: str
    bullets: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("bullets", "tags", mode="before")
    @classmethod
    def _coerce_str_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        if not isinstance(v, list):
            return []
        return [str(item) for item in v if item not in (None, "")]


class WebMemoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    answer: str
    sources: list[MemoSource] = Field(default_factory=list)
    query: str | None = None
    bullets: list[str] | None = None
    tags: list[str] | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    memo_id: str | None = Field(default=None, alias="memoId")


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
    request_id: str | None = None


def make_error_response(error: str, *, detail: str | None = None, request_id: str | None = None) -> dict[str, Any]:
    return ErrorResponse(error=error, detail=detail, request_id=request_id).model_dump()
