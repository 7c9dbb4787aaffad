from __future__ import annotations

import os

from pydantic import BaseModel, Field

DEFAULT_ALLOW_DOMAINS = [
    "agenziaentrate.gov.it",
    "arera.it",
    "mise.gov.it",
    "istat.it",
    "aci.it",
    "ministerointerno.gov.it",
    "europa.eu",
    "ilsole24ore.com",
    "repubblica.it",
    "corriere.it",
]


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class GatewayConfig(BaseModel):
    # Completion service
    openai_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_base_url: str = Field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    )
    openai_model: str = Field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4.1-mini"))
    openai_temperature: float = Field(default_factory=lambda: float(os.getenv("OPENAI_TEMPERATURE", "0.3")))

    # Retry policy (milliseconds)
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "60"))
    )
    upstream_max_retries: int = Field(default_factory=lambda: int(os.getenv("UPSTREAM_MAX_RETRIES", "3")))
    rate_limit_backoff_base_ms: int = Field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_BACKOFF_BASE_MS", "1000"))
    )
    rate_limit_backoff_max_ms: int = Field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_BACKOFF_MAX_MS", "15000"))
    )
    server_error_backoff_step_ms: int = Field(
        default_factory=lambda: int(os.getenv("SERVER_ERROR_BACKOFF_STEP_MS", "800"))
    )
    server_error_backoff_max_ms: int = Field(
        default_factory=lambda: int(os.getenv("SERVER_ERROR_BACKOFF_MAX_MS", "6000"))
    )
    error_detail_max_chars: int = Field(default_factory=lambda: int(os.getenv("ERROR_DETAIL_MAX_CHARS", "400")))

    # Web search / extraction
    brave_search_api_key: str | None = Field(default_factory=lambda: os.getenv("BRAVE_SEARCH_API_KEY"))
    brave_search_url: str = Field(
        default_factory=lambda: os.getenv(
            "BRAVE_SEARCH_URL", "https://api.search.brave.com/res/v1/web/search"
        )
    )
    search_result_count: int = Field(default_factory=lambda: int(os.getenv("SEARCH_RESULT_COUNT", "5")))
    allow_domains: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("ALLOW_DOMAINS")) or list(DEFAULT_ALLOW_DOMAINS)
    )
    fetch_user_agent: str = Field(
        default_factory=lambda: os.getenv("FETCH_USER_AGENT", "Mozilla/5.0 (BudgetAI/1.0)")
    )
    fetch_timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("FETCH_TIMEOUT_SECONDS", "15")))
    extract_max_chars: int = Field(default_factory=lambda: int(os.getenv("EXTRACT_MAX_CHARS", "12000")))
    min_source_chars: int = Field(default_factory=lambda: int(os.getenv("MIN_SOURCE_CHARS", "200")))
    snippet_max_chars: int = Field(default_factory=lambda: int(os.getenv("SNIPPET_MAX_CHARS", "2000")))
    memo_ttl_days: int = Field(default_factory=lambda: int(os.getenv("MEMO_TTL_DAYS", "30")))

    # Chat context limits
    context_html_max_chars: int = Field(
        default_factory=lambda: int(os.getenv("CONTEXT_HTML_MAX_CHARS", "40000"))
    )
    budget_json_max_chars: int = Field(default_factory=lambda: int(os.getenv("BUDGET_JSON_MAX_CHARS", "20000")))
    user_state_key: str = Field(default_factory=lambda: os.getenv("USER_STATE_KEY", "budget"))
    require_auth_for_chat: bool = Field(default_factory=lambda: _env_flag("REQUIRE_AUTH_FOR_CHAT"))

    # Firebase (identity + document store)
    firebase_service_account: str | None = Field(
        default_factory=lambda: os.getenv("FIREBASE_SERVICE_ACCOUNT")
    )
    firebase_credentials_path: str | None = Field(
        default_factory=lambda: os.getenv("FIREBASE_CREDENTIALS_PATH")
    )
    fernet_key: str | None = Field(default_factory=lambda: os.getenv("CREDENTIALS_FERNET_KEY"))

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server hardening
    enable_api_docs: bool = Field(default_factory=lambda: _env_flag("ENABLE_API_DOCS"))
    allowed_hosts: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ALLOWED_HOSTS")))
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"))
    )
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_COMPLETIONS_TIMEOUT_SECONDS", "90"))
    )

    def secrets(self) -> list[str]:
        return [
            s
            for s in (self.openai_api_key, self.brave_search_api_key, self.fernet_key)
            if s
        ]

    def firebase_configured(self) -> bool:
        return bool(self.firebase_service_account or self.firebase_credentials_path)
