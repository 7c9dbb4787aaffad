from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog

REDACTED = "[REDACTED]"

_SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-subscription-token",
        "id_token",
        "service_account",
        "private_key",
        "credentials",
    }
)
_SENSITIVE_FRAGMENTS = ("key", "token", "secret", "password")

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._~+/=-]{6,})")
_OPENAI_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_-]{8,}")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


def redact_text(value: str, secrets: Iterable[str] = ()) -> str:
    """Mask configured secrets, bearer tokens and API-key-looking strings in ``value``."""
    for secret in secrets:
        if secret:
            value = value.replace(secret, REDACTED)
    value = _BEARER_RE.sub(f"Bearer {REDACTED}", value)
    return _OPENAI_KEY_RE.sub(REDACTED, value)


def _is_sensitive_key(key: Any) -> bool:
    name = str(key).lower()
    return name in _SENSITIVE_KEYS or any(frag in name for frag in _SENSITIVE_FRAGMENTS)


def _scrub(obj: Any, secrets: list[str]) -> Any:
    if isinstance(obj, str):
        return redact_text(obj, secrets)
    if isinstance(obj, dict):
        return {k: REDACTED if _is_sensitive_key(k) else _scrub(v, secrets) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(_scrub(v, secrets) for v in obj)
    return obj


def redaction_processor(secrets: Iterable[str]) -> Processor:
    known = [s for s in secrets if isinstance(s, str) and s]

    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return cast(dict[str, Any], _scrub(dict(event_dict), known))

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        # always on: bearer tokens can show up in echoed upstream bodies
        redaction_processor(secrets or []),
    ]

    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )
