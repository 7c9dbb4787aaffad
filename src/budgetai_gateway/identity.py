from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

log = structlog.get_logger()

_BEARER_RE = re.compile(r"^Bearer (.+)$")


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    match = _BEARER_RE.match(authorization)
    if not match:
        return None
    return match.group(1).strip() or None


@dataclass(frozen=True)
class VerifiedUser:
    uid: str
    email: str | None = None


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> VerifiedUser | None: ...


class FirebaseIdentityVerifier:
    """Checks Firebase ID tokens with the Admin SDK; a bad token yields None, not an error."""

    def __init__(self, app: Any = None):
        self._app = app

    async def verify(self, token: str) -> VerifiedUser | None:
        from firebase_admin import auth, exceptions

        try:
            decoded = await asyncio.to_thread(auth.verify_id_token, token, self._app)
        except (ValueError, exceptions.FirebaseError) as e:
            log.info("id_token_rejected", error_type=type(e).__name__)
            return None
        uid = decoded.get("uid")
        if not uid:
            return None
        return VerifiedUser(uid=uid, email=decoded.get("email"))
