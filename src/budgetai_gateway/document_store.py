from __future__ import annotations

import asyncio
from typing import Any, Protocol

USERS_COLLECTION = "users"
STATE_COLLECTION = "state"
MEMOS_COLLECTION = "memos"


class DocumentStore(Protocol):
    async def get_state(self, uid: str, key: str) -> dict[str, Any] | None: ...

    async def add_memo(self, uid: str, memo: dict[str, Any]) -> str: ...


class FirestoreDocumentStore:
    """
    Firestore-backed store.

    Layout:
      users/{uid}/state/{key}   per-user records read as chat context
      users/{uid}/memos/{id}    saved web memos

    The Admin SDK client blocks, so calls run in a worker thread.
    """

    def __init__(self, db: Any):
        self._db = db

    @classmethod
    def from_app(cls, app: Any = None) -> "FirestoreDocumentStore":
        from firebase_admin import firestore

        return cls(firestore.client(app))

    def _user(self, uid: str) -> Any:
        return self._db.collection(USERS_COLLECTION).document(uid)

    async def get_state(self, uid: str, key: str) -> dict[str, Any] | None:
        ref = self._user(uid).collection(STATE_COLLECTION).document(key)
        snapshot = await asyncio.to_thread(ref.get)
        if not snapshot.exists:
            return None
        return snapshot.to_dict()

    async def add_memo(self, uid: str, memo: dict[str, Any]) -> str:
        ref = self._user(uid).collection(MEMOS_COLLECTION).document()
        await asyncio.to_thread(ref.set, memo)
        return ref.id
