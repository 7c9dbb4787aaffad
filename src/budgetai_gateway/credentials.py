from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from .config import GatewayConfig
from .errors import ConfigurationError

FIREBASE_APP_NAME = "[DEFAULT]"


def encrypt_service_account(key_str: str, account: dict[str, Any]) -> bytes:
    return Fernet(key_str.encode("utf-8")).encrypt(json.dumps(account).encode("utf-8"))


def _parse_account(raw: str | bytes, source: str) -> dict[str, Any]:
    try:
        account = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{source} is not valid JSON.") from e
    if not isinstance(account, dict) or not account:
        raise ConfigurationError(f"{source} must be a non-empty JSON object.")
    return account


def load_service_account(cfg: GatewayConfig) -> dict[str, Any] | None:
    """
    Firebase service-account JSON, or None when Firebase is not configured.

    FIREBASE_SERVICE_ACCOUNT (inline JSON) wins over FIREBASE_CREDENTIALS_PATH,
    which must hold the JSON encrypted with CREDENTIALS_FERNET_KEY.
    """
    if cfg.firebase_service_account:
        return _parse_account(cfg.firebase_service_account, "FIREBASE_SERVICE_ACCOUNT")
    if not cfg.firebase_credentials_path:
        return None
    if not cfg.fernet_key:
        raise ConfigurationError("CREDENTIALS_FERNET_KEY is required to read FIREBASE_CREDENTIALS_PATH.")
    try:
        token = Path(cfg.firebase_credentials_path).read_bytes()
    except OSError as e:
        raise ConfigurationError("FIREBASE_CREDENTIALS_PATH cannot be read.") from e
    try:
        raw = Fernet(cfg.fernet_key.encode("utf-8")).decrypt(token)
    except (InvalidToken, ValueError) as e:
        raise ConfigurationError("Failed to decrypt Firebase credentials (wrong key or corrupted file).") from e
    return _parse_account(raw, "FIREBASE_CREDENTIALS_PATH")


def init_firebase(account: dict[str, Any]) -> Any:
    """Initialize the default Firebase app once per process and return it."""
    try:
        import firebase_admin
        from firebase_admin import credentials
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "firebase" extra: pip install -e ".[firebase]"') from e

    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        return firebase_admin.initialize_app(credentials.Certificate(account))
