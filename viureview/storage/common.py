"""Helpers shared by the memory and Postgres stores.

Both backends encrypt TOTP secrets with the same Fernet scheme so a
snapshot written by one can be reasoned about with the same key material.
"""

from __future__ import annotations

import base64
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from viureview.logging import get_logger

logger = get_logger(__name__)


def derive_cipher_key(key_material: str) -> bytes:
    return base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())


def build_secret_cipher(key_material: str) -> Fernet:
    """Build the Fernet cipher used for TOTP secrets at rest.

    Raises:
        RuntimeError: If no key material is available or it cannot seed a cipher
    """
    if not key_material:
        raise RuntimeError("TOTP secret encryption key is not configured")
    try:
        return Fernet(derive_cipher_key(key_material))
    except (TypeError, ValueError) as exc:
        raise RuntimeError("Unable to initialize TOTP secret cipher") from exc


def encrypt_secret(cipher: Fernet, secret: str) -> str:
    return cipher.encrypt(secret.encode()).decode()


def decrypt_secret(cipher: Fernet, token: Optional[str]) -> Optional[str]:
    """Decrypt a stored TOTP secret; ``None`` when it cannot be recovered."""
    if not token:
        return None
    try:
        return cipher.decrypt(token.encode()).decode()
    except InvalidToken:
        logger.warning("totp_secret_decrypt_failed")
        return None


def parse_json_meta(raw_meta: Any) -> Optional[Dict]:
    """Parse a JSON column that may arrive as text or an already-decoded dict."""
    if isinstance(raw_meta, str):
        try:
            return json.loads(raw_meta)
        except json.JSONDecodeError:
            return None
    if isinstance(raw_meta, dict):
        return raw_meta
    return None


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps from older rows as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt

