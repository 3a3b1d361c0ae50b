from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple, Union

from viureview.logging import get_logger
from viureview.service.credentials import CredentialVerifier
from viureview.service.errors import (
    InvalidToken,
    MalformedToken,
    NotFoundError,
    SessionExpired,
    SessionInactive,
    SessionNotFound,
)
from viureview.storage.models import Session, User, utcnow

if TYPE_CHECKING:
    from viureview.service.auth import AuthStore

TOKEN_SEPARATOR = ":"
# 32 bytes of entropy before base64url encoding
SECRET_BYTES = 32

logger = get_logger(__name__)


@dataclass
class IssuedSession:
    session_id: str
    raw_secret: str
    expires_at: datetime

    @property
    def token(self) -> str:
        return f"{self.session_id}{TOKEN_SEPARATOR}{self.raw_secret}"


def split_token(composite: str) -> Tuple[str, str]:
    """Split ``sessionId:rawSecret``; anything other than two non-empty parts is malformed."""
    parts = (composite or "").split(TOKEN_SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedToken("bearer token is not in session:secret form")
    return parts[0], parts[1]


def parse_active_filter(active: Union[bool, str, None]) -> Optional[bool]:
    if active is None or isinstance(active, bool):
        return active
    return str(active).strip().lower() == "true"


class SessionStoreAdapter:
    """Issues and resolves composite session credentials against the store.

    Only an argon2 digest of the random secret is persisted, so a read of the
    session table alone never yields a usable bearer token.
    """

    def __init__(
        self,
        store: "AuthStore",
        verifier: CredentialVerifier,
        *,
        default_ttl_seconds: int = 60 * 60 * 24 * 7,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.default_ttl_seconds = default_ttl_seconds

    async def issue(
        self,
        owner_id: str,
        ttl_seconds: Optional[int] = None,
        *,
        user_agent: Optional[str] = None,
        ip_addr: Optional[str] = None,
    ) -> IssuedSession:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        raw_secret = secrets.token_urlsafe(SECRET_BYTES)
        token_hash = await self.verifier.hash_async(raw_secret)
        sess = self.store.create_session(
            owner_id,
            token_hash,
            ttl,
            user_agent=user_agent,
            ip_addr=ip_addr,
        )
        logger.info("session_issued", session_id=sess.id, user_id=owner_id)
        return IssuedSession(
            session_id=sess.id, raw_secret=raw_secret, expires_at=sess.expires_at
        )

    async def resolve_session(self, composite: str) -> Tuple[User, Session]:
        session_id, raw_secret = split_token(composite)
        sess = self.store.get_session(session_id)
        if not sess:
            raise SessionNotFound("session not found")
        if not sess.is_active:
            raise SessionInactive("session revoked")
        if sess.is_expired(utcnow()):
            raise SessionExpired("session expired")
        if not await self.verifier.verify_async(raw_secret, sess.token_hash):
            raise InvalidToken("session secret mismatch")
        owner = self.store.get_user(sess.user_id)
        if not owner:
            raise SessionNotFound("session owner missing")
        return owner, sess

    async def resolve(self, composite: str) -> User:
        owner, _ = await self.resolve_session(composite)
        return owner

    def revoke(self, session_id: str) -> None:
        if not self.store.deactivate_session(session_id):
            raise SessionNotFound("session not found")
        logger.info("session_revoked", session_id=session_id)

    def list_for_owner(
        self, owner_id: str, active: Union[bool, str, None] = None
    ) -> List[Session]:
        return self.store.list_sessions(owner_id, active=parse_active_filter(active))

    def revoke_owned(self, owner_id: str, session_id: str) -> Session:
        """Revoke one of the caller's own sessions; other sessions look absent."""
        sess = self.store.get_session(session_id)
        if not sess or sess.user_id != owner_id:
            raise NotFoundError("session not found", detail={"session_id": session_id})
        self.revoke(session_id)
        sess.is_active = False
        return sess
