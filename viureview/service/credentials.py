from __future__ import annotations

import asyncio

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from viureview.logging import get_logger

PASSWORD_ALGO = "argon2id"

logger = get_logger(__name__)


class CredentialVerifier:
    """Salted argon2id hashing for passwords, session secrets and backup codes.

    Comparison always goes through ``PasswordHasher.verify`` so the check is
    constant-time with respect to the stored digest.
    """

    algo = PASSWORD_ALGO

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, secret: str) -> str:
        return self._hasher.hash(secret)

    def verify(self, secret: str, hashed: str | None) -> bool:
        if not hashed:
            return False
        try:
            return self._hasher.verify(hashed, secret)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("credential_hash_invalid")
            return False

    # Hashing is CPU bound; keep it off the event loop.
    async def hash_async(self, secret: str) -> str:
        return await asyncio.to_thread(self.hash, secret)

    async def verify_async(self, secret: str, hashed: str | None) -> bool:
        return await asyncio.to_thread(self.verify, secret, hashed)


def fast_verifier() -> CredentialVerifier:
    """Low-cost argon2 parameters for tests and the in-memory dev store."""
    return CredentialVerifier(
        PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
    )
