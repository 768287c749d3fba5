from __future__ import annotations

import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from consultdesk.core.config import Settings, get_settings

# Throwaway hashes per cost setting, verified against when no account matches.
_decoy_hashes: dict[tuple[int, int], str] = {}


class PasswordService:
    """Argon2id hashing with a per-record random salt embedded in the encoded hash."""

    def __init__(self, *, time_cost: int = 2, memory_cost: int = 65536) -> None:
        self._hasher = PasswordHasher(time_cost=time_cost, memory_cost=memory_cost)

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordService:
        return cls(time_cost=settings.password_hash_time_cost, memory_cost=settings.password_hash_memory_cost)

    def hash(self, raw_password: str) -> str:
        return self._hasher.hash(raw_password)

    def verify(self, password_hash: str, raw_password: str) -> bool:
        try:
            return self._hasher.verify(password_hash, raw_password)
        except (VerificationError, InvalidHashError):
            return False

    def verify_decoy(self, raw_password: str) -> bool:
        """Spend the same work as a real verify without an account to check against."""
        key = (self._hasher.time_cost, self._hasher.memory_cost)
        decoy = _decoy_hashes.get(key)
        if decoy is None:
            decoy = _decoy_hashes.setdefault(key, self._hasher.hash(secrets.token_urlsafe(16)))
        self.verify(decoy, raw_password)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        return self._hasher.check_needs_rehash(password_hash)


def get_password_service() -> PasswordService:
    return PasswordService.from_settings(get_settings())
