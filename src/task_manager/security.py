from __future__ import annotations

from abc import ABC, abstractmethod

import bcrypt

# bcrypt only looks at the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


# PUBLIC_INTERFACE
class PasswordHasher(ABC):
    """One-way, salted password hashing capability used by the UserRegistry."""

    @abstractmethod
    def hash(self, plaintext: str) -> str:
        """Return a salted hash of `plaintext`."""

    @abstractmethod
    def verify(self, plaintext: str, hashed: str) -> bool:
        """Return True if `plaintext` matches `hashed`."""


class BcryptPasswordHasher(PasswordHasher):
    """PasswordHasher backed by bcrypt with a configurable cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        password_bytes = plaintext.encode("utf-8")[:_BCRYPT_MAX_BYTES]
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password_bytes, salt).decode("utf-8")

    def verify(self, plaintext: str, hashed: str) -> bool:
        password_bytes = plaintext.encode("utf-8")[:_BCRYPT_MAX_BYTES]
        return bcrypt.checkpw(password_bytes, hashed.encode("utf-8"))
