"""Password hashing with bcrypt."""

from pwdlib import PasswordHash
from pwdlib.hashers.bcrypt import BcryptHasher

from src.config.settings import settings


class PasswordHasher:
    """Slow salted one-way hashing for stored credentials.

    The salt is generated per hash and embedded in the returned string, so
    only the hash has to be stored.

    Args:
        rounds: bcrypt cost factor. Each increment doubles hashing time.

    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self._hash = PasswordHash((BcryptHasher(rounds=rounds),))

    def hash(self, password: str) -> str:
        """Hash a plaintext password."""
        return self._hash.hash(password)

    def verify(self, password: str, hashed_password: str) -> bool:
        """Check a plaintext password against a stored hash.

        Returns False on mismatch.

        Raises:
            pwdlib.exceptions.UnknownHashError: If the stored hash is not a bcrypt hash.

        """
        return self._hash.verify(password, hashed_password)


password_hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
