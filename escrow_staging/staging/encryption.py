"""
Encryption of staged artifacts at rest.

Deposits and reports are encrypted with Fernet (AES-128-CBC + HMAC-SHA256)
before they reach artifact storage. Operators decrypt them with the admin
CLI's ``decrypt`` command.
"""

from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken

from escrow_staging.core.errors import ConfigurationError


class Encryptor(ABC):
    """Symmetric encryption primitive used for staged output."""

    @abstractmethod
    def encrypt(self, plaintext: bytes) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: bytes) -> bytes:
        ...


class FernetEncryptor(Encryptor):
    """
    Encryptor backed by ``cryptography.fernet``.

    Args:
        key: URL-safe base64 encoded 32-byte key
    """

    def __init__(self, key: str | bytes | None):
        if not key:
            raise ConfigurationError(
                "Encryption key must be provided. Set ESCROW_ENCRYPTION_KEY or encryption_key."
            )
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid encryption key: {e}") from e

    def encrypt(self, plaintext: bytes) -> bytes:
        return self._fernet.encrypt(plaintext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        """
        Raises:
            cryptography.fernet.InvalidToken: If the data was not produced with this key
        """
        return self._fernet.decrypt(ciphertext)


def generate_key() -> str:
    """Generate a fresh key for ``FernetEncryptor``."""
    return Fernet.generate_key().decode()


__all__ = ["Encryptor", "FernetEncryptor", "InvalidToken", "generate_key"]
