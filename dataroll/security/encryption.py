"""
Connection secret decryption.

Connection passwords reach the engine already encrypted by the persistence
layer. The engine only ever decrypts them, right before a connection is
opened, through a ``SecretCipher``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import EncryptionError, ConfigurationError


class SecretCipher(ABC):
    """Abstract base class for secret ciphers."""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        """Encrypt a secret."""
        pass

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a secret."""
        pass


class FernetSecretCipher(SecretCipher):
    """Fernet (AES-128-CBC + HMAC) cipher for connection secrets."""

    def __init__(self, key: Union[str, bytes]):
        if not key:
            raise ConfigurationError("Encryption key is required for FernetSecretCipher")
        if isinstance(key, str):
            key = key.encode()
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid Fernet key: {e}")
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @staticmethod
    def generate_key() -> str:
        """Generate a new url-safe Fernet key."""
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            self.logger.error("Failed to decrypt connection secret")
            raise EncryptionError("Failed to decrypt connection secret")


class PlaintextSecretCipher(SecretCipher):
    """Pass-through cipher for local SQLite setups and tests."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


def create_cipher(key: Optional[str]) -> SecretCipher:
    """Build the default cipher for the given key (plaintext when no key is set)."""
    if key:
        return FernetSecretCipher(key)
    return PlaintextSecretCipher()
