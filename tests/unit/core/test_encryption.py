"""
Unit tests for connection secret ciphers.
"""

import pytest

from dataroll.exceptions import ConfigurationError, EncryptionError
from dataroll.security.encryption import FernetSecretCipher, PlaintextSecretCipher, create_cipher


class TestCiphers:
    """Test cases for SecretCipher implementations."""

    def test_fernet_round_trip(self):
        """Test encrypt/decrypt with one key."""
        cipher = FernetSecretCipher(FernetSecretCipher.generate_key())

        token = cipher.encrypt("s3cret")

        assert token != "s3cret"
        assert cipher.decrypt(token) == "s3cret"

    def test_wrong_key(self):
        """Test that another key cannot decrypt."""
        token = FernetSecretCipher(FernetSecretCipher.generate_key()).encrypt("s3cret")

        with pytest.raises(EncryptionError):
            FernetSecretCipher(FernetSecretCipher.generate_key()).decrypt(token)

    @pytest.mark.parametrize("key", ["", "not-a-key"])
    def test_bad_key(self, key):
        """Test key validation."""
        with pytest.raises(ConfigurationError):
            FernetSecretCipher(key)

    def test_create_cipher(self):
        """Test cipher selection."""
        assert isinstance(create_cipher(None), PlaintextSecretCipher)
        assert isinstance(create_cipher(FernetSecretCipher.generate_key()), FernetSecretCipher)
