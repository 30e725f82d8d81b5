"""
Security helpers for dataroll.
"""

from .encryption import SecretCipher, FernetSecretCipher, PlaintextSecretCipher, create_cipher

__all__ = [
    "SecretCipher",
    "FernetSecretCipher",
    "PlaintextSecretCipher",
    "create_cipher",
]
