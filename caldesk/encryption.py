"""Encryption of remote calendar tokens at rest."""

import os
import secrets
from typing import Optional, Union

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12


class EncryptionManager:
    """
    AES-256-GCM cipher for stored tokens.

    Ciphertexts may be bound to an owner id (GCM associated data), so a token
    row copied to another owner fails to decrypt.
    """

    def __init__(self, key: bytes):
        if len(key) < 32:
            raise ValueError("Encryption key must be at least 32 bytes")
        self._aesgcm = AESGCM(key[:32])

    @staticmethod
    def _aad(owner_id: Optional[str]) -> Optional[bytes]:
        return owner_id.encode("utf-8") if owner_id else None

    def encrypt(self, plaintext: Union[str, bytes], owner_id: Optional[str] = None) -> bytes:
        """
        Encrypt a token.

        Returns:
            nonce followed by the ciphertext
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")

        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, self._aad(owner_id))

    def decrypt(self, encrypted_data: bytes, owner_id: Optional[str] = None) -> str:
        """Decrypt data produced by encrypt() for the same owner."""
        if len(encrypted_data) <= NONCE_SIZE:
            raise ValueError("Invalid encrypted data: too short")

        nonce, ciphertext = encrypted_data[:NONCE_SIZE], encrypted_data[NONCE_SIZE:]
        return self._aesgcm.decrypt(nonce, ciphertext, self._aad(owner_id)).decode("utf-8")


def generate_encryption_key() -> bytes:
    """Generate a new 32-byte encryption key."""
    return secrets.token_bytes(32)


# Loaded lazily from the key file unless installed with init_encryption_manager()
_encryption_manager: EncryptionManager | None = None


def get_encryption_manager() -> EncryptionManager:
    global _encryption_manager
    if _encryption_manager is None:
        from caldesk.config import get_encryption_key
        _encryption_manager = EncryptionManager(get_encryption_key())
    return _encryption_manager


def init_encryption_manager(key: bytes) -> EncryptionManager:
    """Install the global encryption manager with a specific key."""
    global _encryption_manager
    _encryption_manager = EncryptionManager(key)
    return _encryption_manager


def encrypt_value(value: str, owner_id: Optional[str] = None) -> bytes:
    return get_encryption_manager().encrypt(value, owner_id)


def decrypt_value(encrypted: bytes, owner_id: Optional[str] = None) -> str:
    return get_encryption_manager().decrypt(encrypted, owner_id)
