"""Encryption utilities for credentials and connector secrets."""

import json
from typing import Any

from cryptography.fernet import Fernet

from app.core.config import settings


def _fernet(key: str | None) -> Fernet:
    if not key:
        raise ValueError("Encryption key is required")
    return Fernet(key.encode())


def encrypt_data(data: str, key: str | None = None) -> str:
    """Encrypt data using Fernet symmetric encryption.

    Args:
        data: The plaintext string to encrypt
        key: Base64-encoded 32-byte encryption key (defaults to ENCRYPTION_KEY)

    Returns:
        Base64-encoded encrypted string

    Raises:
        ValueError: If the key is missing or invalid
    """
    fernet = _fernet(key or settings.encryption_key)
    return fernet.encrypt(data.encode()).decode()


def decrypt_data(encrypted_data: str, key: str | None = None) -> str:
    """Decrypt data using Fernet symmetric encryption.

    Args:
        encrypted_data: Base64-encoded encrypted string
        key: Base64-encoded 32-byte encryption key (defaults to ENCRYPTION_KEY)

    Returns:
        Decrypted plaintext string

    Raises:
        ValueError: If the key is missing or invalid
        cryptography.fernet.InvalidToken: If decryption fails
    """
    fernet = _fernet(key or settings.encryption_key)
    return fernet.decrypt(encrypted_data.encode()).decode()


def encrypt_json(payload: Any, key: str | None = None) -> str:
    """Serialize a JSON-compatible value and encrypt it."""
    return encrypt_data(json.dumps(payload), key)


def decrypt_json(encrypted_data: str, key: str | None = None) -> Any:
    """Decrypt a value produced by encrypt_json."""
    return json.loads(decrypt_data(encrypted_data, key))
