"""
Credential encryption for stored database connections.

Connection passwords are kept encrypted at rest with Fernet
(AES-128-CBC + HMAC). Every path that turns a stored row into live
connection parameters goes through decrypt_secret().
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Stored credential could not be encrypted or decrypted."""


def _cipher(key: Optional[str]) -> Fernet:
    if not key:
        raise CredentialError("CREDENTIAL_ENCRYPTION_KEY is not configured")
    try:
        return Fernet(key.encode() if isinstance(key, str) else key)
    except (ValueError, TypeError) as e:
        raise CredentialError("CREDENTIAL_ENCRYPTION_KEY is not a valid Fernet key") from e


def generate_key() -> str:
    """Return a fresh urlsafe base64 key suitable for CREDENTIAL_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()


def encrypt_secret(plain: str, key: Optional[str]) -> str:
    """Encrypt a connection password for storage."""
    return _cipher(key).encrypt((plain or "").encode()).decode()


def decrypt_secret(token: Optional[str], key: Optional[str]) -> str:
    """Decrypt a stored connection password. Empty tokens decrypt to ''."""
    if not token:
        return ""
    try:
        return _cipher(key).decrypt(token.encode()).decode()
    except InvalidToken as e:
        logger.error("SECURITY | stored credential failed to decrypt (wrong key or plaintext at rest)")
        raise CredentialError("Decryption failed") from e
