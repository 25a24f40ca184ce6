"""Fernet encryption helpers for platform API keys."""

import logging

from cryptography.fernet import Fernet, InvalidToken

from answerwatch.core.config import settings

logger = logging.getLogger(__name__)

_fernet: Fernet | None = None
_fernet_key: str | None = None


def _get_fernet() -> Fernet:
    global _fernet, _fernet_key
    key = settings.fernet_key
    if not key:
        raise ValueError("FERNET_KEY is not configured, cannot encrypt/decrypt platform credentials")
    if _fernet is None or key != _fernet_key:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
        _fernet_key = key
    return _fernet


def encrypt_value(plaintext: str) -> bytes:
    """Encrypt a credential. Returns bytes for a BYTEA column."""
    return _get_fernet().encrypt(plaintext.encode("utf-8"))


def decrypt_value(ciphertext: bytes | None) -> str:
    """Decrypt a stored credential. Returns empty string on failure."""
    if not ciphertext:
        return ""
    try:
        return _get_fernet().decrypt(ciphertext).decode("utf-8")
    except InvalidToken:
        logger.error("Failed to decrypt platform credential, invalid Fernet key or corrupted data")
        return ""
