"""Fernet encryption for page access tokens stored on ``Store``.

Keys are derived from ``ENCRYPTION_KEY`` with SHA-256. Tokens are always
encrypted with the current key; ``PREVIOUS_ENCRYPTION_KEYS`` are only tried
on decrypt, so the key can be rotated without re-connecting every page.
"""

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, MultiFernet

from chatorder.core.config import settings


def _derive(secret: str) -> Fernet:
    key_bytes = hashlib.sha256(secret.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_bytes))


@lru_cache(maxsize=1)
def _get_fernet() -> MultiFernet:
    keys = [settings.encryption_key, *settings.previous_encryption_keys]
    return MultiFernet([_derive(key) for key in keys if key])


def encrypt_token(token: str) -> str:
    return _get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """Decrypt with the current key, falling back to previous keys.

    Raises:
        cryptography.fernet.InvalidToken: No configured key fits.
    """
    return _get_fernet().decrypt(encrypted.encode()).decode()
