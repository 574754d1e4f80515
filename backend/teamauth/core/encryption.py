"""
At-rest encryption for per-organization provider secrets (Okta client secrets).

ENCRYPTION_KEY holds one or more comma-separated Fernet keys. The first key
encrypts; every key is tried on decrypt, so a new key can be prepended while
values written under the old one stay readable.
"""

import base64
import logging
from functools import lru_cache
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from sqlalchemy import String, TypeDecorator

from teamauth.core.config import settings
from teamauth.core.exceptions import ConfigurationError

logger = logging.getLogger("teamauth.encryption")


class SecretDecryptionError(ConfigurationError):
    """A stored secret cannot be decrypted with any configured key."""

    def __init__(self, message: str = "Stored provider secret could not be decrypted", **kwargs):
        super().__init__(message=message, **kwargs)


def _dev_key(secret_key: str) -> bytes:
    # Development fallback only; production refuses to start without ENCRYPTION_KEY
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=b"teamauth-provider-secrets")
    return base64.urlsafe_b64encode(hkdf.derive(secret_key.encode()))


def _parse_keys(raw: Optional[str]) -> List[bytes]:
    if raw:
        return [k.strip().encode() for k in raw.split(",") if k.strip()]
    if settings.is_production:
        raise ConfigurationError("ENCRYPTION_KEY must be set in production")
    logger.warning("ENCRYPTION_KEY not set; deriving a development key from SECRET_KEY")
    return [_dev_key(settings.SECRET_KEY)]


class SecretBox:
    def __init__(self, keys: Optional[str] = None):
        key_list = _parse_keys(keys or settings.ENCRYPTION_KEY)
        self._fernet = MultiFernet([Fernet(k) for k in key_list])
        self.key_count = len(key_list)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("Provider secret decryption failed (unknown key or corrupted value)")
            raise SecretDecryptionError()


@lru_cache(maxsize=1)
def get_secret_box() -> SecretBox:
    box = SecretBox()
    logger.info(f"Secret encryption ready ({box.key_count} key(s))")
    return box


class EncryptedString(TypeDecorator):
    """
    String column stored as a Fernet token.

    Usage:
        client_secret = Column(EncryptedString(1024), nullable=False)
    """

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return get_secret_box().encrypt(str(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return get_secret_box().decrypt(value)
