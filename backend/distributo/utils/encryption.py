"""AES-256-GCM encryption for OAuth tokens."""
import base64
import os
from functools import lru_cache

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from distributo.config import settings


class TokenEncryptor:
    def __init__(self, key_hex: str):
        self.aesgcm = AESGCM(bytes.fromhex(key_hex))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(12)
        ciphertext = self.aesgcm.encrypt(nonce, plaintext.encode(), None)
        return base64.b64encode(nonce + ciphertext).decode()

    def decrypt(self, token: str) -> str:
        data = base64.b64decode(token)
        nonce, ciphertext = data[:12], data[12:]
        return self.aesgcm.decrypt(nonce, ciphertext, None).decode()


@lru_cache
def get_token_encryptor() -> TokenEncryptor | None:
    """Encryptor for the configured ENCRYPTION_KEY, or None when unset."""
    if not settings.ENCRYPTION_KEY:
        return None
    return TokenEncryptor(settings.ENCRYPTION_KEY)


class EncryptedText(TypeDecorator):
    """Text column that is transparently encrypted when a key is configured.

    Values are never compared in SQL, so the randomized nonce is harmless.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: str | None, dialect) -> str | None:
        encryptor = get_token_encryptor()
        if value is None or encryptor is None:
            return value
        return encryptor.encrypt(value)

    def process_result_value(self, value: str | None, dialect) -> str | None:
        encryptor = get_token_encryptor()
        if value is None or encryptor is None:
            return value
        return encryptor.decrypt(value)
