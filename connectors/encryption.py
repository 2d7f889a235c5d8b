"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses AES-256-GCM from the ``cryptography`` library.  Each blob is
``base64(nonce || ciphertext || tag)`` with a fresh 12-byte random nonce
per call, so encrypting the same token twice never yields the same blob.

The key comes from ``TOKEN_ENCRYPTION_KEY``: base64 key material that must
decode to at least 32 bytes (the first 32 are used).  Generate one with::

    python -c "import base64, os; print(base64.b64encode(os.urandom(32)).decode())"
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from connectors.errors import ConfigError, IntegrityError, InvalidInputError, MissingSecret

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16


def derive_key(secret: str) -> bytes:
    """Decode ``secret`` and truncate it to the AES-256 key length."""
    if not secret:
        raise MissingSecret("TOKEN_ENCRYPTION_KEY is not set")
    try:
        material = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigError("TOKEN_ENCRYPTION_KEY is not valid base64") from exc
    if len(material) < KEY_LENGTH:
        raise ConfigError(
            f"TOKEN_ENCRYPTION_KEY must decode to at least {KEY_LENGTH} bytes"
        )
    return material[:KEY_LENGTH]


class TokenCipher:
    """Immutable AES-GCM cipher bound to one derived key."""

    __slots__ = ("_aesgcm",)

    def __init__(self, secret: str) -> None:
        self._aesgcm = AESGCM(derive_key(secret))

    def __repr__(self) -> str:
        return "TokenCipher(<redacted>)"

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise InvalidInputError("Refusing to encrypt an empty token")
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode(), None)
        return base64.b64encode(nonce + sealed).decode()

    def decrypt(self, blob: str) -> str:
        try:
            data = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise InvalidInputError("Encrypted token is not valid base64") from exc
        if len(data) < NONCE_LENGTH + TAG_LENGTH:
            raise InvalidInputError("Encrypted token is too short")

        nonce, sealed = data[:NONCE_LENGTH], data[NONCE_LENGTH:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise IntegrityError("Encrypted token failed authentication") from exc
        try:
            return plaintext.decode()
        except UnicodeDecodeError as exc:
            raise IntegrityError("Decrypted token is not valid UTF-8") from exc


@lru_cache(maxsize=4)
def get_cipher(secret: str) -> TokenCipher:
    """Process-wide cipher per secret; derived once, then read-only."""
    cipher = TokenCipher(secret)
    logger.info("Token encryption initialised (AES-256-GCM)")
    return cipher


def encrypt_token(plaintext: str, secret: str) -> str:
    """Encrypt a token string for database storage."""
    return get_cipher(secret).encrypt(plaintext)


def decrypt_token(blob: str, secret: str) -> str:
    """
    Decrypt a token string read from the database.

    Raises ``IntegrityError`` (or its subclass ``InvalidInputError``) for
    anything that does not authenticate; never returns the input as-is.
    """
    return get_cipher(secret).decrypt(blob)
