"""
Tests for AES-GCM token encryption.
"""

import base64

import pytest

from connectors.encryption import (
    NONCE_LENGTH,
    TAG_LENGTH,
    TokenCipher,
    decrypt_token,
    derive_key,
    encrypt_token,
)
from connectors.errors import ConfigError, IntegrityError, InvalidInputError, MissingSecret

SECRET = base64.b64encode(b"k" * 32).decode()
OTHER_SECRET = base64.b64encode(b"z" * 32).decode()


class TestRoundTrip:
    @pytest.mark.parametrize(
        "plaintext",
        ["A1", "eyJhbGciOiJIUzI1NiJ9.payload.sig", "ünïcødé-tøken", "r" * 4096],
    )
    def test_decrypt_returns_original(self, plaintext):
        cipher = TokenCipher(SECRET)
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_module_helpers_share_cached_cipher(self):
        blob = encrypt_token("R1", SECRET)
        assert decrypt_token(blob, SECRET) == "R1"

    def test_blob_is_nonce_ciphertext_and_tag(self):
        blob = TokenCipher(SECRET).encrypt("abcd")
        raw = base64.b64decode(blob)
        assert len(raw) == NONCE_LENGTH + len("abcd") + TAG_LENGTH

    def test_same_plaintext_encrypts_differently(self):
        cipher = TokenCipher(SECRET)
        first, second = cipher.encrypt("A1"), cipher.encrypt("A1")
        assert first != second
        assert base64.b64decode(first)[:NONCE_LENGTH] != base64.b64decode(second)[:NONCE_LENGTH]

    def test_empty_plaintext_rejected(self):
        with pytest.raises(InvalidInputError):
            TokenCipher(SECRET).encrypt("")


class TestTamperDetection:
    def test_flipping_any_byte_fails(self):
        cipher = TokenCipher(SECRET)
        raw = bytearray(base64.b64decode(cipher.encrypt("access-token-value")))
        for i in range(len(raw)):
            tampered = bytearray(raw)
            tampered[i] ^= 0x01
            with pytest.raises(IntegrityError):
                cipher.decrypt(base64.b64encode(bytes(tampered)).decode())

    def test_wrong_key_fails(self):
        blob = TokenCipher(SECRET).encrypt("A1")
        with pytest.raises(IntegrityError):
            TokenCipher(OTHER_SECRET).decrypt(blob)

    def test_truncated_blob_fails(self):
        cipher = TokenCipher(SECRET)
        raw = base64.b64decode(cipher.encrypt("A1"))
        with pytest.raises(IntegrityError):
            cipher.decrypt(base64.b64encode(raw[:-1]).decode())

    def test_malformed_base64(self):
        with pytest.raises(InvalidInputError):
            TokenCipher(SECRET).decrypt("not base64 at all!")

    def test_input_shorter_than_nonce_and_tag(self):
        short = base64.b64encode(b"x" * (NONCE_LENGTH + TAG_LENGTH - 1)).decode()
        with pytest.raises(InvalidInputError):
            TokenCipher(SECRET).decrypt(short)

    def test_invalid_input_counts_as_integrity_failure(self):
        assert issubclass(InvalidInputError, IntegrityError)


class TestKeyDerivation:
    def test_empty_secret(self):
        with pytest.raises(MissingSecret):
            TokenCipher("")

    def test_missing_secret_is_config_error(self):
        with pytest.raises(ConfigError):
            encrypt_token("A1", "")

    def test_secret_not_base64(self):
        with pytest.raises(ConfigError):
            derive_key("this is not base64!!")

    def test_secret_too_short(self):
        with pytest.raises(ConfigError):
            derive_key(base64.b64encode(b"k" * 16).decode())

    def test_longer_secret_truncated(self):
        long_secret = base64.b64encode(b"k" * 32 + b"extra-bytes").decode()
        assert derive_key(long_secret) == b"k" * 32
        blob = TokenCipher(long_secret).encrypt("A1")
        assert TokenCipher(SECRET).decrypt(blob) == "A1"

    def test_repr_hides_key(self):
        assert "k" * 8 not in repr(TokenCipher(SECRET))
