"""Tests for token encryption at rest (AES-256-GCM)."""
import base64
import hashlib

import pytest

from tubedigest import crypto
from tubedigest.crypto import NONCE_SIZE, TAG_SIZE, TokenCipher, load_key
from tubedigest.errors import DecryptionError

KEY = bytes(range(32))


def test_encrypt_decrypt_round_trip():
    cipher = TokenCipher(KEY)
    assert cipher.decrypt(cipher.encrypt("ya29.access-token")) == "ya29.access-token"


def test_stored_layout_is_nonce_tag_ciphertext():
    cipher = TokenCipher(KEY)
    blob = base64.b64decode(cipher.encrypt("abc"))
    assert len(blob) == NONCE_SIZE + TAG_SIZE + len(b"abc")


def test_each_encryption_uses_a_fresh_nonce():
    cipher = TokenCipher(KEY)
    first = base64.b64decode(cipher.encrypt("same"))
    second = base64.b64decode(cipher.encrypt("same"))
    assert first[:NONCE_SIZE] != second[:NONCE_SIZE]
    assert first != second


def test_tampered_ciphertext_fails_verification():
    cipher = TokenCipher(KEY)
    blob = bytearray(base64.b64decode(cipher.encrypt("secret-token")))
    blob[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        cipher.decrypt(base64.b64encode(bytes(blob)).decode())


def test_tampered_tag_fails_verification():
    cipher = TokenCipher(KEY)
    blob = bytearray(base64.b64decode(cipher.encrypt("secret-token")))
    blob[NONCE_SIZE] ^= 0xFF
    with pytest.raises(DecryptionError):
        cipher.decrypt(base64.b64encode(bytes(blob)).decode())


def test_wrong_key_fails_verification():
    sealed = TokenCipher(KEY).encrypt("secret-token")
    with pytest.raises(DecryptionError):
        TokenCipher(bytes(32)).decrypt(sealed)


def test_truncated_and_garbage_input_raise_decryption_error():
    cipher = TokenCipher(KEY)
    with pytest.raises(DecryptionError):
        cipher.decrypt(base64.b64encode(b"short").decode())
    with pytest.raises(DecryptionError):
        cipher.decrypt("not base64 at all!")


def test_cipher_rejects_wrong_key_length():
    with pytest.raises(ValueError):
        TokenCipher(b"too-short")


def test_load_key_parses_hex():
    assert load_key("ab" * 32, env="production") == bytes([0xAB]) * 32


def test_load_key_rejects_bad_values():
    with pytest.raises(RuntimeError):
        load_key("zz" * 32, env="development")
    with pytest.raises(RuntimeError):
        load_key("ab" * 16, env="development")


def test_load_key_requires_key_in_production():
    with pytest.raises(RuntimeError):
        load_key(None, env="production")


def test_load_key_derives_dev_key_outside_production():
    assert load_key("", env="development") == hashlib.sha256(b"dev-key").digest()


def test_module_helpers_pass_none_through():
    assert crypto.decrypt(None) is None
    assert crypto.decrypt(crypto.encrypt("refresh")) == "refresh"
