"""
Encryption of OAuth tokens at rest using AES-256-GCM (from cryptography).

Layout of a stored value: base64(nonce[12] | tag[16] | ciphertext). Every
encrypt call draws a fresh random nonce, so ciphertexts never share one under
the process key. Decrypt raises DecryptionError when the tag does not verify.

The key is loaded once at import from TOKEN_ENC_KEY (64 hex chars). Without it,
development derives sha256("dev-key"); production refuses to start.
"""
import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tubedigest.config import ENV, TOKEN_ENC_KEY
from tubedigest.errors import DecryptionError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

DEV_KEY_SEED = b"dev-key"


def load_key(raw: str | None, env: str = ENV) -> bytes:
    """
    Return the 32-byte token key. raw must be 64 hex chars; when raw is empty a
    deterministic development key is derived (never allowed in production).
    """
    if not raw or not raw.strip():
        if env == "production":
            raise RuntimeError("TOKEN_ENC_KEY environment variable is required in production")
        logger.warning("TOKEN_ENC_KEY not set; using derived development key (not for production)")
        return hashlib.sha256(DEV_KEY_SEED).digest()
    try:
        key = bytes.fromhex(raw.strip())
    except ValueError:
        raise RuntimeError("TOKEN_ENC_KEY must be 64 hex characters")
    if len(key) != KEY_SIZE:
        raise RuntimeError(f"TOKEN_ENC_KEY must decode to {KEY_SIZE} bytes, got {len(key)}")
    return key


class TokenCipher:
    """Stateless apart from the fixed key; safe to share across requests."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(key)

    def encrypt(self, value: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        # AESGCM returns ciphertext | tag; stored layout puts the tag first
        sealed = self._aead.encrypt(nonce, value.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, value: str) -> str:
        try:
            blob = base64.b64decode(value.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as e:
            raise DecryptionError("ciphertext is not valid base64") from e
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("ciphertext is truncated")
        nonce = blob[:NONCE_SIZE]
        tag = blob[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = blob[NONCE_SIZE + TAG_SIZE:]
        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("authentication tag did not verify") from e
        return plain.decode("utf-8")


cipher = TokenCipher(load_key(TOKEN_ENC_KEY))


def encrypt(value: str) -> str:
    """Encrypt a token (access_token or refresh_token) for storage."""
    return cipher.encrypt(value)


def decrypt(value: str | None) -> str | None:
    """
    Decrypt a stored token. Returns None if value is None (e.g. optional refresh_token).
    """
    if value is None:
        return None
    return cipher.decrypt(value)
