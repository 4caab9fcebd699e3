"""
Encrypted credential store: the only place OAuth tokens are written or read.

put() encrypts the access and refresh tokens independently (fresh nonce each)
and supersedes any existing record. get() decrypts on demand and raises
DecryptionError when a stored value fails verification; callers treat that as
"no usable credential".
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from tubedigest.crypto import TokenCipher, cipher as default_cipher
from tubedigest.database import as_utc, utcnow
from tubedigest.models import OAuthCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecryptedCredential:
    provider: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        return f"DecryptedCredential(provider={self.provider!r}, expires_at={self.expires_at!r})"


class CredentialStore:
    """Request-scoped view over oauth_credentials; the cipher is process-wide."""

    def __init__(self, db: Session, cipher: TokenCipher | None = None):
        self.db = db
        self.cipher = cipher or default_cipher

    def _row(self, user_id: str) -> OAuthCredential | None:
        return self.db.query(OAuthCredential).filter(OAuthCredential.user_id == user_id).one_or_none()

    def put(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        provider: str = "google",
    ) -> None:
        """Store a token pair for user_id, replacing (not merging) any existing record."""
        encrypted_access = self.cipher.encrypt(access_token)
        encrypted_refresh = self.cipher.encrypt(refresh_token) if refresh_token else None

        row = self._row(user_id)
        if row is None:
            row = OAuthCredential(user_id=user_id)
            self.db.add(row)
            row.created_at = utcnow()
        row.provider = provider
        row.encrypted_access_token = encrypted_access
        row.encrypted_refresh_token = encrypted_refresh
        row.expires_at = expires_at
        row.updated_at = utcnow()
        self.db.commit()
        logger.info("Stored %s credential for user %s", provider, user_id)

    def get(self, user_id: str) -> DecryptedCredential | None:
        """
        Return the decrypted credential, or None when the user has none.
        Raises DecryptionError if either stored token fails verification.
        """
        row = self._row(user_id)
        if row is None:
            return None
        access_token = self.cipher.decrypt(row.encrypted_access_token)
        refresh_token = (
            self.cipher.decrypt(row.encrypted_refresh_token)
            if row.encrypted_refresh_token
            else None
        )
        return DecryptedCredential(
            provider=row.provider,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=as_utc(row.expires_at),
        )

    def delete(self, user_id: str) -> bool:
        row = self._row(user_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        logger.info("Deleted credential for user %s", user_id)
        return True

    def connection(self, user_id: str) -> dict | None:
        """Non-secret metadata about the stored credential (for the tokens endpoint)."""
        row = self._row(user_id)
        if row is None:
            return None
        expires_at = as_utc(row.expires_at)
        return {
            "provider": row.provider,
            "isActive": bool(expires_at and expires_at > utcnow()),
            "hasRefreshToken": row.encrypted_refresh_token is not None,
            "createdAt": as_utc(row.created_at),
            "lastRefreshed": as_utc(row.updated_at),
            "expiresAt": expires_at,
        }
