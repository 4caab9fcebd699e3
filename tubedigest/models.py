"""
Data models for the TubeDigest backend.

Users own at most one OAuth credential and up to MAX_SELECTED_CHANNELS channel
selections. Tokens never leave this layer in plaintext form.
"""
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from tubedigest.database import Base, utcnow


class User(Base):
    """
    User identity. Email is the natural key (unique); id is an opaque uuid.

    - tz: IANA zone used for digest scheduling; "UTC" until the user changes it.
    - created_at: first successful OAuth exchange.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255))
    tz = Column(String(64), nullable=False, default="UTC")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    credential = relationship(
        "OAuthCredential",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    selections = relationship(
        "ChannelSelection",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="ChannelSelection.id",
    )


class OAuthCredential(Base):
    """
    Encrypted OAuth token pair for one user (one row per user).

    - encrypted_access_token / encrypted_refresh_token: AES-256-GCM, see crypto.py.
      Refresh token can be null when the provider did not return one.
    - expires_at: UTC expiry of the access token; null when unknown.
    - A new OAuth flow overwrites the row; values are never merged.
    """
    __tablename__ = "oauth_credentials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    provider = Column(String(32), nullable=False, default="google")
    encrypted_access_token = Column(String(4096), nullable=False)
    encrypted_refresh_token = Column(String(4096), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="credential")


class ChannelSelection(Base):
    """
    One channel chosen for digests. title is a snapshot taken at selection
    time and is not re-synced from the directory. id preserves insertion order.
    """
    __tablename__ = "channel_selections"
    __table_args__ = (UniqueConstraint("user_id", "channel_id", name="uq_selection_user_channel"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    user = relationship("User", back_populates="selections")
