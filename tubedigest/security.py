"""
JWT creation and verification for the dashboard session.

The session is a JWT in an HttpOnly cookie (set by the OAuth callback).
Algorithm: HS256; secret comes from config. Expiration matches
JWT_COOKIE_MAX_AGE, so the cookie and the token age out together.
"""
from datetime import timedelta

from jose import JWTError, jwt

from tubedigest.config import JWT_ALGORITHM, JWT_COOKIE_MAX_AGE, JWT_SECRET
from tubedigest.database import utcnow


def create_session_token(user_id: str, email: str) -> str:
    """Build a session JWT; sub = user id, email is informational."""
    payload = {
        "sub": user_id,
        "email": email,
        "exp": utcnow() + timedelta(seconds=JWT_COOKIE_MAX_AGE),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def read_session_token(token: str) -> str | None:
    """Return the user id from a session JWT, or None if invalid or expired."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    sub = payload.get("sub")
    return sub if isinstance(sub, str) and sub else None
