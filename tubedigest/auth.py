"""
Google OAuth 2.0 login, callback, session cookie, and current-user dependency.

- Login redirects to Google with a CSRF state stored in a short-lived cookie.
- Callback validates state, exchanges code for tokens, upserts the User by email,
  supersedes the stored credential (encrypted), sets a JWT in an HttpOnly cookie
  and redirects to the frontend channel-selection page with ?auth=success.
- /me returns the current user when the session cookie is valid, else 401.
- /auth/logout clears the session cookie.
- /auth/tokens lists or revokes the user's OAuth connection.
- get_current_user dependency reads the JWT cookie and returns the User.
- get_valid_access_token returns a usable access token, refreshing if needed.
"""
import logging
import secrets
from datetime import timedelta
from urllib.parse import urlencode

import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.orm import Session

from tubedigest.config import (
    FRONTEND_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_OAUTH_SCOPES,
    GOOGLE_REDIRECT_URI,
    GOOGLE_REQUEST_TIMEOUT,
    JWT_COOKIE_MAX_AGE,
    JWT_COOKIE_NAME,
    OAUTH_STATE_COOKIE_NAME,
    OAUTH_STATE_MAX_AGE,
    SECURE_COOKIES,
    TOKEN_REFRESH_LEEWAY_SECONDS,
)
from tubedigest.credentials import CredentialStore, DecryptedCredential
from tubedigest.database import get_db, utcnow
from tubedigest.errors import DecryptionError, UpstreamUnavailable
from tubedigest.models import User
from tubedigest.security import create_session_token, read_session_token

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

router = APIRouter(prefix="/auth")
me_router = APIRouter(prefix="/me")


# Cookie flags: HttpOnly (no JS access), SameSite=Lax (CSRF mitigation), Secure in production is set per-response
def _cookie_kwargs(secure: bool = False) -> dict:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": secure,
        "path": "/",
    }


def _session_user(request: Request, db: Session) -> User | None:
    token = request.cookies.get(JWT_COOKIE_NAME)
    if not token:
        return None
    user_id = read_session_token(token)
    if not user_id:
        return None
    return db.get(User, user_id)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency: read JWT from session cookie, decode it, load User.
    Raises 401 if cookie missing or JWT invalid/expired or user not found.
    """
    if not request.cookies.get(JWT_COOKIE_NAME):
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = _session_user(request, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return user


def refresh_access_token(
    store: CredentialStore,
    user_id: str,
    credential: DecryptedCredential,
) -> DecryptedCredential:
    """
    Exchange the refresh token for a new access token and store the result.
    Raises UpstreamUnavailable if there is no refresh token or Google refuses.
    """
    if not credential.refresh_token:
        raise UpstreamUnavailable("no refresh token available")
    try:
        resp = requests.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "refresh_token": credential.refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=GOOGLE_REQUEST_TIMEOUT,
        )
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Token refresh request failed for user %s: %s", user_id, e)
        raise UpstreamUnavailable("token refresh failed") from e
    if "error" in data or not data.get("access_token"):
        logger.warning("Google refused token refresh for user %s: %s", user_id, data.get("error"))
        raise UpstreamUnavailable("token refresh failed")

    expires_at = utcnow() + timedelta(seconds=data.get("expires_in", 3600))
    refresh_token = data.get("refresh_token") or credential.refresh_token
    store.put(
        user_id,
        data["access_token"],
        refresh_token=refresh_token,
        expires_at=expires_at,
        provider=credential.provider,
    )
    return DecryptedCredential(
        provider=credential.provider,
        access_token=data["access_token"],
        refresh_token=refresh_token,
        expires_at=expires_at,
    )


def get_valid_access_token(
    store: CredentialStore,
    user_id: str,
    credential: DecryptedCredential,
    *,
    force_refresh: bool = False,
) -> str:
    """
    Return an access token for this credential, refreshing if it is expired or
    expiring within TOKEN_REFRESH_LEEWAY_SECONDS (or always when force_refresh,
    for retry after a 401). Without a refresh token the stored access token is
    returned as-is and the upstream call decides.
    """
    expires_at = credential.expires_at
    expiring = expires_at is not None and utcnow() >= expires_at - timedelta(seconds=TOKEN_REFRESH_LEEWAY_SECONDS)
    if force_refresh or (expiring and credential.refresh_token):
        return refresh_access_token(store, user_id, credential).access_token
    return credential.access_token


@router.get("/google/login")
def google_login():
    """
    Redirect to Google OAuth consent. Sets a short-lived cookie with a random
    state value and includes the same state in the redirect URL so the callback
    can verify the request was not forged (CSRF protection).
    """
    state = secrets.token_urlsafe(32)
    query = urlencode({
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(GOOGLE_OAUTH_SCOPES),
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "consent",
        "state": state,
    })
    redirect = RedirectResponse(url=f"{GOOGLE_AUTH_URL}?{query}")
    redirect.set_cookie(
        OAUTH_STATE_COOKIE_NAME,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        **_cookie_kwargs(secure=SECURE_COOKIES),
    )
    return redirect


@router.get("/google/callback")
def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Handle redirect from Google. Validates state cookie (CSRF), exchanges code
    for tokens, upserts the User, supersedes the stored credential, sets the
    session cookie, redirects to the frontend channel selection (no JWT in URL).
    """
    if error:
        raise HTTPException(status_code=400, detail=f"OAuth error: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    state_cookie = request.cookies.get(OAUTH_STATE_COOKIE_NAME)
    if not state_cookie or not secrets.compare_digest(state, state_cookie):
        raise HTTPException(status_code=400, detail="Invalid or expired state; please try logging in again")

    token_res = requests.post(
        GOOGLE_TOKEN_URL,
        data={
            "client_id": GOOGLE_CLIENT_ID,
            "client_secret": GOOGLE_CLIENT_SECRET,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": GOOGLE_REDIRECT_URI,
        },
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=GOOGLE_REQUEST_TIMEOUT,
    )
    token_data = token_res.json()
    if "error" in token_data:
        raise HTTPException(
            status_code=400,
            detail=f"Token exchange failed: {token_data.get('error_description', token_data['error'])}",
        )

    access_token = token_data.get("access_token")
    if not access_token:
        raise HTTPException(status_code=400, detail="Token exchange did not return access_token")
    refresh_token = token_data.get("refresh_token")
    expires_at = utcnow() + timedelta(seconds=token_data.get("expires_in", 3600))

    userinfo_res = requests.get(
        GOOGLE_USERINFO_URL,
        headers={"Authorization": f"Bearer {access_token}"},
        timeout=GOOGLE_REQUEST_TIMEOUT,
    )
    userinfo_res.raise_for_status()
    userinfo = userinfo_res.json()

    email = userinfo.get("email")
    if not email:
        raise HTTPException(status_code=400, detail="Google userinfo missing email")

    user = db.query(User).filter(User.email == email).one_or_none()
    if not user:
        user = User(email=email, name=userinfo.get("name"))
        db.add(user)
        db.commit()
        logger.info("Created user %s", user.id)
    elif userinfo.get("name") and user.name != userinfo["name"]:
        user.name = userinfo["name"]
        db.commit()

    CredentialStore(db).put(
        user.id,
        access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
    )

    redirect = RedirectResponse(url=f"{FRONTEND_URL}/channels?auth=success")
    redirect.set_cookie(
        JWT_COOKIE_NAME,
        create_session_token(user.id, user.email),
        max_age=JWT_COOKIE_MAX_AGE,
        **_cookie_kwargs(secure=SECURE_COOKIES),
    )
    redirect.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/")
    return redirect


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie. Stored credentials and selections are kept so
    the next login resumes where the user left off.
    """
    response.delete_cookie(JWT_COOKIE_NAME, path="/")
    return {"ok": True}


@router.get("/tokens")
def list_connections(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Describe the user's OAuth connection without exposing token material."""
    connection = CredentialStore(db).connection(user.id)
    return {"connections": [connection] if connection else []}


@router.delete("/tokens/{provider}")
def revoke_connection(
    provider: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Revoke the connection at Google (best effort) and delete it locally.
    Afterwards the channel directory serves the fallback list.
    """
    store = CredentialStore(db)
    connection = store.connection(user.id)
    if not connection or connection["provider"] != provider:
        raise HTTPException(status_code=404, detail="Connection not found")

    try:
        credential = store.get(user.id)
    except DecryptionError:
        logger.warning("Stored credential for user %s is unreadable; deleting without remote revoke", user.id)
        credential = None
    if credential:
        try:
            requests.post(
                GOOGLE_REVOKE_URL,
                params={"token": credential.refresh_token or credential.access_token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=GOOGLE_REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.warning("Remote revoke failed for user %s: %s", user.id, e)

    store.delete(user.id)
    return {"ok": True}


@me_router.get("")
def me(user: User = Depends(get_current_user)):
    """Return the current user profile. Requires a valid session cookie."""
    return {
        "id": user.id,
        "email": user.email,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "tz": user.tz,
    }


@me_router.get("/session/health")
def session_health(request: Request, db: Session = Depends(get_db)):
    """Report whether the caller holds a valid session; never fails with 401."""
    user = _session_user(request, db)
    return {
        "hasValidSession": user is not None,
        "userEmail": user.email if user else None,
        "timestamp": utcnow().isoformat(),
    }
