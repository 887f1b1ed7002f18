"""Google OAuth2 authorization-code flow with PKCE.

The sign-in redirect stores a random ``state``, the PKCE code verifier and the
post-login redirect in a signed, short-lived cookie. The callback only proceeds
when the ``state`` query parameter matches that cookie, so a callback URL
crafted by someone else cannot sign the browser into their account.

The resulting :class:`ExternalProfile` is handed to
``CredentialManager.oauth_login``.
"""
import base64
import hashlib
import secrets
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from jose import JWTError, jwt

from artplatform.config import settings
from artplatform.services.credentials import ExternalProfile
from artplatform.utils.logger import logger

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
SCOPES = "openid email profile"

STATE_COOKIE = "oauth_state"
STATE_TTL_SECONDS = 600


class OAuthError(Exception):
    """The provider rejected the exchange or returned an unusable profile."""


# ---------------------------------------------------------------------------
# State and PKCE
# ---------------------------------------------------------------------------

def generate_state() -> str:
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    """RFC 7636 code verifier (86 URL-safe characters)."""
    return secrets.token_urlsafe(64)


def generate_code_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def create_state_cookie(
    *,
    state: str,
    code_verifier: str,
    redirect_url: str,
    secret: str,
    ttl_seconds: int = STATE_TTL_SECONDS,
) -> str:
    """Sign the values the callback needs into a cookie value (HS256 JWT)."""
    payload = {
        "state": state,
        "code_verifier": code_verifier,
        "redirectUrl": redirect_url,
        "exp": int(time.time()) + ttl_seconds,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def validate_state_cookie(
    *,
    cookie_value: Optional[str],
    expected_state: Optional[str],
    secret: str,
) -> Optional[Dict[str, Any]]:
    """Return the cookie payload when it is authentic, unexpired and matches
    ``expected_state``; None otherwise."""
    if not cookie_value or not expected_state:
        return None

    try:
        payload = jwt.decode(cookie_value, secret, algorithms=["HS256"])
    except JWTError:
        return None

    if not secrets.compare_digest(str(payload.get("state", "")), expected_state):
        return None
    if not payload.get("code_verifier"):
        return None
    return payload


# ---------------------------------------------------------------------------
# Provider client
# ---------------------------------------------------------------------------

class GoogleOAuthClient:
    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: float = 10) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> Optional["GoogleOAuthClient"]:
        """Return a client, or None when Google OAuth is not configured."""
        if not settings.google_oauth_enabled:
            return None
        return cls(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            redirect_uri=f"{settings.BASE_URL.rstrip('/')}{settings.GOOGLE_CALLBACK_PATH}",
        )

    def authorization_url(self, state: str, code_challenge: str) -> str:
        """Consent-screen URL for the given state and PKCE challenge."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": SCOPES,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "access_type": "online",
            "prompt": "select_account",
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    def _exchange_code(self, code: str, code_verifier: str) -> str:
        try:
            resp = requests.post(
                TOKEN_URL,
                data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                    "code_verifier": code_verifier,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OAuthError(f"Token exchange failed: {exc}") from exc

        if resp.status_code != 200:
            raise OAuthError(f"Token exchange rejected with status {resp.status_code}")

        access_token = resp.json().get("access_token")
        if not access_token:
            raise OAuthError("Token response has no access_token")
        return access_token

    def _fetch_userinfo(self, access_token: str) -> Dict[str, Any]:
        try:
            resp = requests.get(
                USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OAuthError(f"Userinfo request failed: {exc}") from exc

        if resp.status_code != 200:
            raise OAuthError(f"Userinfo rejected with status {resp.status_code}")
        return resp.json()

    def fetch_profile(self, code: str, code_verifier: str) -> ExternalProfile:
        """Exchange an authorization code for a verified Google profile."""
        info = self._fetch_userinfo(self._exchange_code(code, code_verifier))

        if not info.get("sub") or not info.get("email"):
            raise OAuthError("Profile is missing sub or email")
        if info.get("email_verified") is False:
            raise OAuthError("Google email address is not verified")

        logger.debug("Fetched Google profile", extra={"action": "oauth_profile"})
        return ExternalProfile(
            provider_id=str(info["sub"]),
            email=info["email"],
            first_name=info.get("given_name") or "",
            last_name=info.get("family_name") or "",
        )
