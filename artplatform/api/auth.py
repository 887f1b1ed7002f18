"""Authentication endpoints: registration, login, tokens, verification, passwords, Google sign-in"""
from typing import Optional
from urllib.parse import urlencode, urlparse

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse

from artplatform.api.deps import (
    get_credential_manager,
    get_current_account,
    get_oauth_client,
    require_role,
)
from artplatform.config import settings
from artplatform.middleware.rate_limit import get_rate_limit, limiter
from artplatform.models.account import Account, UserRole
from artplatform.schemas.auth import (
    EmailRequest,
    LoginRequest,
    MessageResponse,
    PublicUser,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenPairResponse,
    UpdatePasswordRequest,
    VerifyEmailResponse,
)
from artplatform.services.credentials import AuthenticatedAccount, CredentialManager
from artplatform.services.errors import not_found_error, validation_error
from artplatform.services.oauth import (
    STATE_COOKIE,
    STATE_TTL_SECONDS,
    GoogleOAuthClient,
    OAuthError,
    create_state_cookie,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
    validate_state_cookie,
)
from artplatform.utils.logger import logger

router = APIRouter(prefix="/api/auth", tags=["authentication"])

AUTH_LIMIT = get_rate_limit("authentication")
API_LIMIT = get_rate_limit("api")


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_LIMIT)
def register(
    request: Request,
    body: RegisterRequest,
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Create an account and email a verification link (valid 24 hours).

    Any clash with an existing email or username returns a generic
    `Registration failed` error.
    """
    user = manager.register(body.email, body.username, body.password, _base_url(request))
    return RegisterResponse(
        message=(
            "A link has been sent to verify your identity. "
            "Please check your email to complete the registration process."
        ),
        data={"user": user},
    )


@router.get("/verify-email", response_model=VerifyEmailResponse)
def verify_email(
    request: Request,
    token: Optional[str] = Query(None),
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Consume the emailed verification token and log the user in."""
    if not token:
        raise validation_error("Verification token is required")

    result = manager.verify_email(token, _base_url(request))
    tokens = result["tokens"]
    return VerifyEmailResponse(
        message="Email verified successfully",
        data={
            "user": result["user"],
            "tokens": {"access_token": tokens.access_token, "refresh_token": tokens.refresh_token},
        },
    )


@router.post("/resend-verification", response_model=MessageResponse)
@limiter.limit(AUTH_LIMIT)
def resend_verification(
    request: Request,
    body: EmailRequest,
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Send a new verification link. The response is identical whether or not the email exists."""
    manager.resend_verification(body.email, _base_url(request))
    return MessageResponse(
        message="If that email address is registered and unverified, a new verification email has been sent."
    )


# ---------------------------------------------------------------------------
# Login, refresh, logout
# ---------------------------------------------------------------------------

@router.post("/login", response_model=TokenPairResponse)
@limiter.limit(AUTH_LIMIT)
def login(
    request: Request,
    body: LoginRequest,
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Log in with email or username.

    Three consecutive wrong passwords lock the account for 15 minutes, five
    for 24 hours.
    """
    tokens = manager.login(body.identifier, body.password, _client_ip(request))
    return TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


@router.post("/refresh-token", response_model=TokenPairResponse)
@limiter.limit(API_LIMIT)
def refresh_token(
    request: Request,
    body: RefreshRequest,
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Exchange a refresh token for a new pair. The presented token is revoked."""
    tokens = manager.refresh(body.refresh_token)
    return TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    body: RefreshRequest,
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Revoke a refresh token (and the access token issued with it)."""
    manager.logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Password reset and change
# ---------------------------------------------------------------------------

@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(AUTH_LIMIT)
def forgot_password(
    request: Request,
    body: EmailRequest,
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Email a password reset link (valid 15 minutes).

    The response is identical whether or not the email exists.
    """
    manager.forgot_password(body.email, _base_url(request))
    return MessageResponse(message="If that email address is registered, a password reset email has been sent.")


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(AUTH_LIMIT)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    token: Optional[str] = Query(None),
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Set a new password using the emailed token. Signs out every device."""
    if not token:
        raise validation_error("Reset token is required")
    if not body.new_password or not body.confirm_password:
        raise validation_error("Both password fields are required")
    if body.new_password != body.confirm_password:
        raise validation_error("Passwords do not match")

    manager.reset_password(token, body.new_password)
    return MessageResponse(message="Password has been reset")


@router.patch("/update-password", response_model=MessageResponse)
@limiter.limit(API_LIMIT)
def update_password(
    request: Request,
    body: UpdatePasswordRequest,
    caller: AuthenticatedAccount = Depends(get_current_account),
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Change the caller's password. Signs out every device."""
    manager.update_password(caller.id, body.current_password, body.new_password)
    return MessageResponse(message="Password updated successfully")


# ---------------------------------------------------------------------------
# Current account and role management
# ---------------------------------------------------------------------------

@router.get("/me", response_model=PublicUser)
def me(
    caller: AuthenticatedAccount = Depends(get_current_account),
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Return the authenticated account."""
    account = manager.db.get(Account, caller.id)
    if account is None:
        raise not_found_error("User not found")
    return PublicUser(id=account.id, email=account.email, username=account.username, role=account.role)


@router.patch("/users/{user_id}/role", response_model=PublicUser)
def set_role(
    user_id: str,
    role: UserRole = Query(...),
    caller: AuthenticatedAccount = Depends(require_role("admin")),
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Change an account's role (admin only). Takes effect on the next token issuance."""
    account = manager.db.get(Account, user_id)
    if account is None:
        raise not_found_error("User not found")

    account.role = role.value
    manager.db.commit()

    logger.info(f"Role set to {role.value}", extra={"user_id": user_id, "action": "set_role"})
    return PublicUser(id=account.id, email=account.email, username=account.username, role=account.role)


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------

def _safe_redirect(url: Optional[str]) -> str:
    """Only redirect back to the frontend origin."""
    if url:
        target, frontend = urlparse(url), urlparse(settings.FRONTEND_URL)
        if (target.scheme, target.netloc) == (frontend.scheme, frontend.netloc):
            return url
    return settings.FRONTEND_URL


def _failed(redirect_url: str) -> RedirectResponse:
    response = RedirectResponse(f"{redirect_url}?{urlencode({'error': 'authentication_failed'})}")
    response.delete_cookie(STATE_COOKIE, path=settings.GOOGLE_CALLBACK_PATH)
    return response


@router.get("/google")
def google_auth(
    redirect: Optional[str] = Query(None),
    client: GoogleOAuthClient = Depends(get_oauth_client),
):
    """Redirect to Google's consent screen, binding the flow to this browser."""
    state = generate_state()
    verifier = generate_code_verifier()

    response = RedirectResponse(client.authorization_url(state, generate_code_challenge(verifier)))
    response.set_cookie(
        key=STATE_COOKIE,
        value=create_state_cookie(
            state=state,
            code_verifier=verifier,
            redirect_url=_safe_redirect(redirect),
            secret=settings.OAUTH_STATE_SECRET,
        ),
        max_age=STATE_TTL_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path=settings.GOOGLE_CALLBACK_PATH,
    )
    return response


@router.get("/google/callback")
def google_auth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    client: GoogleOAuthClient = Depends(get_oauth_client),
    manager: CredentialManager = Depends(get_credential_manager),
):
    """Finish Google sign-in and hand the token pair to the frontend."""
    flow = validate_state_cookie(
        cookie_value=request.cookies.get(STATE_COOKIE),
        expected_state=state,
        secret=settings.OAUTH_STATE_SECRET,
    )
    if flow is None:
        logger.warning("Google callback with missing or mismatched state", extra={"action": "oauth_callback"})
        return _failed(settings.FRONTEND_URL)

    redirect_url = _safe_redirect(flow.get("redirectUrl"))
    if not code:
        return _failed(redirect_url)

    try:
        profile = client.fetch_profile(code, flow["code_verifier"])
    except OAuthError as exc:
        logger.warning(f"Google authentication failed: {exc}", extra={"action": "oauth_callback"})
        return _failed(redirect_url)

    _, tokens = manager.oauth_login(profile)
    query = urlencode({"access_token": tokens.access_token, "refresh_token": tokens.refresh_token})
    response = RedirectResponse(f"{redirect_url}?{query}")
    response.delete_cookie(STATE_COOKIE, path=settings.GOOGLE_CALLBACK_PATH)
    return response
