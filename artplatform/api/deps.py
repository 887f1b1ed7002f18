"""API dependencies for wiring the credential manager and authorizing callers.

Process-wide handles (revocation store, mail sender, OAuth client) are built
by the application lifespan and kept on ``app.state``; these dependencies hand
them to a request-scoped :class:`CredentialManager`.

Protected routes take ``Authorization: Bearer <access token>``. The token must
verify against the access secret and its jti must not be revoked.

Role hierarchy (higher level -> more permissions):
    admin (3) > artist (2) > user (1)
"""
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from artplatform.database import get_db
from artplatform.services.credentials import AuthenticatedAccount, CredentialManager
from artplatform.services.errors import authentication_error, authorization_error
from artplatform.services.mailer import NotificationService
from artplatform.services.oauth import GoogleOAuthClient
from artplatform.services.revocation import RevocationStore

_bearer_scheme = HTTPBearer(auto_error=False)

_ROLE_HIERARCHY: dict[str, int] = {
    "admin": 3,
    "artist": 2,
    "user": 1,
}


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

def get_revocation_store(request: Request) -> RevocationStore:
    return request.app.state.revocations


def get_notifications(request: Request) -> NotificationService:
    return request.app.state.notifications


def get_oauth_client(request: Request) -> GoogleOAuthClient:
    client: Optional[GoogleOAuthClient] = getattr(request.app.state, "google_oauth", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google sign-in is not configured",
        )
    return client


def get_credential_manager(
    db: Session = Depends(get_db),
    revocations: RevocationStore = Depends(get_revocation_store),
    notifications: NotificationService = Depends(get_notifications),
) -> CredentialManager:
    return CredentialManager(db, revocations, notifications)


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------

def get_current_account(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    manager: CredentialManager = Depends(get_credential_manager),
) -> AuthenticatedAccount:
    """Require a valid, unrevoked access token.

    Stores the account id on ``request.state`` so rate limits key on the
    account instead of the IP.
    """
    if not credentials:
        raise authentication_error("Not authenticated, token missing")

    account = manager.authenticate(credentials.credentials)
    request.state.user_id = account.id
    return account


def require_role(min_role: str) -> Callable:
    """Return a FastAPI dependency that enforces a minimum account role.

    Usage::

        @router.patch("/users/{user_id}/role")
        def endpoint(caller: AuthenticatedAccount = Depends(require_role("admin"))):
            ...
    """
    min_level = _ROLE_HIERARCHY.get(min_role, 0)

    def _role_dep(account: AuthenticatedAccount = Depends(get_current_account)) -> AuthenticatedAccount:
        if _ROLE_HIERARCHY.get(account.role, 0) < min_level:
            raise authorization_error("You do not have permission to perform this action")
        return account

    # Give FastAPI a unique name so it doesn't collapse distinct dependencies
    _role_dep.__name__ = f"require_role_{min_role}"
    return _role_dep
