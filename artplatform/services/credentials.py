"""Credential & session manager.

The only code that touches password hashes, token secrets and lockout
counters. Collaborators are injected:

* ``db``: request-scoped SQLAlchemy session (record store)
* ``revocations``: :class:`~artplatform.services.revocation.RevocationStore`
* ``notifications``: :class:`~artplatform.services.mailer.NotificationService`

Expected failures raise :class:`~artplatform.services.errors.AuthError`.
Store failures propagate unchanged and surface as generic 500s.

Lockout policy
--------------
Each wrong password for a resolved account increments
``failed_login_attempts`` and recomputes the lock:

    attempts >= 5  ->  locked 24 hours
    attempts >= 3  ->  locked 15 minutes
    otherwise      ->  not locked

A successful login (or email verification) resets both fields.
"""
import math
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from artplatform.config import Settings, settings as default_settings
from artplatform.middleware.monitoring import (
    record_lockout,
    record_login,
    record_tokens_issued,
    record_token_revoked,
)
from artplatform.models.account import Account, UserRole
from artplatform.models.refresh_token import RefreshToken
from artplatform.services.errors import (
    authentication_error,
    authorization_error,
    not_found_error,
    validation_error,
)
from artplatform.services.mailer import NotificationService
from artplatform.services.revocation import RevocationStore
from artplatform.utils.auth import (
    burn_password_check,
    generate_raw_token,
    generate_unusable_password,
    hash_password,
    hash_token,
    password_too_long,
    verify_password,
)
from artplatform.utils.jwt_utils import (
    TokenVerificationError,
    create_token,
    decode_token,
    generate_jti,
    seconds_until_expiry,
)
from artplatform.utils.logger import logger

LONG_LOCK_THRESHOLD = 5
SHORT_LOCK_THRESHOLD = 3
LONG_LOCK = timedelta(hours=24)
SHORT_LOCK = timedelta(minutes=15)


class TokenPair(NamedTuple):
    access_token: str
    refresh_token: str


class AuthenticatedAccount(NamedTuple):
    """Identity resolved from a verified, unrevoked access token."""
    id: str
    role: str
    jti: str


class ExternalProfile(NamedTuple):
    """A profile already verified by a third-party identity provider."""
    provider_id: str
    email: str
    first_name: str = ""
    last_name: str = ""


def check_password_length(password: str) -> None:
    if password_too_long(password):
        raise validation_error("Password must be at most 72 bytes")


def public_identity(account: Account) -> Dict[str, Any]:
    return {"id": account.id, "email": account.email, "username": account.username}


def calculate_lock_until(attempts: int, now: datetime) -> Optional[datetime]:
    """Lockout expiry for the given cumulative failure count (None = unlocked)."""
    if attempts >= LONG_LOCK_THRESHOLD:
        return now + LONG_LOCK
    if attempts >= SHORT_LOCK_THRESHOLD:
        return now + SHORT_LOCK
    return None


class CredentialManager:
    """Registration, login, one-time tokens, JWT issuance and revocation."""

    def __init__(
        self,
        db: Session,
        revocations: RevocationStore,
        notifications: NotificationService,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.db = db
        self.revocations = revocations
        self.notifications = notifications
        self.config = config
        self._now = clock

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, username: str, password: str, base_url: str) -> Dict[str, Any]:
        """Create an unverified account and mail its verification link.

        Duplicate email or username yields the same generic error so the
        response does not reveal which identifier is taken.
        """
        if not email or not username or not password:
            raise validation_error("Email, username and password are required")
        check_password_length(password)

        logger.info("Registration attempt", extra={"action": "register"})

        existing = self.db.query(Account).filter(
            or_(Account.email == email, Account.username == username)
        ).first()
        if existing:
            logger.warning("Registration failed: email or username already taken", extra={"action": "register"})
            raise validation_error("Registration failed")

        raw_token = generate_raw_token()
        account = Account(
            email=email,
            username=username,
            password_hash=hash_password(password),
            role=UserRole.USER.value,
            is_verified=False,
            failed_login_attempts=0,
            account_locked_until=None,
            verification_token=hash_token(raw_token),
            verification_token_expires=self._now() + timedelta(hours=self.config.VERIFICATION_TOKEN_TTL_HOURS),
        )
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same identifier
            self.db.rollback()
            logger.warning("Registration failed: email or username already taken", extra={"action": "register"})
            raise validation_error("Registration failed")
        self.db.refresh(account)

        if not self.notifications.send_verification(account.email, raw_token, base_url):
            logger.warning(
                "Verification email could not be delivered",
                extra={"user_id": account.id, "action": "register"},
            )

        logger.info("User registered", extra={"user_id": account.id, "action": "register"})
        return public_identity(account)

    def resend_verification(self, email: str, base_url: str) -> None:
        """Issue a fresh verification link, replacing any pending one.

        Silent for unknown or already verified emails.
        """
        account = self.db.query(Account).filter(Account.email == email).first()
        if account is None or account.is_verified:
            logger.info("Verification resend skipped", extra={"action": "resend_verification"})
            return

        raw_token = generate_raw_token()
        account.verification_token = hash_token(raw_token)
        account.verification_token_expires = self._now() + timedelta(hours=self.config.VERIFICATION_TOKEN_TTL_HOURS)
        self.db.commit()

        self.notifications.send_verification(account.email, raw_token, base_url)
        logger.info("Verification email re-sent", extra={"user_id": account.id, "action": "resend_verification"})

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, identifier: str, password: str, ip: Optional[str] = None) -> TokenPair:
        """Authenticate by email or username and issue a token pair."""
        if not identifier or not password:
            logger.warning("Login attempt with missing credentials", extra={"ip": ip, "action": "login"})
            raise validation_error("Both identifier and password are required")

        account = self.db.query(Account).filter(
            or_(Account.email == identifier, Account.username == identifier)
        ).first()

        if account is None:
            burn_password_check(password)

        self.validate_login_attempt(account, ip)

        if not verify_password(password, account.password_hash):
            self._handle_failed_login_attempt(account, ip)
            record_login("invalid_password")
            raise authentication_error("Invalid credentials")

        account.failed_login_attempts = 0
        account.account_locked_until = None

        tokens = self.generate_tokens(account.id, account.role)
        record_login("success")
        logger.info("Login successful", extra={"user_id": account.id, "ip": ip, "action": "login"})
        return tokens

    def validate_login_attempt(self, account: Optional[Account], ip: Optional[str] = None) -> None:
        """Reject unknown, locked and unverified accounts before the password check."""
        if account is None:
            logger.warning("Invalid credentials", extra={"ip": ip, "action": "login"})
            record_login("unknown_identifier")
            raise authentication_error("Invalid credentials")

        now = self._now()
        if account.is_locked(now):
            minutes_left = math.ceil((account.account_locked_until - now).total_seconds() / 60)
            logger.warning(
                f"Locked account login attempt, {minutes_left} minutes remaining",
                extra={"user_id": account.id, "ip": ip, "action": "login"},
            )
            record_login("locked")
            raise authorization_error(f"Account temporarily locked. Try again in {minutes_left} minutes")

        if not account.is_verified:
            logger.warning("Unverified login attempt", extra={"user_id": account.id, "ip": ip, "action": "login"})
            record_login("unverified")
            raise authorization_error("Please verify your email first")

    def _handle_failed_login_attempt(self, account: Account, ip: Optional[str]) -> None:
        attempts = (account.failed_login_attempts or 0) + 1
        lock_until = calculate_lock_until(attempts, self._now())

        account.failed_login_attempts = attempts
        account.account_locked_until = lock_until
        self.db.commit()

        if lock_until is not None:
            record_lockout()
        logger.warning(
            f"Failed login attempts: {attempts}",
            extra={"user_id": account.id, "ip": ip, "action": "login"},
        )

    # ------------------------------------------------------------------
    # Token issuance, refresh, logout
    # ------------------------------------------------------------------

    def generate_tokens(self, account_id: str, role: str) -> TokenPair:
        """Sign an access/refresh pair sharing one jti and persist the refresh token.

        Commits the session, so pending account changes are saved with it.
        """
        jti = generate_jti()
        claims = {"userId": account_id, "role": role, "jti": jti}
        refresh_ttl_ms = self.config.refresh_token_ttl_ms

        access_token = create_token(claims, self.config.JWT_ACCESS_SECRET, self.config.access_token_ttl_ms)
        refresh_token = create_token(claims, self.config.JWT_REFRESH_SECRET, refresh_ttl_ms)

        self.db.add(RefreshToken(
            token=refresh_token,
            user_id=account_id,
            expires_at=self._now() + timedelta(milliseconds=refresh_ttl_ms),
        ))
        self.db.commit()

        record_tokens_issued()
        logger.info("Tokens generated", extra={"user_id": account_id, "action": "generate_tokens"})
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def _decode_refresh(self, refresh_token: str) -> Dict[str, Any]:
        try:
            return decode_token(refresh_token, self.config.JWT_REFRESH_SECRET)
        except TokenVerificationError as exc:
            log = logger.info if exc.expired else logger.warning
            log(f"Refresh token verification failed: {exc}", extra={"action": "refresh"})
            raise authentication_error("Invalid refresh token") from exc

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair.

        Deleting the token's record is the single-use gate: of several
        concurrent refreshes with the same token only the one whose DELETE
        removes the row gets a new pair. The jti is then revoked so the
        paired access token stops working too.
        """
        payload = self._decode_refresh(refresh_token)
        jti = payload["jti"]

        if self.revocations.is_revoked(jti):
            logger.warning("Revoked refresh token presented", extra={"jti": jti, "action": "refresh"})
            raise authentication_error("Token has been revoked")

        deleted = self.db.query(RefreshToken).filter(
            RefreshToken.token == refresh_token
        ).delete(synchronize_session=False)
        self.db.commit()
        if deleted != 1:
            # Already consumed, wiped by a password change, or never issued by us
            logger.warning("Refresh token has no record", extra={"jti": jti, "action": "refresh"})
            raise authentication_error("Invalid refresh token")

        self.revocations.revoke(jti, seconds_until_expiry(payload))
        record_token_revoked("rotation")

        account = self.db.get(Account, payload["userId"])
        if account is None:
            raise authentication_error("Invalid refresh token")

        logger.info("Refreshing tokens", extra={"user_id": account.id, "jti": jti, "action": "refresh"})
        return self.generate_tokens(account.id, account.role)

    def logout(self, refresh_token: str) -> None:
        """Revoke the refresh token's jti for the full refresh lifetime.

        Access tokens from the same pair share the jti and stop working too.
        """
        payload = self._decode_refresh(refresh_token)
        jti = payload["jti"]

        self.revocations.revoke(jti, self.config.refresh_token_ttl_ms // 1000)
        record_token_revoked("logout")
        logger.info("Logged out", extra={"user_id": payload["userId"], "jti": jti, "action": "logout"})

    def authenticate(self, access_token: str) -> AuthenticatedAccount:
        """Resolve the caller of a protected request from its access token."""
        try:
            payload = decode_token(access_token, self.config.JWT_ACCESS_SECRET)
        except TokenVerificationError as exc:
            if not exc.expired:
                logger.warning(f"Access token rejected: {exc}", extra={"action": "authenticate"})
            raise authentication_error("Not authenticated, token invalid") from exc

        if self.revocations.is_revoked(payload["jti"]):
            raise authentication_error("Token has been revoked")

        return AuthenticatedAccount(
            id=payload["userId"],
            role=payload.get("role", UserRole.USER.value),
            jti=payload["jti"],
        )

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, raw_token: str, base_url: Optional[str] = None) -> Dict[str, Any]:
        """Consume a verification token, mark the account verified and log it in."""
        if not raw_token:
            logger.warning("Email verification attempt without token", extra={"action": "verify_email"})
            raise validation_error("Verification token is required")

        account = self.db.query(Account).filter(
            Account.verification_token == hash_token(raw_token),
            Account.verification_token_expires > self._now(),
        ).first()

        if account is None:
            logger.warning("Invalid or expired verification token", extra={"action": "verify_email"})
            raise validation_error("Invalid or expired verification token")

        if account.is_verified:
            logger.info("User already verified", extra={"user_id": account.id, "action": "verify_email"})
            raise validation_error("Email already verified")

        account.is_verified = True
        account.verification_token = None
        account.verification_token_expires = None
        account.failed_login_attempts = 0
        account.account_locked_until = None

        tokens = self.generate_tokens(account.id, account.role)
        logger.info("Email verified", extra={"user_id": account.id, "action": "verify_email"})

        if base_url:
            self.notifications.send_welcome(account.email, account.username, base_url)

        return {
            "user": {**public_identity(account), "role": account.role},
            "tokens": tokens,
        }

    # ------------------------------------------------------------------
    # Password reset and change
    # ------------------------------------------------------------------

    def forgot_password(self, email: str, base_url: str) -> None:
        """Mail a 15-minute reset link. Silent when the email is unknown."""
        account = self.db.query(Account).filter(Account.email == email).first()
        if account is None:
            logger.warning("Password reset requested for unknown email", extra={"action": "forgot_password"})
            return

        raw_token = generate_raw_token()
        account.reset_password_token = hash_token(raw_token)
        account.reset_password_expires = self._now() + timedelta(minutes=self.config.RESET_TOKEN_TTL_MINUTES)
        self.db.commit()

        self.notifications.send_password_reset(account.email, raw_token, base_url)
        logger.info("Password reset token sent", extra={"user_id": account.id, "action": "forgot_password"})

    def reset_password(self, raw_token: str, new_password: str) -> None:
        """Consume a reset token and set a new password, ending every session."""
        if not raw_token:
            raise validation_error("Invalid reset token")
        if not new_password:
            raise validation_error("New password is required")
        check_password_length(new_password)

        account = self.db.query(Account).filter(
            Account.reset_password_token == hash_token(raw_token),
            Account.reset_password_expires > self._now(),
        ).first()

        if account is None:
            logger.warning("Invalid or expired reset token", extra={"action": "reset_password"})
            raise validation_error("Invalid or expired token")

        self._apply_password_change(account, new_password)
        logger.info("Password reset successful", extra={"user_id": account.id, "action": "reset_password"})

    def update_password(self, account_id: str, current_password: str, new_password: str) -> None:
        """Change the password of an authenticated caller, ending every session."""
        if not current_password or not new_password:
            raise validation_error("Current and new password are required")
        check_password_length(new_password)

        account = self.db.get(Account, account_id)
        if account is None:
            logger.warning("User not found for password update", extra={"user_id": account_id, "action": "update_password"})
            raise not_found_error("User not found")

        if not verify_password(current_password, account.password_hash):
            logger.warning("Password verification failed", extra={"user_id": account_id, "action": "update_password"})
            raise authentication_error("Invalid credentials")

        self._apply_password_change(account, new_password)
        logger.info("Password updated", extra={"user_id": account_id, "action": "update_password"})

    def _apply_password_change(self, account: Account, new_password: str) -> None:
        """Store the new hash and delete all refresh records in one transaction.

        Access tokens already issued stay valid until they expire.
        """
        password_hash = hash_password(new_password)
        try:
            account.password_hash = password_hash
            account.reset_password_token = None
            account.reset_password_expires = None
            self.db.query(RefreshToken).filter(
                RefreshToken.user_id == account.id
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # Third-party identity
    # ------------------------------------------------------------------

    def handle_google_login(self, profile: ExternalProfile) -> Account:
        """Link the profile to an existing account or create a verified one."""
        if not profile.email or not profile.provider_id:
            raise validation_error("External profile is missing an email or id")

        account = self.db.query(Account).filter(Account.email == profile.email).first()

        if account is not None:
            if not account.is_google_user:
                account.google_id = profile.provider_id
                account.is_google_user = True
                account.is_verified = True
                self.db.commit()
                logger.info("Linked Google identity", extra={"user_id": account.id, "action": "oauth_link"})
            return account

        account = Account(
            email=profile.email,
            username=self._available_username(profile.email.split("@")[0]),
            first_name=profile.first_name or None,
            last_name=profile.last_name or None,
            password_hash=hash_password(generate_unusable_password()),
            google_id=profile.provider_id,
            is_google_user=True,
            is_verified=True,
            role=UserRole.USER.value,
            failed_login_attempts=0,
        )
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        logger.info("Created account from Google identity", extra={"user_id": account.id, "action": "oauth_create"})
        return account

    def oauth_login(self, profile: ExternalProfile) -> Tuple[Account, TokenPair]:
        account = self.handle_google_login(profile)
        return account, self.generate_tokens(account.id, account.role)

    def _available_username(self, base: str) -> str:
        base = base or "user"
        candidate = base
        while self.db.query(Account.id).filter(Account.username == candidate).first():
            candidate = f"{base}_{secrets.token_hex(3)}"
        return candidate
