"""Password hashing and one-time token helpers"""
import hashlib
import secrets

import bcrypt

from artplatform.config import settings

# bcrypt rejects (5.x) or silently truncates (4.x) anything longer
PASSWORD_MAX_BYTES = 72

# Compared against when the login identifier matches no account so that the
# response time does not reveal whether the account exists. Same cost as
# real hashes.
DUMMY_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS))


def password_too_long(password: str) -> bool:
    """True when the UTF-8 encoding exceeds what bcrypt accepts"""
    return len(password.encode()) > PASSWORD_MAX_BYTES


def hash_password(password: str) -> str:
    """Hash a plaintext password with bcrypt at the configured cost.

    Raises:
        ValueError: if the password is longer than ``PASSWORD_MAX_BYTES``.
    """
    if password_too_long(password):
        raise ValueError(f"password cannot be longer than {PASSWORD_MAX_BYTES} bytes")
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    ).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plaintext password against a stored bcrypt hash"""
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Malformed stored hash or over-long password
        return False


def burn_password_check(password: str) -> None:
    """Spend one bcrypt comparison without an account to compare against"""
    candidate = password.encode()[:PASSWORD_MAX_BYTES]
    bcrypt.checkpw(candidate, DUMMY_HASH)


def generate_raw_token() -> str:
    """Generate a random token for verification/reset links (sent, never stored)"""
    return secrets.token_hex(32)


def hash_token(raw_token: str) -> str:
    """Hash a raw one-time token using SHA256 (the only form that is stored)"""
    return hashlib.sha256(raw_token.encode()).hexdigest()


def generate_unusable_password() -> str:
    """Random password for OAuth-created accounts; hashed and never shown"""
    return secrets.token_hex(16)
