"""Typed auth errors.

Every expected failure of the credential manager is an :class:`AuthError`
carrying an :class:`ErrorKind`. Callers branch on ``exc.kind``; the HTTP layer
maps the kind onto a status code with a single exception handler.

    validation (400)      missing/malformed input, invalid or expired one-time token
    authentication (401)  bad credentials, invalid/expired/revoked JWT
    authorization (403)   unverified or locked account, insufficient role
    not_found (404)       authenticated caller's account no longer exists
    server (500)          unexpected store or signing failure
"""
import enum


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    SERVER = "server"


_STATUS_FOR_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SERVER: 500,
}


class AuthError(Exception):
    """An operational (user-facing, safe to return) auth failure."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return _STATUS_FOR_KIND[self.kind]

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"


def validation_error(message: str) -> AuthError:
    return AuthError(ErrorKind.VALIDATION, message)


def authentication_error(message: str) -> AuthError:
    return AuthError(ErrorKind.AUTHENTICATION, message)


def authorization_error(message: str) -> AuthError:
    return AuthError(ErrorKind.AUTHORIZATION, message)


def not_found_error(message: str) -> AuthError:
    return AuthError(ErrorKind.NOT_FOUND, message)


__all__ = [
    "AuthError",
    "ErrorKind",
    "validation_error",
    "authentication_error",
    "authorization_error",
    "not_found_error",
]
