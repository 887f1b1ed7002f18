"""Token revocation stores.

The credential manager only depends on :class:`RevocationStore`. Two
implementations are provided:

* :class:`RedisRevocationStore`: one ``blacklist:<jti>`` key per revoked token
  with a TTL equal to the token's remaining lifetime; Redis expires entries.
* :class:`DatabaseRevocationStore`: rows in the ``revoked_tokens`` table;
  rows past ``expires_at`` are ignored and pruned.
"""
from datetime import datetime, timedelta
from typing import Callable, Protocol

from redis import Redis
from sqlalchemy.orm import Session

from artplatform.models.revoked_token import RevokedToken
from artplatform.utils.logger import logger


class RevocationStore(Protocol):
    def revoke(self, jti: str, ttl_seconds: int) -> None:
        """Mark ``jti`` revoked for ``ttl_seconds``."""

    def is_revoked(self, jti: str) -> bool:
        """Return True while ``jti`` is revoked."""

    def clear(self, jti: str) -> None:
        """Drop a revocation entry early."""


class RedisRevocationStore:
    """Revocation entries in Redis (``SET key 1 EX ttl``)."""

    KEY_PREFIX = "blacklist:"

    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 5.0) -> "RedisRevocationStore":
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def _key(self, jti: str) -> str:
        return f"{self.KEY_PREFIX}{jti}"

    def ping(self) -> bool:
        return bool(self.client.ping())

    def close(self) -> None:
        self.client.close()

    def revoke(self, jti: str, ttl_seconds: int) -> None:
        self.client.set(self._key(jti), "1", ex=max(1, int(ttl_seconds)))

    def is_revoked(self, jti: str) -> bool:
        return self.client.exists(self._key(jti)) == 1

    def clear(self, jti: str) -> None:
        self.client.delete(self._key(jti))


class DatabaseRevocationStore:
    """Revocation entries in the ``revoked_tokens`` table.

    Takes a zero-argument session factory so every call runs in its own short
    session, independent of the request's unit of work.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def revoke(self, jti: str, ttl_seconds: int) -> None:
        expires_at = datetime.utcnow() + timedelta(seconds=max(1, int(ttl_seconds)))
        db = self.session_factory()
        try:
            row = db.query(RevokedToken).filter(RevokedToken.jti == jti).first()
            if row:
                row.expires_at = max(row.expires_at, expires_at)
            else:
                db.add(RevokedToken(jti=jti, expires_at=expires_at))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def is_revoked(self, jti: str) -> bool:
        db = self.session_factory()
        try:
            row = db.query(RevokedToken).filter(
                RevokedToken.jti == jti,
                RevokedToken.expires_at > datetime.utcnow(),
            ).first()
            return row is not None
        finally:
            db.close()

    def clear(self, jti: str) -> None:
        db = self.session_factory()
        try:
            db.query(RevokedToken).filter(RevokedToken.jti == jti).delete()
            db.commit()
        finally:
            db.close()

    def prune_expired(self) -> int:
        """Delete rows whose revocation window has passed. Returns the count."""
        db = self.session_factory()
        try:
            removed = db.query(RevokedToken).filter(
                RevokedToken.expires_at <= datetime.utcnow()
            ).delete()
            db.commit()
        finally:
            db.close()
        if removed:
            logger.info(f"Pruned {removed} expired revocation entries", extra={"action": "prune_revocations"})
        return removed
