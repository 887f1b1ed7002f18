"""Expiry string parsing ("15m", "1h", "7d")"""
import re

_UNITS_MS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

_EXPIRATION_RE = re.compile(r"^(\d+)([smhd])$")


def parse_expiration(expiration: str) -> int:
    """Convert an expiry string into milliseconds.

    The grammar is an integer followed by exactly one unit out of
    ``s``, ``m``, ``h`` or ``d``. Anything else raises ``ValueError``.
    """
    match = _EXPIRATION_RE.match(expiration or "")
    if not match:
        raise ValueError(f"Invalid expiration format: {expiration!r}")
    return int(match.group(1)) * _UNITS_MS[match.group(2)]
