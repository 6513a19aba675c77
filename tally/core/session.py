"""Session identity: opaque token shared by the browser and the edge logging layer.

Tokens are version-4-shaped UUIDs built from ``secrets.token_bytes`` alone,
so the same code runs where no hashing library is available.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from http.cookies import CookieError, SimpleCookie
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tally.config import SessionConfig


@dataclass(frozen=True)
class SessionToken:
    """A session token and whether it was issued on this request."""
    value: str
    is_new: bool


def random_uuid4() -> str:
    """Random-bytes UUIDv4 string (version nibble 4, variant bits 10)."""
    raw = bytearray(secrets.token_bytes(16))
    raw[6] = (raw[6] & 0x0F) | 0x40
    raw[8] = (raw[8] & 0x3F) | 0x80
    h = raw.hex()
    return f"{h[0:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"


_UUID4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)


def is_uuid4(value: str) -> bool:
    return bool(_UUID4_RE.match(value))


def read_cookie(cookie_header: str | None, name: str) -> str | None:
    """Return the value of cookie ``name`` from a raw Cookie header."""
    if not cookie_header:
        return None
    jar = SimpleCookie()
    try:
        jar.load(cookie_header)
    except CookieError:
        # Fall back to a plain scan; one malformed cookie must not hide ours
        for part in cookie_header.split(";"):
            key, _, val = part.strip().partition("=")
            if key == name and val:
                return val
        return None
    morsel = jar.get(name)
    return morsel.value if morsel and morsel.value else None


def get_or_create_session_id(cookie_header: str | None, cookie_name: str = "tb_session_id") -> SessionToken:
    """Reuse the session cookie verbatim, or issue a fresh token.

    ``is_new`` tells the caller to persist the token as a response cookie.
    """
    existing = read_cookie(cookie_header, cookie_name)
    if existing:
        return SessionToken(value=existing, is_new=False)
    return SessionToken(value=random_uuid4(), is_new=True)


def session_cookie_params(config: SessionConfig, token: str) -> dict:
    """Keyword arguments for ``Response.set_cookie``."""
    return {
        "key": config.cookie_name,
        "value": token,
        "max_age": config.max_age,
        "httponly": True,
        "samesite": "lax",
        "secure": config.production,
    }
