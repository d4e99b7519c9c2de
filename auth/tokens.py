"""
Signed session tokens.

A token is a base64-encoded JSON payload (``sid`` + ``exp``) signed with
HMAC-SHA256.  The secret is ``config.session_secret`` (env var:
``SESSION_SECRET``).  The token only names a server-side session row; the
row is still checked on every request.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from binascii import Error as BinasciiError
from typing import Optional

from config.settings import config


def _sign(raw: bytes) -> str:
    return hmac.new(config.session_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_session_token(session_id: str, ttl_seconds: Optional[int] = None) -> str:
    """Create a signed token carrying ``session_id`` and its expiry."""
    ttl = config.session_ttl_seconds if ttl_seconds is None else ttl_seconds
    payload = {"sid": session_id, "exp": int(time.time()) + ttl}
    raw = json.dumps(payload).encode()
    return b64encode(raw).decode() + "." + _sign(raw)


def read_session_token(token: Optional[str]) -> Optional[str]:
    """
    Verify *token* and return the session id it names.

    Returns None for anything malformed, forged or expired; callers treat
    that as an anonymous request rather than an error.
    """
    if not token:
        return None
    parts = token.split(".", 1)
    if len(parts) != 2:
        return None
    try:
        raw = b64decode(parts[0], validate=True)
        payload = json.loads(raw)
    except (BinasciiError, ValueError):
        return None
    if not hmac.compare_digest(parts[1], _sign(raw)):
        return None
    if not isinstance(payload, dict):
        return None
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or exp < time.time():
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) else None
