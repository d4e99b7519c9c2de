"""
PortalSession — the per-connection session object the core consumes.

How sessions are created, serialized and transported (cookie/header) is the
HTTP layer's business; see ``auth.sessions``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from utils.schemas import Principal, TokenBundle


class PortalSession:
    """
    One authenticated connection.

    Owns at most one ``TokenBundle`` (``token_bundle``), which must only be
    written through ``CredentialStore``.  An anonymous session has no
    ``session_id`` and can never hold a bundle.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        principal: Optional[Principal] = None,
        expires_at: Optional[datetime] = None,
        token_bundle: Optional[TokenBundle] = None,
    ):
        self.session_id = session_id
        self._principal = principal
        self.expires_at = expires_at
        self.token_bundle = token_bundle

    @classmethod
    def anonymous(cls) -> "PortalSession":
        return cls()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def principal(self) -> Optional[Principal]:
        """The signed-in principal, or None if anonymous or expired."""
        if self.session_id is None or self.is_expired():
            return None
        return self._principal

    def __repr__(self) -> str:
        who = self._principal.id if self._principal else None
        return f"PortalSession(id={self.session_id!r}, principal={who!r})"
