"""
Authorization gate — one decision function for every protected operation.

``resolve_access`` is pure: it reads the principal from the session and the
policy, and returns an ``AccessDecision``.  Rendering a denial (401, 403,
redirect to login) is the caller's job.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from utils.schemas import Principal, Role


# ── Policies ───────────────────────────────────────────────────────────


class Open(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["open"] = "open"


class Authenticated(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["authenticated"] = "authenticated"


class RoleExact(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["role_exact"] = "role_exact"
    role: Role


class SelfOrAdmin(BaseModel):
    """
    Admins, or the customer linked to ``subject_external_id``.

    The subject is usually only known per request (a path parameter), so it
    may be left unset here and supplied to ``resolve_access`` instead.
    """

    model_config = ConfigDict(frozen=True)
    kind: Literal["self_or_admin"] = "self_or_admin"
    subject_external_id: Optional[str] = None


AccessPolicy = Union[Open, Authenticated, RoleExact, SelfOrAdmin]

OPEN = Open()
AUTHENTICATED = Authenticated()
ADMIN_ONLY = RoleExact(role=Role.ADMIN)


# ── Decision ───────────────────────────────────────────────────────────


class AccessOutcome(str, Enum):
    ALLOW = "allow"
    DENY_UNAUTHENTICATED = "deny_unauthenticated"
    DENY_FORBIDDEN = "deny_forbidden"


class AccessDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: AccessOutcome
    principal: Optional[Principal] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is AccessOutcome.ALLOW

    @classmethod
    def allow(cls, principal: Optional[Principal]) -> "AccessDecision":
        return cls(outcome=AccessOutcome.ALLOW, principal=principal)


_UNAUTHENTICATED = AccessDecision(outcome=AccessOutcome.DENY_UNAUTHENTICATED)
_FORBIDDEN = AccessDecision(outcome=AccessOutcome.DENY_FORBIDDEN)


def _current_principal(session) -> Optional[Principal]:
    # Anything that is not a usable session counts as "nobody signed in".
    if session is None:
        return None
    try:
        principal = session.principal()
    except (AttributeError, TypeError, ValueError):
        return None
    return principal if isinstance(principal, Principal) else None


def resolve_access(
    session,
    policy: AccessPolicy,
    subject_id: Optional[str] = None,
) -> AccessDecision:
    """
    Decide whether the session's principal may run an operation under *policy*.

    Parameters
    ----------
    session : object exposing ``principal()``, or None
    policy : one of ``Open``, ``Authenticated``, ``RoleExact``, ``SelfOrAdmin``
    subject_id : external client id for ``SelfOrAdmin`` when the policy
        itself does not carry one
    """
    principal = _current_principal(session)

    if isinstance(policy, Open):
        return AccessDecision.allow(principal)

    if principal is None:
        return _UNAUTHENTICATED

    if isinstance(policy, Authenticated):
        return AccessDecision.allow(principal)

    if isinstance(policy, RoleExact):
        if principal.role != policy.role:
            return _FORBIDDEN
        return AccessDecision.allow(principal)

    if isinstance(policy, SelfOrAdmin):
        if principal.role == Role.ADMIN:
            return AccessDecision.allow(principal)
        subject = policy.subject_external_id if policy.subject_external_id is not None else subject_id
        if (
            principal.role == Role.CUSTOMER
            and subject is not None
            and principal.external_client_id == subject
        ):
            return AccessDecision.allow(principal)
        return _FORBIDDEN

    raise TypeError(f"Unknown access policy: {policy!r}")
