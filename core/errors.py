"""
Domain exceptions for the portal core.

Every expected failure carries an ``ErrorKind`` so ``PortalService`` can turn
it into a tagged ``Failure`` without inspecting exception types one by one.
"""

from __future__ import annotations

from typing import Optional

from utils.schemas import ErrorKind, Failure


class PortalError(Exception):
    """Base error for the portal core."""

    kind: ErrorKind = ErrorKind.EXTERNAL_FETCH_FAILED

    def __init__(self, detail: str = "", *, transient: bool = False, timed_out: bool = False):
        super().__init__(detail)
        self.detail = detail
        self.transient = transient or timed_out
        self.timed_out = timed_out

    def to_failure(self) -> Failure:
        if self.timed_out:
            return Failure(
                kind=ErrorKind.TIMEOUT,
                detail=self.detail,
                retryable=True,
                variant_of=self.kind,
            )
        return Failure(kind=self.kind, detail=self.detail, retryable=self.transient)


class NotConnected(PortalError):
    """No usable credential for the session."""

    kind = ErrorKind.NOT_CONNECTED

    def __init__(self, detail: str = "FreshBooks is not connected", *, reconnect_required: bool = True):
        super().__init__(detail)
        self.reconnect_required = reconnect_required

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, detail=self.detail, reconnect_required=self.reconnect_required)


class ExchangeFailed(PortalError):
    """Authorization code was rejected, or the token endpoint was unreachable."""

    kind = ErrorKind.EXCHANGE_FAILED


class RefreshFailed(PortalError):
    """Refresh token rejected (``revoked``) or token endpoint unreachable."""

    kind = ErrorKind.REFRESH_FAILED

    def __init__(self, detail: str = "", *, revoked: bool = False, transient: bool = False, timed_out: bool = False):
        super().__init__(detail, transient=transient, timed_out=timed_out)
        self.revoked = revoked


class NotFound(PortalError):
    kind = ErrorKind.NOT_FOUND


class AlreadyImported(PortalError):
    kind = ErrorKind.ALREADY_IMPORTED

    def __init__(self, detail: str = "", *, external_client_id: Optional[str] = None):
        super().__init__(detail)
        self.external_client_id = external_client_id

    def to_failure(self) -> Failure:
        return Failure(kind=self.kind, detail=self.detail, external_client_id=self.external_client_id)


class ExternalFetchFailed(PortalError):
    kind = ErrorKind.EXTERNAL_FETCH_FAILED


class ExternalCreateFailed(PortalError):
    kind = ErrorKind.EXTERNAL_CREATE_FAILED


class ImportNotRecorded(ExternalCreateFailed):
    """
    FreshBooks created the client but the local transition failed.

    Not retryable: approving again would create a second client.  The
    failure carries ``external_client_id`` for manual reconciliation.
    """

    def __init__(self, detail: str = "", *, external_client_id: str):
        super().__init__(detail)
        self.external_client_id = external_client_id

    def to_failure(self) -> Failure:
        return Failure(
            kind=self.kind,
            detail=self.detail,
            retryable=False,
            external_client_id=self.external_client_id,
        )


class AccessContractViolation(RuntimeError):
    """A gated operation was invoked without the caller passing the gate first."""
