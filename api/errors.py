"""
Rendering of ``Failure`` values as HTTP errors.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, status

from utils.schemas import ErrorKind, Failure, Result

_STATUS_FOR_KIND: Dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.NOT_CONNECTED: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_IMPORTED: status.HTTP_409_CONFLICT,
    ErrorKind.EXCHANGE_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.REFRESH_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.EXTERNAL_FETCH_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.EXTERNAL_CREATE_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def status_for(failure: Failure) -> int:
    return _STATUS_FOR_KIND.get(failure.kind, status.HTTP_502_BAD_GATEWAY)


def failure_to_http(failure: Failure) -> HTTPException:
    return HTTPException(status_code=status_for(failure), detail=failure.model_dump(mode="json"))


def unwrap(result: Result) -> Any:
    """Return ``result.value`` or raise the matching ``HTTPException``."""
    if result.ok:
        return result.value
    raise failure_to_http(result.error)
