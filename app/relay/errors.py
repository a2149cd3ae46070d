from __future__ import annotations

import socket
from typing import Any, Optional

import httpx

_DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)
_REFUSED_MARKERS = ("connection refused", "connect call failed")


class RelayError(Exception):
    status_code = 500
    reason = "Proxy server error"

    def __init__(self, reason: Optional[str] = None, *, status_code: Optional[int] = None):
        if reason is not None:
            self.reason = reason
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.reason)

    def to_client_payload(self) -> dict[str, Any]:
        return {"error": self.reason}


class MissingUrlParameter(RelayError):
    status_code = 400
    reason = "URL parameter is required"


class AdmissionRejected(RelayError):
    status_code = 400


class MethodNotAllowed(RelayError):
    status_code = 405
    reason = "Method not allowed"


class TargetNotFound(RelayError):
    status_code = 404
    reason = "Website not found"


class TargetConnectionRefused(RelayError):
    status_code = 502
    reason = "Connection refused by target server"


class TargetTimeout(RelayError):
    status_code = 504
    reason = "Request timeout"


class UpstreamStatusError(RelayError):
    def __init__(self, upstream_status: int):
        self.upstream_status = upstream_status
        super().__init__(
            f"Target server returned {upstream_status}", status_code=upstream_status
        )


class ResourceNotFound(RelayError):
    status_code = 404
    reason = "Resource not found"


def _exception_chain(exc: BaseException):
    """Walk causes, contexts and exception group members depth-first."""
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        # anyio reports multi-address connect failures as a group of OSErrors
        if isinstance(current, BaseExceptionGroup):
            pending.extend(reversed(current.exceptions))
        pending.append(current.__cause__ or current.__context__)


def is_dns_failure(exc: BaseException) -> bool:
    for link in _exception_chain(exc):
        if isinstance(link, socket.gaierror):
            return True
        message = str(link).lower()
        if any(marker in message for marker in _DNS_FAILURE_MARKERS):
            return True
    return False


def is_connection_refused(exc: BaseException) -> bool:
    for link in _exception_chain(exc):
        if isinstance(link, ConnectionRefusedError):
            return True
        message = str(link).lower()
        if any(marker in message for marker in _REFUSED_MARKERS):
            return True
    return False


def classify_fetch_error(exc: Exception) -> RelayError:
    """Map an outbound fetch failure onto the page relay error taxonomy."""
    if isinstance(exc, RelayError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return TargetTimeout()
    if isinstance(exc, httpx.ConnectError):
        if is_dns_failure(exc):
            return TargetNotFound()
        if is_connection_refused(exc):
            return TargetConnectionRefused()
    return RelayError()
