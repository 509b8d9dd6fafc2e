from __future__ import annotations

from typing import Optional


class GatewayError(RuntimeError):
    """Base class for failures that end a subscription request."""

    status_code = 500


class TransportFailure(GatewayError):
    """Raised when an upstream call kept failing after every retry."""

    def __init__(
        self,
        url: str,
        attempts: int,
        status: Optional[int] = None,
        reason: str = "",
    ):
        self.url = url
        self.attempts = int(attempts)
        self.status = status
        self.reason = reason
        detail = f"status {status}" if status is not None else (reason or "transport error")
        super().__init__(f"Request to {url} failed after {self.attempts} attempt(s): {detail}")


class AuthenticationFailed(GatewayError):
    """Upstream panel rejected the credentials or the one-time code."""

    def __init__(self, message: str = ""):
        self.upstream_message = message
        super().__init__(message or "Login unsuccessful")


class UpstreamProtocolError(GatewayError):
    """Upstream answered, but not in a shape we can use."""


class NoSuchSubscription(GatewayError):
    status_code = 404

    def __init__(self, sub_id: str):
        self.sub_id = sub_id
        super().__init__("No object found with the specified subId.")


class NoTrafficData(GatewayError):
    def __init__(self, sub_id: str, attempted: int):
        self.sub_id = sub_id
        self.attempted = int(attempted)
        super().__init__(f"No traffic data could be collected for {self.attempted} matched client(s).")


class DeadlineExceeded(GatewayError):
    status_code = 504

    def __init__(self, seconds: float):
        self.seconds = float(seconds)
        super().__init__(f"Upstream did not answer within {self.seconds:g}s")


class PerClientCollectionFailed(GatewayError):
    """One client's traffic lookup failed. Absorbed by the collector."""

    def __init__(self, email: str, inbound_id: int, reason: str):
        self.email = email
        self.inbound_id = inbound_id
        self.reason = reason
        super().__init__(f"traffic lookup failed for client in inbound {inbound_id}: {reason}")


class UpstreamDataMalformed(ValueError):
    """Settings blob of one inbound could not be decoded.

    Returned as a value by the inbound decoder, never raised across
    component boundaries.
    """

    def __init__(self, inbound_id: int, remark: str, reason: str):
        self.inbound_id = inbound_id
        self.remark = remark
        self.reason = reason
        super().__init__(f"inbound {inbound_id} ({remark}): {reason}")
