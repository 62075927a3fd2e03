from typing import Optional


class ProxyError(Exception):
    """Failure that can still be reported to the caller as a JSON error body."""

    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error = error


class InvalidInput(ProxyError):
    """Target URL failed decoding or the allow-list check. No upstream call was made."""

    status_code = 400


class UpstreamUnavailable(ProxyError):
    """Connect failure, DNS failure, timeout or a read error before headers were committed."""


class UpstreamUnexpectedStatus(ProxyError):
    """Upstream answered with a status the caller cannot relay."""

    def __init__(self, message: str, upstream_status: int, reason: str = ""):
        super().__init__(message, error=f"Unexpected response status: {upstream_status} {reason}".strip())
        self.upstream_status = upstream_status
        self.reason = reason


class MidStreamFailure(Exception):
    """Upstream body failed after response headers were sent downstream.

    Not a ProxyError: nothing may write a second response for it, the
    connection is simply aborted.
    """

    def __init__(self, url: str, bytes_sent: int):
        super().__init__(f"Upstream stream for {url} failed after {bytes_sent} bytes")
        self.url = url
        self.bytes_sent = bytes_sent
