"""
Error taxonomy shared by the backend and the client library.

- AuthenticationRequired: 401 from any session/selection read; never retried.
- UpstreamUnavailable: YouTube failed although a usable credential exists; retryable (503).
- LimitExceeded: a selection would exceed the cap; user-correctable, never retried.
- DecryptionError: stored ciphertext failed verification; treated as "no credential".
- NetworkError: connectivity failure seen by the client; retried for idempotent reads.
- ApiError: any other unexpected HTTP status seen by the client.
"""


class TubeDigestError(Exception):
    """Base class for all domain errors."""


class AuthenticationRequired(TubeDigestError):
    def __init__(self, msg: str = "Authentication required"):
        self.msg = msg
        super().__init__(msg)


class UpstreamUnavailable(TubeDigestError):
    def __init__(self, msg: str = "upstream_error"):
        self.msg = msg
        super().__init__(msg)


# Hard cap on channels a user may select for digests; shared by server and client
SELECTION_LIMIT = 10


class LimitExceeded(TubeDigestError):
    """Raised when a selection would hold more than `limit` channels."""

    def __init__(self, limit: int = SELECTION_LIMIT, requested: int | None = None):
        self.limit = limit
        self.requested = requested
        if requested is None:
            super().__init__(f"limit_exceeded: max {limit} channels")
        else:
            super().__init__(f"limit_exceeded: {requested} channels requested, max {limit}")


class DecryptionError(TubeDigestError):
    """Ciphertext could not be verified (tampered, truncated, or wrong key)."""


class NetworkError(TubeDigestError):
    pass


class ApiError(TubeDigestError):
    def __init__(self, status_code: int, msg: str):
        self.status_code = status_code
        self.msg = msg
        super().__init__(f"{status_code}: {msg}")
